"""Unit tests for logging compliance across the codebase.

These tests enforce that library code reports through the logging module or
treebuild.output, never through bare print() calls.
"""

import re
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).parent.parent.parent / "src" / "treebuild"


def _library_files() -> list[Path]:
    """Python files under src/treebuild, excluding the CLI."""
    return [p for p in sorted(SRC_DIR.rglob("*.py")) if "__pycache__" not in p.parts and p.name not in ("cli.py", "__main__.py")]


def _code_lines(path: Path):
    in_docstring = False
    for line_num, line in enumerate(path.read_text(encoding="utf-8").split("\n"), start=1):
        stripped = line.strip()
        quotes = stripped.count('"""') + stripped.count("'''")
        if quotes:
            if quotes == 1:
                in_docstring = not in_docstring
            continue
        if in_docstring or stripped.startswith("#"):
            continue
        yield line_num, line


class TestLoggingCompliance:
    """Test cases for logging vs print statement compliance."""

    def test_source_tree_found(self):
        assert SRC_DIR.exists(), f"Source directory not found: {SRC_DIR}"
        assert _library_files(), "No Python files found in src/treebuild"

    def test_no_print_statements_in_library_code(self):
        """Library modules use logging or treebuild.output instead of print().

        Note: CLI print() statements are legitimate for user-facing output.
        """
        violations = []
        for file_path in _library_files():
            for line_num, line in _code_lines(file_path):
                if re.search(r"(?<![\w.])print\s*\(", line):
                    violations.append(f"{file_path}:{line_num}: {line.strip()}")

        if violations:
            violation_report = "\n".join(violations)
            pytest.fail(f"Found {len(violations)} print() statements in library code:\n{violation_report}\n\nUse logging or treebuild.output instead.")

    def test_no_direct_stdout_writes(self):
        """Only treebuild.output writes to the terminal stream directly."""
        violations = []
        for file_path in _library_files():
            if file_path.name == "output.py":
                continue
            for line_num, line in _code_lines(file_path):
                if re.search(r"\bstdout\s*\.\s*write\s*\(", line):
                    violations.append(f"{file_path}:{line_num}: {line.strip()}")

        if violations:
            violation_report = "\n".join(violations)
            pytest.fail(f"Found {len(violations)} direct stdout writes:\n{violation_report}")

    def test_module_loggers_use_module_name(self):
        """Files calling logger.* define it with logging.getLogger(__name__)."""
        missing = []
        for file_path in _library_files():
            content = file_path.read_text(encoding="utf-8")
            if re.search(r"\blogger\.(debug|info|warning|error|exception)\(", content):
                if "logger = logging.getLogger(__name__)" not in content:
                    missing.append(str(file_path))

        if missing:
            pytest.fail("Files using logger without a module logger:\n" + "\n".join(missing))
