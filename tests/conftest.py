"""Pytest configuration and fixtures for treebuild tests.

This conftest addresses Python 3.13 compatibility issues with pytest's capture fixtures.
Python 3.13 changed how stdout/stderr are handled, causing "I/O operation on closed file"
errors during test teardown. This is a known issue: https://github.com/pytest-dev/pytest/issues/11439

It also provides an in-process fake compiler and helpers to lay out source
trees, so the recursive build can be exercised without a real toolchain.
"""

import re
import sys
import threading
import warnings
from pathlib import Path
from typing import Callable

import pytest

from treebuild.build.compiler import CompileRequest
from treebuild.errors import CompileError

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)

_INCLUDE_RE = re.compile(r'^\s*#\s*include\s+"([^"]+)"', re.MULTILINE)


class FakeCompiler:
    """In-process stand-in for cc.

    "Compiles" a source by copying its text into the object, follows
    ``#include "..."`` lines (relative to the source, then the include paths)
    to report dependencies, and fails on a ``#error`` line. Thread-safe.
    """

    def __init__(self) -> None:
        self.compiled: list[str] = []
        self._lock = threading.Lock()

    def command_line(self, request: CompileRequest) -> list[str]:
        cmd = ["fakecc", *request.flags]
        cmd.extend(f"-I{path}" for path in request.include_paths)
        cmd.extend(["-c", str(request.source), "-o", str(request.object_path)])
        return cmd

    def compile(self, request: CompileRequest) -> list[Path]:
        target = request.target
        text = request.source.read_text(encoding="utf-8")
        if "#error" in text:
            raise CompileError(
                "fakecc exited with code 1",
                directory=target.directory,
                entry=str(target.source),
                diagnostic=f"{request.source}:1: error: #error directive",
            )

        deps = self._scan_includes(request.source, request.include_paths, set())
        request.object_path.write_text(f"OBJ {' '.join(request.flags)}\n{text}", encoding="utf-8")
        with self._lock:
            self.compiled.append(target.rel_object)
        return deps

    def _scan_includes(self, source: Path, include_paths: tuple[Path, ...], seen: set[Path]) -> list[Path]:
        found: list[Path] = []
        for name in _INCLUDE_RE.findall(source.read_text(encoding="utf-8")):
            for base in (source.parent, *include_paths):
                candidate = base / name
                if candidate.is_file():
                    if candidate not in seen:
                        seen.add(candidate)
                        found.append(candidate)
                        found.extend(self._scan_includes(candidate, include_paths, seen))
                    break
            else:
                raise CompileError(
                    f"fatal error: {name}: No such file or directory",
                    entry=str(source),
                    diagnostic=f"{source}: fatal error: {name}: No such file or directory",
                )
        return found

    def compiled_set(self) -> set[str]:
        with self._lock:
            return set(self.compiled)

    def reset(self) -> None:
        with self._lock:
            self.compiled.clear()


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Create files below root from a {relative path: content} mapping."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def fake_compiler() -> FakeCompiler:
    """Fresh fake compiler for each test."""
    return FakeCompiler()


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Factory writing a source tree under tmp_path/src."""

    def _make(files: dict[str, str]) -> Path:
        return write_tree(tmp_path / "src", files)

    return _make


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test.

    This prevents "I/O operation on closed file" errors in Python 3.13
    when tests raise exceptions that close stdout/stderr.
    """
    yield

    # Restore if they were closed during the test
    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_call(item):  # noqa: ARG001
    """Wrap test execution to handle stdout/stderr closure gracefully."""
    yield

    # After test execution, ensure streams aren't closed
    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, trylast=True)
def pytest_runtest_teardown(item):  # noqa: ARG001
    """Ensure streams are restored during teardown phase."""
    yield

    # Final restoration after teardown
    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__
