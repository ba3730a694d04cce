"""Clean command implementation for removing generated build outputs.

Only files the build itself produces are removed: compiled units, their
dependency records, scratch depfiles, temporary files and built-in.a
aggregates. Directories left empty afterwards are pruned. Anything else in the
output tree is left untouched.
"""

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path

from ..build.models import BUILTIN_NAME
from ..output import log, log_error, log_warning

# Glob patterns of files generated by the build
GENERATED_PATTERNS = ("*.o", ".*.o.cmd", ".*.o.d", BUILTIN_NAME, "*.tmp")


@dataclass
class CleanResult:
    """Outcome of cleaning an output tree.

    Attributes:
        removed_files: Files deleted (or that would be deleted in a dry run)
        removed_dirs: Empty directories pruned
        errors: Messages for files that could not be deleted
    """

    removed_files: list[Path] = field(default_factory=list)
    removed_dirs: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def is_generated(name: str) -> bool:
    """Check whether a file name matches a generated-output pattern."""
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in GENERATED_PATTERNS)


def find_generated_files(output_root: Path) -> list[Path]:
    """Find generated files under an output tree, sorted.

    Returns:
        Sorted list of paths; empty if the tree does not exist
    """
    if not output_root.is_dir():
        return []
    found: list[Path] = []
    for dirpath, _, filenames in os.walk(output_root):
        for filename in filenames:
            if is_generated(filename):
                found.append(Path(dirpath) / filename)
    return sorted(found)


def clean_output(output_root: Path, dry_run: bool = False) -> CleanResult:
    """Remove generated outputs from an output tree.

    Args:
        output_root: Root of the output tree
        dry_run: If True, only report what would be deleted

    Returns:
        CleanResult listing removed files, pruned directories and errors
    """
    result = CleanResult()

    for path in find_generated_files(output_root):
        rel_path = path.relative_to(output_root).as_posix()
        if dry_run:
            log(f"Would delete: {rel_path}")
            result.removed_files.append(path)
            continue
        try:
            path.unlink()
            result.removed_files.append(path)
        except FileNotFoundError:
            continue
        except OSError as e:
            error_msg = f"Failed to delete {rel_path}: {e}"
            log_error(error_msg)
            result.errors.append(error_msg)

    if not dry_run and output_root.is_dir():
        # Deepest first so parents become empty before they are checked
        for dirpath, _, _ in sorted(os.walk(output_root), key=lambda w: w[0].count(os.sep), reverse=True):
            directory = Path(dirpath)
            if directory == output_root:
                continue
            try:
                if not any(directory.iterdir()):
                    directory.rmdir()
                    result.removed_dirs.append(directory)
            except OSError as e:
                error_msg = f"Failed to remove directory {directory}: {e}"
                log_warning(error_msg)
                result.errors.append(error_msg)

    if not dry_run:
        log(f"Removed {len(result.removed_files)} files and {len(result.removed_dirs)} directories")
    return result
