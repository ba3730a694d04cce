"""Error taxonomy for treebuild.

Every failure raised by the build core derives from TreeBuildError so the
driver and the CLI can report it uniformly with its directory/entry context:

- ConfigurationError: .config or root descriptor missing or unreadable
- DescriptorError: a directory's Kbuild/Makefile is missing or malformed
- ResolutionError: an object-list entry matches neither a file nor a directory
- CompileError: the external compiler failed
- AggregationError: a directory's built-in.a could not be written
- BuildCancelledError: work was stopped after an earlier failure or Ctrl-C
"""

from typing import Optional

# Tool output longer than this is truncated in formatted summaries
_MAX_DIAGNOSTIC_CHARS = 500


class TreeBuildError(Exception):
    """Base class for all treebuild failures.

    Attributes:
        message: Human-readable error description
        directory: Source-relative directory the error belongs to ("" = root)
        entry: Offending object-list identifier or file, if any
        diagnostic: Raw tool output (e.g. compiler stderr), if any
    """

    phase = "build"

    def __init__(
        self,
        message: str,
        directory: Optional[str] = None,
        entry: Optional[str] = None,
        diagnostic: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.directory = directory
        self.entry = entry
        self.diagnostic = diagnostic

    @property
    def location(self) -> str:
        """Directory/entry context as a display path."""
        if self.directory is None:
            return self.entry or ""
        base = self.directory or "."
        if self.entry:
            return f"{base}: {self.entry}"
        return base

    def format(self) -> str:
        """Format error as human-readable string.

        Returns:
            Formatted error message with location and truncated diagnostic
        """
        lines = [f"[{self.phase}] {self.message}"]

        if self.location:
            lines.append(f"  In: {self.location}")

        if self.diagnostic:
            preview = self.diagnostic.strip()[:_MAX_DIAGNOSTIC_CHARS]
            if len(self.diagnostic.strip()) > _MAX_DIAGNOSTIC_CHARS:
                preview += "... (truncated)"
            lines.append(f"  Output: {preview}")

        return "\n".join(lines)


class ConfigurationError(TreeBuildError):
    """Raised when the configuration source or the root descriptor cannot be used."""

    phase = "config"


class DescriptorError(ConfigurationError):
    """Raised when a directory descriptor is missing or malformed."""

    phase = "descriptor"


class ResolutionError(TreeBuildError):
    """Raised when an object-list entry cannot be resolved."""

    phase = "resolve"


class CompileError(TreeBuildError):
    """Raised when compiling a source unit fails."""

    phase = "compile"


class AggregationError(TreeBuildError):
    """Raised when a directory's aggregate artifact cannot be produced."""

    phase = "aggregate"


class BuildCancelledError(TreeBuildError):
    """Raised for work abandoned after an earlier failure or an interrupt."""

    phase = "cancelled"
