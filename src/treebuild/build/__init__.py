"""Recursive build of a configuration-driven source tree.

This package resolves per-directory object lists, compiles every unit through
a bounded worker pool, and folds each directory's units and child archives
into a built-in.a thin archive, bottom-up to the root.

Public API:
    TreeBuilder: High-level builder that loads the configuration and runs the
                 driver with an optional Rich TUI progress display.
    RecursiveBuildDriver: Low-level driver for a prepared BuildContext.
"""

import sys
from typing import Optional

from ..output import TimedLogger, log_phase
from .archive import Aggregator, read_thin_archive
from .build_context import BuildContext, BuildParams, default_cc, default_jobs
from .callbacks import LogCallback, NullCallback, ProgressCallback
from .compiler import CompilationEngine, Compiler, CompileRequest, GccCompiler
from .driver import RecursiveBuildDriver
from .models import BuildResult, DirectoryResult, DirState, TaskKind, TaskPhase
from .progress_display import BuildProgressDisplay
from .resolver import BuildListResolver, resolve_tree


class TreeBuilder:
    """High-level recursive builder with a live TUI.

    Loads the configuration snapshot once, then runs the recursive driver
    either under a Rich live display (interactive terminals) or with plain
    [CC]/[AR] log lines.

    Args:
        params: Build parameters from the CLI.
        compiler: Compiler to use (default: GccCompiler with $CC).
    """

    def __init__(self, params: BuildParams, compiler: Optional[Compiler] = None) -> None:
        self._params = params
        self._compiler = compiler
        self._driver: Optional[RecursiveBuildDriver] = None

    def build(self, use_tui: Optional[bool] = None) -> BuildResult:
        """Build the whole tree.

        Args:
            use_tui: Override TUI display. None = auto-detect (TTY check).
                     True = force TUI. False = disable TUI.

        Returns:
            BuildResult with the state of every visited directory.

        Raises:
            ConfigurationError: If the configuration or the root descriptor is unusable.
            KeyboardInterrupt: If the build is interrupted.
        """
        with TimedLogger("Loading configuration", phase=(1, 2), verbose_only=True) as timed:
            context = BuildContext.create(self._params, compiler=self._compiler)
            timed.detail(f"{len(context.config.enabled_flags())} flags enabled")

        log_phase(2, 2, "Building tree...", verbose_only=True)
        if use_tui is None:
            use_tui = _is_tty()

        if use_tui:
            display = BuildProgressDisplay(
                console=None,
                title=f"Building {context.source_root} -> {context.output_root}",
                refresh_per_second=10,
            )
            self._driver = RecursiveBuildDriver(context, display)
            with display:
                return self._driver.build()

        self._driver = RecursiveBuildDriver(context, LogCallback())
        return self._driver.build()

    def cancel(self) -> None:
        """Stop launching new work in a running build. Thread-safe."""
        if self._driver is not None:
            self._driver.cancel()


def _is_tty() -> bool:
    """Check if stdout is a terminal (TTY).

    Returns:
        True if stdout is connected to a terminal.
    """
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False


__all__ = [
    "Aggregator",
    "BuildContext",
    "BuildListResolver",
    "BuildParams",
    "BuildProgressDisplay",
    "BuildResult",
    "CompilationEngine",
    "CompileRequest",
    "Compiler",
    "DirState",
    "DirectoryResult",
    "GccCompiler",
    "LogCallback",
    "NullCallback",
    "ProgressCallback",
    "RecursiveBuildDriver",
    "TaskKind",
    "TaskPhase",
    "TreeBuilder",
    "default_cc",
    "default_jobs",
    "read_thin_archive",
    "resolve_tree",
]
