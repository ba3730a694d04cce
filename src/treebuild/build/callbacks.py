"""Progress callback protocol for the recursive build.

Defines the interface the driver uses to report task and directory progress
to the display layer (Rich TUI or plain log lines).
"""

from typing import Protocol, runtime_checkable

from ..output import log_error, log_step
from .models import BuildTask, DirState, TaskKind, TaskPhase


@runtime_checkable
class ProgressCallback(Protocol):
    """Protocol for receiving progress updates from the build driver.

    All calls are made from the driver's scheduling thread, never from pool
    workers.
    """

    def on_task(self, task: BuildTask, detail: str) -> None:
        """Called when a task changes phase.

        Args:
            task: The task (its phase is already updated).
            detail: Human-readable status detail (e.g. "cached", "command line changed").
        """
        ...

    def on_directory(self, directory: str, state: DirState) -> None:
        """Called when a directory moves to a new lifecycle state.

        Args:
            directory: Source-relative directory ("" for the root).
            state: New state.
        """
        ...


class NullCallback:
    """No-op callback implementation for testing and non-interactive use."""

    def on_task(self, task: BuildTask, detail: str) -> None:
        """Discard task update."""
        pass

    def on_directory(self, directory: str, state: DirState) -> None:
        """Discard directory update."""
        pass


class LogCallback:
    """Plain-text callback printing make-style lines through treebuild.output.

    Produces lines such as ``[CC] drivers/eth.o`` and ``[AR] drivers/built-in.a``.
    Reused (cached) outputs are only shown in verbose mode.
    """

    _LABELS = {TaskKind.COMPILE: "CC", TaskKind.AGGREGATE: "AR"}

    def on_task(self, task: BuildTask, detail: str) -> None:
        if task.phase == TaskPhase.FAILED:
            if task.error is not None:
                log_error(f"{task.name}: {task.error_message}")
            return
        if task.phase != TaskPhase.DONE or task.kind not in self._LABELS:
            return
        cached = detail == "cached"
        rel_path = task.name.split(":", 1)[1]
        log_step(self._LABELS[task.kind], rel_path, cached=cached, verbose_only=cached)

    def on_directory(self, directory: str, state: DirState) -> None:
        pass
