"""
User-facing build output for treebuild.

Every line carries the time elapsed since launch (MM:SS.cc), so a build log
shows where the time went:

    00:00.01 treebuild v0.3.0
    00:00.02 [1/2] Loading configuration...
    00:00.40       [CC] drivers/net/eth.o
    00:00.52       [AR] drivers/built-in.a

Diagnostics for developers go through the logging module instead; this
module is only for what a make-style front end prints.
"""

import sys
import threading
import time
from types import TracebackType
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = True
_output_file: Optional[TextIO] = None
_write_lock = threading.Lock()


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Reset the launch time used for timestamps.

    Args:
        output_stream: Stream to write to instead of sys.stdout
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """Show (True) or hide (False) messages marked verbose_only."""
    global _verbose
    _verbose = verbose


def set_output_file(output_file: Optional[TextIO]) -> None:
    """Copy every line to output_file as well (None stops copying)."""
    global _output_file
    _output_file = output_file


def _timestamp() -> str:
    if _start_time is None:
        init_timer()
    elapsed = time.time() - _start_time  # type: ignore
    return f"{int(elapsed // 60):02d}:{elapsed % 60:05.2f}"


def _print(message: str) -> None:
    line = f"{_timestamp()} {message}\n"
    # Looked up per call so redirected stdout is honored
    stream = _output_stream if _output_stream is not None else sys.stdout
    with _write_lock:
        stream.write(line)
        stream.flush()
        if _output_file is not None:
            _output_file.write(line)
            _output_file.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """Print a timestamped message."""
    if verbose_only and not _verbose:
        return
    _print(message)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """Print ``[phase/total] message``."""
    if verbose_only and not _verbose:
        return
    _print(f"[{phase}/{total}] {message}")


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """Print an indented message."""
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_step(label: str, rel_path: str, cached: bool = False, verbose_only: bool = False) -> None:
    """
    Print one make-style step line such as ``[CC] drivers/net/eth.o``.

    Args:
        label: Step kind ("CC" for a compile, "AR" for an archive)
        rel_path: Output-relative path of the produced file
        cached: Mark the line as reusing an up-to-date output
        verbose_only: If True, only print in verbose mode
    """
    if verbose_only and not _verbose:
        return
    suffix = " (cached)" if cached else ""
    _print(f"      [{label}] {rel_path}{suffix}")


def log_header(title: str, version: str) -> None:
    """Print the program banner followed by a blank line."""
    _print(f"{title} v{version}")
    _print("")


def log_build_complete(build_time: float) -> None:
    """Print the total build time."""
    _print("")
    _print(f"Build time: {build_time:.2f}s")


def log_error(message: str) -> None:
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    _print(f"WARNING: {message}")


class TimedLogger:
    """
    Context manager that announces an operation and reports how long it took.

    Usage:
        with TimedLogger("Loading configuration", phase=(1, 2)) as timed:
            context = BuildContext.create(params)
            timed.detail("42 flags enabled")

    Nothing is reported on exit when the block raises.
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None, verbose_only: bool = False):
        self.operation = operation
        self.phase = phase
        self.verbose_only = verbose_only
        self.start_time = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        if self.phase:
            log_phase(self.phase[0], self.phase[1], f"{self.operation}...", self.verbose_only)
        else:
            log(f"{self.operation}...", self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        if exc_type is None:
            log_detail(f"Done ({time.time() - self.start_time:.2f}s)", verbose_only=self.verbose_only)

    def detail(self, message: str) -> None:
        """Print an indented message belonging to this operation."""
        log_detail(message, verbose_only=self.verbose_only)
