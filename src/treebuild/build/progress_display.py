"""Rich-based live progress display for the recursive build.

Renders one line per directory of the build tree, indented by depth, showing
the directory's lifecycle state and its compile progress:

    .              Descending
      drivers      Compiling   [======>       ] 3/7
        net        Done        ✓ 0.8s
      fs           Failed      ✗ fs/super.c: expected ';'

Implements ProgressCallback. Updates arrive from the driver's scheduling
thread while Rich refreshes from its own thread, so state is lock-protected.
"""

import threading
import time
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .models import BuildTask, DirState, TaskKind, TaskPhase, display_dir

# Braille spinner frames for active directories
_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

_STATE_LABELS = {
    DirState.PENDING: ("Pending", "dim"),
    DirState.RESOLVING: ("Resolving", "blue"),
    DirState.DESCENDING: ("Descending", "cyan"),
    DirState.COMPILING: ("Compiling", "yellow"),
    DirState.AGGREGATING: ("Archiving", "magenta"),
    DirState.DONE: ("Done", "green"),
    DirState.FAILED: ("Failed", "red bold"),
}


class _DirectoryDisplayState:
    """Internal state for a single directory's display line.

    Attributes:
        directory: Source-relative directory ("" for the root).
        state: Current lifecycle state.
        compile_total: Number of compile tasks queued once the directory resolved.
        compile_done: Number of compile tasks finished (built or reused).
        compile_cached: Number of compile tasks that reused their object.
        detail: Failure message or last status text.
        elapsed: Elapsed time in seconds.
        start_time: Monotonic timestamp when the directory left PENDING.
    """

    __slots__ = ("directory", "state", "compile_total", "compile_done", "compile_cached", "detail", "elapsed", "start_time")

    def __init__(self, directory: str) -> None:
        self.directory = directory
        self.state = DirState.PENDING
        self.compile_total = 0
        self.compile_done = 0
        self.compile_cached = 0
        self.detail = ""
        self.elapsed = 0.0
        self.start_time: float | None = None


class BuildProgressDisplay:
    """Live tree display of the recursive build using Rich.

    Args:
        console: Rich Console instance for rendering. If None, creates a new one.
        title: Header line (e.g. "Building src -> out").
        refresh_per_second: Display refresh rate (default 10).
    """

    def __init__(self, console: Console | None = None, title: str = "Building", refresh_per_second: int = 10) -> None:
        self._console = console if console is not None else Console()
        self._title = title
        self._refresh_per_second = refresh_per_second
        self._states: dict[str, _DirectoryDisplayState] = {}
        self._lock = threading.Lock()
        self._live: Live | None = None

    def _state_for(self, directory: str) -> _DirectoryDisplayState:
        state = self._states.get(directory)
        if state is None:
            state = _DirectoryDisplayState(directory)
            self._states[directory] = state
        return state

    def on_directory(self, directory: str, state: DirState) -> None:
        """Record a directory state transition."""
        with self._lock:
            entry = self._state_for(directory)
            if entry.state == DirState.PENDING and state != DirState.PENDING:
                entry.start_time = time.monotonic()
            entry.state = state
            if entry.start_time is not None:
                entry.elapsed = time.monotonic() - entry.start_time

    def on_task(self, task: BuildTask, detail: str) -> None:
        """Record a task phase change for the task's directory."""
        with self._lock:
            entry = self._state_for(task.directory)
            if task.kind == TaskKind.COMPILE:
                if task.phase == TaskPhase.WAITING:
                    entry.compile_total += 1
                elif task.phase == TaskPhase.DONE:
                    entry.compile_done += 1
                    if detail == "cached":
                        entry.compile_cached += 1
            if task.phase == TaskPhase.FAILED and task.error is not None and not entry.detail:
                entry.detail = task.error_message

    def start(self) -> None:
        """Start the live display. Call before driver.build()."""
        self._live = Live(
            get_renderable=self._render_display,
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            transient=False,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the live display after a final refresh."""
        if self._live is not None:
            self._live.refresh()
            self._live.stop()
            self._live = None

    def _render_display(self) -> Group:
        """Build the Rich Group containing header, table, and footer."""
        header = Text(f"\n{self._title}...\n", style="bold")
        return Group(header, self._render_table(), self._render_footer())

    def _render_table(self) -> Table:
        """Build the Rich Table with one row per directory, in tree order."""
        table = Table(show_header=False, show_edge=False, show_lines=False, box=None, padding=(0, 1), expand=False)
        table.add_column("Directory", style="bold", no_wrap=True, min_width=28)
        table.add_column("State", no_wrap=True, min_width=12)
        table.add_column("Status", no_wrap=True, min_width=40)

        with self._lock:
            for directory in sorted(self._states, key=lambda d: d.split("/") if d else []):
                state = self._states[directory]
                depth = directory.count("/") + 1 if directory else 0
                name = directory.rsplit("/", 1)[-1] if directory else display_dir(directory)
                label, style = _STATE_LABELS[state.state]
                table.add_row(
                    Text(f"{'  ' * depth}{name}", style=self._name_style(state.state)),
                    Text(label, style=style),
                    self._format_status(state),
                )
        return table

    def _render_footer(self) -> Text:
        with self._lock:
            total = len(self._states)
            done = sum(1 for s in self._states.values() if s.state == DirState.DONE)
            failed = sum(1 for s in self._states.values() if s.state == DirState.FAILED)
            compiled = sum(s.compile_done - s.compile_cached for s in self._states.values())
            cached = sum(s.compile_cached for s in self._states.values())

        parts = [f"{total} directories"]
        if done:
            parts.append(f"{done} done")
        if failed:
            parts.append(f"{failed} failed")
        parts.append(f"{compiled} compiled")
        if cached:
            parts.append(f"{cached} up to date")
        return Text(f"\n  {', '.join(parts)}", style="dim")

    @staticmethod
    def _name_style(state: DirState) -> str:
        if state == DirState.DONE:
            return "green"
        if state == DirState.FAILED:
            return "red"
        if state == DirState.PENDING:
            return "dim"
        return "bold cyan"

    def _format_status(self, state: _DirectoryDisplayState) -> Text:
        if state.state == DirState.PENDING:
            return Text("")
        if state.state == DirState.DONE:
            return Text(f"✓ {state.elapsed:.1f}s", style="green")
        if state.state == DirState.FAILED:
            return Text(f"✗ {state.detail or 'dependency failed'}", style="red")
        if state.state == DirState.COMPILING and state.compile_total:
            return self._format_progress_bar(state)
        spinner = _SPINNER_FRAMES[int(time.monotonic() * 8) % len(_SPINNER_FRAMES)]
        return Text(spinner, style="magenta")

    def _format_progress_bar(self, state: _DirectoryDisplayState) -> Text:
        """Format a text progress bar like [=========>     ] 3/7."""
        bar_width = 20
        pct = min(state.compile_done / state.compile_total, 1.0)
        filled = int(bar_width * pct)
        if 0 < filled < bar_width:
            bar = "=" * (filled - 1) + ">" + " " * (bar_width - filled)
        elif filled == bar_width:
            bar = "=" * bar_width
        else:
            bar = " " * bar_width
        return Text(f"[{bar}] {state.compile_done}/{state.compile_total}", style="yellow")

    def get_snapshot(self) -> list[dict[str, Any]]:
        """Get a snapshot of current display states for testing."""
        with self._lock:
            return [
                {
                    "directory": s.directory,
                    "state": s.state,
                    "compile_total": s.compile_total,
                    "compile_done": s.compile_done,
                    "compile_cached": s.compile_cached,
                    "detail": s.detail,
                }
                for _, s in sorted(self._states.items())
            ]

    def __enter__(self) -> "BuildProgressDisplay":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
