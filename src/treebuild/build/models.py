"""Data models for the recursive build.

Defines the dataclasses shared by the resolver, the compilation engine, the
aggregator and the driver:
- CompileTarget / AggregateTarget: resolved, path-qualified build targets
- ResolvedDirectory: everything the resolver derives for one directory
- CompiledUnit / AggregateArtifact: results of compiling and aggregating
- DirState / TaskKind / TaskPhase / BuildTask: scheduling state
- DirectoryResult / BuildResult: what a build reports back
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..errors import TreeBuildError

# Name of the composite artifact at the root of each output directory
BUILTIN_NAME = "built-in.a"

# Source suffixes a FileEntry may resolve to, in lookup order
SOURCE_SUFFIXES = (".c", ".S", ".cc", ".cpp")


def display_dir(directory: str) -> str:
    """Render a source-relative directory for messages ("" is the root)."""
    return directory or "."


def join_rel(directory: str, name: str) -> str:
    """Join a source-relative directory and a name with forward slashes."""
    return f"{directory}/{name}" if directory else name


@dataclass(frozen=True)
class CompileTarget:
    """A source file that compiles to one object in the output tree."""

    directory: str
    name: str
    source: Path
    object_path: Path
    record_path: Path

    @property
    def rel_object(self) -> str:
        """Source-relative object path, e.g. "drivers/net/eth.o"."""
        return join_rel(self.directory, f"{self.name}.o")


@dataclass(frozen=True)
class AggregateTarget:
    """A directory whose subtree is combined into one built-in.a."""

    directory: str
    source_dir: Path
    output_dir: Path

    @property
    def artifact_path(self) -> Path:
        """Location of this directory's aggregate artifact."""
        return self.output_dir / BUILTIN_NAME

    @property
    def rel_artifact(self) -> str:
        """Source-relative artifact path, e.g. "drivers/built-in.a"."""
        return join_rel(self.directory, BUILTIN_NAME)


@dataclass(frozen=True)
class ResolvedDirectory:
    """The resolver's output for one directory.

    Attributes:
        target: The directory's own aggregate target
        compile_targets: FileEntry targets, deduplicated, in descriptor order
        subdirectories: DirEntry targets, deduplicated and sorted
        composition: Rewritten entry list (object and child built-in.a paths),
            stable-sorted by output-relative path
        ccflags: Per-directory compiler flags enabled by the configuration
    """

    target: AggregateTarget
    compile_targets: tuple[CompileTarget, ...]
    subdirectories: tuple[AggregateTarget, ...]
    composition: tuple[Path, ...]
    ccflags: tuple[str, ...] = ()

    @property
    def directory(self) -> str:
        return self.target.directory

    @property
    def is_leaf(self) -> bool:
        """True when the directory has no DirEntry targets."""
        return not self.subdirectories


@dataclass(frozen=True)
class CompiledUnit:
    """Result of building one CompileTarget.

    Attributes:
        target: Target that was built
        rebuilt: True if the compiler ran, False if the previous output was reused
        reason: Why the unit was (or was not) rebuilt
        dependencies: Auxiliary files recorded for the unit
    """

    target: CompileTarget
    rebuilt: bool
    reason: str
    dependencies: tuple[str, ...] = ()


@dataclass(frozen=True)
class AggregateArtifact:
    """Result of aggregating one directory.

    Attributes:
        target: Aggregate target that was built
        members: Member paths in composition order
        rebuilt: True if built-in.a was (re)written in this run
    """

    target: AggregateTarget
    members: tuple[Path, ...]
    rebuilt: bool

    @property
    def path(self) -> Path:
        return self.target.artifact_path


class DirState(Enum):
    """Lifecycle of one directory in the build tree."""

    PENDING = "pending"
    RESOLVING = "resolving"
    DESCENDING = "descending"
    COMPILING = "compiling"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DirState.DONE, DirState.FAILED)


class TaskKind(Enum):
    """Kind of work a BuildTask performs."""

    RESOLVE = "resolve"
    COMPILE = "compile"
    AGGREGATE = "aggregate"


class TaskPhase(Enum):
    """Phase of a build task in the scheduler."""

    WAITING = "waiting"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class BuildTask:
    """A single unit of schedulable work.

    Attributes:
        name: Unique task name (e.g. "compile:drivers/eth.o")
        kind: What the task does
        directory: Source-relative directory the task belongs to
        dependencies: Names of tasks that must be DONE before this one starts
        target: CompileTarget for COMPILE tasks, None otherwise
        phase: Current scheduling phase
        error_message: Error detail if phase is FAILED
        error: The originating exception, if this task failed on its own
        start_time: Monotonic timestamp when the task was submitted
        elapsed: Seconds between submission and completion
    """

    name: str
    kind: TaskKind
    directory: str
    dependencies: list[str] = field(default_factory=list)
    target: Optional[CompileTarget] = None
    phase: TaskPhase = TaskPhase.WAITING
    error_message: str = ""
    error: Optional[TreeBuildError] = None
    start_time: Optional[float] = None
    elapsed: float = 0.0

    def mark_started(self) -> None:
        """Record the start time for elapsed time tracking."""
        self.start_time = time.monotonic()

    def update_elapsed(self) -> None:
        """Update elapsed time from start_time."""
        if self.start_time is not None:
            self.elapsed = time.monotonic() - self.start_time

    def fail(self, error: str, exc: Optional[TreeBuildError] = None) -> None:
        """Mark this task as failed with an error message."""
        self.phase = TaskPhase.FAILED
        self.error_message = error
        self.error = exc
        self.update_elapsed()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "directory": self.directory,
            "dependencies": list(self.dependencies),
            "phase": self.phase.value,
            "error_message": self.error_message,
            "elapsed": self.elapsed,
        }


def resolve_task_name(directory: str) -> str:
    return f"resolve:{display_dir(directory)}"


def compile_task_name(target: CompileTarget) -> str:
    return f"compile:{target.rel_object}"


def aggregate_task_name(directory: str) -> str:
    return f"aggregate:{join_rel(directory, BUILTIN_NAME)}"


@dataclass
class DirectoryResult:
    """Final report for one visited directory.

    Attributes:
        directory: Source-relative directory
        state: DONE or FAILED (non-terminal only if the build was interrupted)
        artifact: The aggregate artifact when DONE
        units: Compiled units of this directory
        error: First error that failed this directory's own work, if any
        failed_dependency: Name of the failed task that blocked aggregation
    """

    directory: str
    state: DirState
    artifact: Optional[AggregateArtifact] = None
    units: list[CompiledUnit] = field(default_factory=list)
    error: Optional[TreeBuildError] = None
    failed_dependency: str = ""

    @property
    def recompiled(self) -> list[str]:
        """Relative object paths the compiler produced in this run."""
        return sorted(u.target.rel_object for u in self.units if u.rebuilt)

    @property
    def aggregated(self) -> bool:
        """True if this directory's built-in.a was rewritten in this run."""
        return self.artifact is not None and self.artifact.rebuilt


@dataclass
class BuildResult:
    """Aggregated result of a complete recursive build.

    Attributes:
        directories: Result per visited directory, keyed by relative path
        total_elapsed: Wall-clock time in seconds
        success: True if every directory reached DONE
    """

    directories: dict[str, DirectoryResult]
    total_elapsed: float
    success: bool

    @property
    def root(self) -> Optional[DirectoryResult]:
        return self.directories.get("")

    @property
    def root_artifact(self) -> Optional[Path]:
        """Path of the tree's final built-in.a, if the root completed."""
        root = self.root
        if root is None or root.artifact is None:
            return None
        return root.artifact.path

    @property
    def recompiled(self) -> list[str]:
        """All relative object paths compiled in this run, sorted."""
        return sorted(obj for result in self.directories.values() for obj in result.recompiled)

    @property
    def reused_count(self) -> int:
        return sum(1 for result in self.directories.values() for u in result.units if not u.rebuilt)

    @property
    def aggregated(self) -> list[str]:
        """Directories whose built-in.a was rewritten in this run, sorted."""
        return sorted(d for d, result in self.directories.items() if result.aggregated)

    @property
    def failed_directories(self) -> list[str]:
        return sorted(d for d, result in self.directories.items() if result.state == DirState.FAILED)

    @property
    def errors(self) -> list[TreeBuildError]:
        """Originating errors (not derived dependency failures), ordered by directory."""
        return [self.directories[d].error for d in sorted(self.directories) if self.directories[d].error is not None]  # type: ignore[misc]

