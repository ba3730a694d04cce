"""Recursive descent driver.

Builds a whole source tree as an in-process task tree:

1. The root directory starts with two tasks: resolve and aggregate
2. When a directory resolves, its compile tasks and its children's
   resolve/aggregate tasks are added, and its aggregate task is made to depend
   on all of them (fan-out)
3. Ready tasks are submitted to the bounded BuildPool; siblings and files run
   in parallel
4. A directory's aggregate task only becomes ready once every compile task of
   the directory and every child aggregate is DONE (fan-in barrier)
5. A failed task blocks its directory's aggregate, which blocks the parent's
   aggregate, and so on up to the root; no archive is written for a FAILED
   directory

Only the main loop mutates scheduling state. Pool workers return their results
through futures.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import (
    AggregationError,
    BuildCancelledError,
    CompileError,
    ConfigurationError,
    ResolutionError,
    TreeBuildError,
)
from .archive import Aggregator
from .build_context import BuildContext
from .callbacks import NullCallback, ProgressCallback
from .compiler import CompilationEngine
from .models import (
    AggregateArtifact,
    BuildResult,
    BuildTask,
    CompiledUnit,
    DirectoryResult,
    DirState,
    ResolvedDirectory,
    TaskKind,
    TaskPhase,
    aggregate_task_name,
    compile_task_name,
    display_dir,
    resolve_task_name,
)
from .pools import BuildPool
from .resolver import BuildListResolver
from .scheduler import BuildScheduler

logger = logging.getLogger(__name__)

# Seconds between checks for external cancellation while jobs run
_POLL_INTERVAL = 0.1

_ERROR_TYPES: dict[TaskKind, type[TreeBuildError]] = {
    TaskKind.RESOLVE: ResolutionError,
    TaskKind.COMPILE: CompileError,
    TaskKind.AGGREGATE: AggregationError,
}


@dataclass
class DirectoryNode:
    """One directory of the task tree.

    Attributes:
        directory: Source-relative directory ("" for the root)
        parent: Parent node, None for the root
        children: Child nodes in resolution (sorted) order
        state: Current lifecycle state
        resolved: Resolver output once RESOLVING completes
        units: Compiled units keyed by compile task name
        artifact: The directory's aggregate once DONE
        error: First error raised by this directory's own tasks
        failed_dependency: Failed task that blocked this directory's aggregate
    """

    directory: str
    parent: Optional["DirectoryNode"] = None
    children: list["DirectoryNode"] = field(default_factory=list)
    state: DirState = DirState.PENDING
    resolved: Optional[ResolvedDirectory] = None
    units: dict[str, CompiledUnit] = field(default_factory=dict)
    artifact: Optional[AggregateArtifact] = None
    error: Optional[TreeBuildError] = None
    failed_dependency: str = ""

    def ordered_units(self) -> list[CompiledUnit]:
        """Compiled units in the resolver's compile-target order."""
        if self.resolved is None:
            return list(self.units.values())
        names = [compile_task_name(t) for t in self.resolved.compile_targets]
        return [self.units[n] for n in names if n in self.units]


class RecursiveBuildDriver:
    """Builds a source tree recursively with a bounded worker pool.

    Args:
        context: Immutable build context shared by every directory
        callback: Progress callback (default: NullCallback)
    """

    def __init__(self, context: BuildContext, callback: Optional[ProgressCallback] = None) -> None:
        self._context = context
        self._callback: ProgressCallback = callback if callback is not None else NullCallback()
        self._resolver = BuildListResolver(context.source_root, context.output_root, context.config)
        self._engine = CompilationEngine(context.compiler, force=context.force)
        self._aggregator = Aggregator(force=context.force)
        self._nodes: dict[str, DirectoryNode] = {}
        self._cancelled = False
        self._lock = threading.Lock()

    def build(self) -> BuildResult:
        """Run the build to completion.

        Returns:
            BuildResult with one DirectoryResult per visited directory

        Raises:
            ConfigurationError: If the source root or its descriptor is unusable
                (raised before any work starts)
            KeyboardInterrupt: After pending work is cancelled
        """
        start_time = time.monotonic()
        ctx = self._context

        if not ctx.source_root.is_dir():
            raise ConfigurationError(f"Source root is not a directory: {ctx.source_root}", entry=str(ctx.source_root))
        # Root descriptor problems are configuration errors: nothing is built
        self._resolver.load("")

        with self._lock:
            self._cancelled = False
        self._nodes = {}
        scheduler = BuildScheduler()
        self._add_directory("", None, scheduler)

        logger.info(f"Building {ctx.source_root} -> {ctx.output_root} with {ctx.jobs} workers")
        active: dict[Future[Any], str] = {}

        with BuildPool(max_workers=ctx.jobs) as pool:
            try:
                self._run_loop(scheduler, pool, active)
            except KeyboardInterrupt:
                for future in active:
                    future.cancel()
                self._fail_remaining_tasks(scheduler, "Interrupted by user")
                raise

        total_elapsed = time.monotonic() - start_time
        result = self._collect_result(total_elapsed)
        logger.info(
            f"Build {'succeeded' if result.success else 'failed'} in {total_elapsed:.2f}s: "
            f"{len(result.recompiled)} compiled, {result.reused_count} reused, {len(result.aggregated)} archives written"
        )
        return result

    def cancel(self) -> None:
        """Stop launching new work. Thread-safe."""
        with self._lock:
            self._cancelled = True

    def _is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def _run_loop(self, scheduler: BuildScheduler, pool: BuildPool, active: dict[Future[Any], str]) -> None:
        while True:
            progressed = self._fail_blocked_tasks(scheduler) > 0

            if self._is_cancelled():
                if not active:
                    self._fail_remaining_tasks(scheduler, "Build stopped after an earlier failure")
            else:
                for task in scheduler.get_ready_tasks():
                    self._submit_task(task, scheduler, pool, active)
                    progressed = True

            if scheduler.all_done() and not active:
                return

            if not active:
                if progressed:
                    continue
                raise RuntimeError(f"Build scheduler stalled with no runnable tasks: {scheduler.to_dict()}")

            done, _ = wait(list(active), timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
            for future in sorted(done, key=lambda f: active[f]):
                task_name = active.pop(future)
                self._process_completed(future, scheduler.get_task(task_name), scheduler)

    def _add_directory(self, directory: str, parent: Optional[DirectoryNode], scheduler: BuildScheduler) -> DirectoryNode:
        node = DirectoryNode(directory=directory, parent=parent)
        self._nodes[directory] = node
        if parent is not None:
            parent.children.append(node)

        resolve_name = resolve_task_name(directory)
        scheduler.add_task(BuildTask(name=resolve_name, kind=TaskKind.RESOLVE, directory=directory))
        scheduler.add_task(
            BuildTask(
                name=aggregate_task_name(directory),
                kind=TaskKind.AGGREGATE,
                directory=directory,
                dependencies=[resolve_name],
            )
        )
        self._callback.on_directory(directory, DirState.PENDING)
        return node

    def _set_state(self, node: DirectoryNode, state: DirState) -> None:
        if node.state == state or node.state.is_terminal:
            return
        node.state = state
        logger.debug(f"{display_dir(node.directory)}: {state.value}")
        self._callback.on_directory(node.directory, state)

    def _submit_task(self, task: BuildTask, scheduler: BuildScheduler, pool: BuildPool, active: dict[Future[Any], str]) -> None:
        """Submit a ready task to the pool."""
        ctx = self._context
        node = self._nodes[task.directory]

        task.mark_started()
        scheduler.mark_phase(task.name, TaskPhase.RUNNING)
        self._callback.on_task(task, "started")

        future: Future[Any]
        if task.kind == TaskKind.RESOLVE:
            self._set_state(node, DirState.RESOLVING)
            future = pool.submit_resolve(self._resolver, task.directory)
        elif task.kind == TaskKind.COMPILE:
            assert task.target is not None and node.resolved is not None
            flags = (*ctx.extra_cflags, *node.resolved.ccflags)
            future = pool.submit_compile(self._engine, task.target, ctx.include_paths, flags)
        else:
            assert node.resolved is not None
            self._set_state(node, DirState.AGGREGATING)
            units = node.ordered_units()
            children = [child.artifact for child in node.children if child.artifact is not None]
            inputs_changed = any(u.rebuilt for u in units) or any(c.rebuilt for c in children)
            future = pool.submit_aggregate(self._aggregator, node.resolved, units, children, inputs_changed)

        active[future] = task.name

    def _process_completed(self, future: Future[Any], task: BuildTask, scheduler: BuildScheduler) -> None:
        """Transition a task after its job finished."""
        try:
            result = future.result()
        except KeyboardInterrupt:
            raise
        except TreeBuildError as e:
            self._fail_task(task, e, scheduler)
            return
        except Exception as e:
            logger.error(f"Unexpected error in {task.name}: {e}", exc_info=True)
            error = _ERROR_TYPES[task.kind](f"{type(e).__name__}: {e}", directory=task.directory)
            self._fail_task(task, error, scheduler)
            return

        try:
            if task.kind == TaskKind.RESOLVE:
                self._on_resolved(task, result, scheduler)
            elif task.kind == TaskKind.COMPILE:
                self._on_compiled(task, result, scheduler)
            else:
                self._on_aggregated(task, result, scheduler)
        except TreeBuildError as e:
            self._fail_task(task, e, scheduler)

    def _on_resolved(self, task: BuildTask, resolved: ResolvedDirectory, scheduler: BuildScheduler) -> None:
        node = self._nodes[task.directory]

        # The tree must stay a tree: every directory and object has one owner
        for sub in resolved.subdirectories:
            if sub.directory in self._nodes:
                raise ResolutionError(
                    f"Subdirectory '{sub.directory}' is already built from another directory",
                    directory=task.directory,
                    entry=f"{sub.directory}/",
                )
        for target in resolved.compile_targets:
            if scheduler.has_task(compile_task_name(target)):
                raise ResolutionError(
                    f"Object '{target.rel_object}' is already built from another directory",
                    directory=task.directory,
                    entry=target.name,
                )

        node.resolved = resolved
        dependencies: list[str] = []
        for target in resolved.compile_targets:
            name = compile_task_name(target)
            compile_task = BuildTask(name=name, kind=TaskKind.COMPILE, directory=task.directory, target=target)
            scheduler.add_task(compile_task)
            self._callback.on_task(compile_task, "queued")
            dependencies.append(name)
        for sub in resolved.subdirectories:
            self._add_directory(sub.directory, node, scheduler)
            dependencies.append(aggregate_task_name(sub.directory))
        scheduler.add_dependencies(aggregate_task_name(task.directory), dependencies)

        task.update_elapsed()
        scheduler.mark_phase(task.name, TaskPhase.DONE)
        self._callback.on_task(task, f"{len(resolved.compile_targets)} files, {len(resolved.subdirectories)} subdirectories")
        self._set_state(node, DirState.COMPILING if resolved.is_leaf else DirState.DESCENDING)

    def _on_compiled(self, task: BuildTask, unit: CompiledUnit, scheduler: BuildScheduler) -> None:
        node = self._nodes[task.directory]
        node.units[task.name] = unit
        task.update_elapsed()
        scheduler.mark_phase(task.name, TaskPhase.DONE)
        self._callback.on_task(task, unit.reason if unit.rebuilt else "cached")

    def _on_aggregated(self, task: BuildTask, artifact: AggregateArtifact, scheduler: BuildScheduler) -> None:
        node = self._nodes[task.directory]
        node.artifact = artifact
        task.update_elapsed()
        scheduler.mark_phase(task.name, TaskPhase.DONE)
        self._callback.on_task(task, "written" if artifact.rebuilt else "cached")
        self._set_state(node, DirState.DONE)

        parent = node.parent
        if parent is not None and parent.state == DirState.DESCENDING:
            if all(child.state.is_terminal for child in parent.children):
                self._set_state(parent, DirState.COMPILING)

    def _fail_task(self, task: BuildTask, error: TreeBuildError, scheduler: BuildScheduler) -> None:
        """Record a task's own failure and fail its directory."""
        if error.directory is None:
            error.directory = task.directory
        task.fail(error.message, error)
        scheduler.mark_phase(task.name, TaskPhase.FAILED)
        logger.error(f"{task.name} failed: {error.message}")
        self._callback.on_task(task, error.message)

        node = self._nodes[task.directory]
        if node.error is None:
            node.error = error
        self._fail_directory(node)

        if not self._context.keep_going:
            self.cancel()

    def _fail_directory(self, node: DirectoryNode) -> None:
        if node.state.is_terminal:
            return
        node.state = DirState.FAILED
        self._callback.on_directory(node.directory, DirState.FAILED)

    def _fail_blocked_tasks(self, scheduler: BuildScheduler) -> int:
        """Fail WAITING tasks whose dependency failed; returns how many."""
        blocked = scheduler.get_blocked_tasks()
        for task, dep_name in blocked:
            task.fail(f"Dependency '{dep_name}' failed")
            scheduler.mark_phase(task.name, TaskPhase.FAILED)
            self._callback.on_task(task, task.error_message)

            node = self._nodes[task.directory]
            if not node.failed_dependency:
                node.failed_dependency = dep_name
            self._fail_directory(node)
        return len(blocked)

    def _fail_remaining_tasks(self, scheduler: BuildScheduler, reason: str) -> None:
        """Mark all non-terminal tasks as FAILED."""
        for task in scheduler.get_all_tasks():
            if task.phase in (TaskPhase.DONE, TaskPhase.FAILED):
                continue
            task.fail(reason, BuildCancelledError(reason, directory=task.directory))
            scheduler.mark_phase(task.name, TaskPhase.FAILED)
            self._callback.on_task(task, reason)
            self._fail_directory(self._nodes[task.directory])

    def _collect_result(self, total_elapsed: float) -> BuildResult:
        directories: dict[str, DirectoryResult] = {}
        for directory in sorted(self._nodes):
            node = self._nodes[directory]
            directories[directory] = DirectoryResult(
                directory=directory,
                state=node.state,
                artifact=node.artifact,
                units=node.ordered_units(),
                error=node.error,
                failed_dependency=node.failed_dependency,
            )
        success = all(r.state == DirState.DONE for r in directories.values())
        return BuildResult(directories=directories, total_elapsed=total_elapsed, success=success)
