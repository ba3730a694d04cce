"""Dependency scheduler for the recursive build.

Holds every BuildTask of the build tree and emits tasks whose dependencies
have all completed. The graph grows while the build runs: resolving a
directory adds its compile tasks, its children's resolve/aggregate tasks, and
extends its own aggregate task's dependencies with them.
"""

import threading
from typing import Any, Iterable

from .models import BuildTask, TaskPhase


class BuildScheduler:
    """Schedules build tasks based on their dependency graph.

    Thread-safe: phases may be queried from any thread while the driver's
    main loop adds tasks and transitions phases.

    Usage:
        scheduler = BuildScheduler()
        scheduler.add_task(resolve_root)
        scheduler.add_task(aggregate_root)

        while not scheduler.all_done():
            for task in scheduler.get_ready_tasks():
                pool.submit(task)
    """

    def __init__(self) -> None:
        self._tasks: dict[str, BuildTask] = {}
        self._lock = threading.Lock()

    def add_task(self, task: BuildTask) -> None:
        """Add a task to the scheduler.

        Raises:
            ValueError: If a task with the same name already exists.
        """
        with self._lock:
            if task.name in self._tasks:
                raise ValueError(f"Duplicate task name: {task.name}")
            self._tasks[task.name] = task

    def add_dependencies(self, task_name: str, dependencies: Iterable[str]) -> None:
        """Extend a WAITING task's dependency list.

        Raises:
            KeyError: If the task name doesn't exist.
            ValueError: If the task has already left the WAITING phase.
        """
        with self._lock:
            task = self._tasks.get(task_name)
            if task is None:
                raise KeyError(f"Unknown task: {task_name}")
            if task.phase != TaskPhase.WAITING:
                raise ValueError(f"Cannot add dependencies to {task_name} in phase {task.phase.value}")
            for dep in dependencies:
                if dep == task_name:
                    raise ValueError(f"Task '{task_name}' cannot depend on itself")
                if dep not in task.dependencies:
                    task.dependencies.append(dep)

    def get_ready_tasks(self) -> list[BuildTask]:
        """Return WAITING tasks whose dependencies are all DONE, sorted by name.

        A dependency that has not been added yet counts as unsatisfied.
        """
        with self._lock:
            ready = [t for t in self._tasks.values() if t.phase == TaskPhase.WAITING and self._deps_satisfied(t)]
            return sorted(ready, key=lambda t: t.name)

    def _deps_satisfied(self, task: BuildTask) -> bool:
        for dep_name in task.dependencies:
            dep_task = self._tasks.get(dep_name)
            if dep_task is None or dep_task.phase != TaskPhase.DONE:
                return False
        return True

    def mark_phase(self, task_name: str, phase: TaskPhase) -> None:
        """Update a task's phase.

        Raises:
            KeyError: If the task name doesn't exist.
        """
        with self._lock:
            if task_name not in self._tasks:
                raise KeyError(f"Unknown task: {task_name}")
            self._tasks[task_name].phase = phase

    def get_task(self, task_name: str) -> BuildTask:
        """Get a task by name.

        Raises:
            KeyError: If the task name doesn't exist.
        """
        with self._lock:
            if task_name not in self._tasks:
                raise KeyError(f"Unknown task: {task_name}")
            return self._tasks[task_name]

    def has_task(self, task_name: str) -> bool:
        """Check whether a task with this name has been added."""
        with self._lock:
            return task_name in self._tasks

    def all_done(self) -> bool:
        """Check if all tasks are in a terminal state (DONE or FAILED)."""
        with self._lock:
            return all(t.phase in (TaskPhase.DONE, TaskPhase.FAILED) for t in self._tasks.values())

    def has_failed(self) -> bool:
        """Check if any task has failed."""
        with self._lock:
            return any(t.phase == TaskPhase.FAILED for t in self._tasks.values())

    def get_blocked_tasks(self) -> list[tuple[BuildTask, str]]:
        """Return WAITING tasks blocked by a FAILED dependency.

        These tasks can never complete and should be marked as failed.

        Returns:
            (task, failed dependency name) pairs, sorted by task name
        """
        with self._lock:
            blocked = []
            for task in self._tasks.values():
                if task.phase != TaskPhase.WAITING:
                    continue
                for dep_name in task.dependencies:
                    dep_task = self._tasks.get(dep_name)
                    if dep_task is not None and dep_task.phase == TaskPhase.FAILED:
                        blocked.append((task, dep_name))
                        break
            return sorted(blocked, key=lambda pair: pair[0].name)

    def get_all_tasks(self) -> list[BuildTask]:
        """Return all registered tasks in insertion order."""
        with self._lock:
            return list(self._tasks.values())

    @property
    def task_count(self) -> int:
        """Total number of tasks."""
        with self._lock:
            return len(self._tasks)

    def to_dict(self) -> dict[str, Any]:
        """Serialize scheduler state to dictionary."""
        with self._lock:
            return {
                "tasks": {name: task.to_dict() for name, task in self._tasks.items()},
            }
