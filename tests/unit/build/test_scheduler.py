"""Unit tests for the build task scheduler."""

import threading

import pytest

from treebuild.build.models import BuildTask, TaskKind, TaskPhase
from treebuild.build.scheduler import BuildScheduler


def _make_task(name: str, dependencies: list[str] | None = None, kind: TaskKind = TaskKind.COMPILE) -> BuildTask:
    """Create a BuildTask with sensible defaults for testing."""
    return BuildTask(name=name, kind=kind, directory="", dependencies=dependencies if dependencies is not None else [])


class TestBuildSchedulerBasic:
    """Basic add/get operations."""

    def test_add_and_count(self):
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("a"))
        scheduler.add_task(_make_task("b"))
        assert scheduler.task_count == 2
        assert scheduler.has_task("a")
        assert not scheduler.has_task("c")

    def test_duplicate_task_raises(self):
        """Adding a task with a duplicate name raises ValueError."""
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("a"))
        with pytest.raises(ValueError, match="Duplicate task name"):
            scheduler.add_task(_make_task("a"))

    def test_get_unknown_task_raises(self):
        with pytest.raises(KeyError, match="Unknown task"):
            BuildScheduler().get_task("nonexistent")

    def test_mark_unknown_task_raises(self):
        with pytest.raises(KeyError, match="Unknown task"):
            BuildScheduler().mark_phase("nonexistent", TaskPhase.DONE)

    def test_get_all_tasks_in_insertion_order(self):
        scheduler = BuildScheduler()
        for name in ("c", "a", "b"):
            scheduler.add_task(_make_task(name))
        assert [t.name for t in scheduler.get_all_tasks()] == ["c", "a", "b"]


class TestBuildSchedulerReadiness:
    """Ready-task computation."""

    def test_independent_tasks_ready_sorted(self):
        """Tasks without dependencies are ready immediately, sorted by name."""
        scheduler = BuildScheduler()
        for name in ("compile:b.o", "compile:a.o"):
            scheduler.add_task(_make_task(name))
        assert [t.name for t in scheduler.get_ready_tasks()] == ["compile:a.o", "compile:b.o"]

    def test_dependent_task_waits(self):
        """A task becomes ready only when all dependencies are DONE."""
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("a"))
        scheduler.add_task(_make_task("b"))
        scheduler.add_task(_make_task("agg", ["a", "b"], kind=TaskKind.AGGREGATE))

        scheduler.mark_phase("a", TaskPhase.DONE)
        assert "agg" not in [t.name for t in scheduler.get_ready_tasks()]
        scheduler.mark_phase("b", TaskPhase.DONE)
        assert "agg" in [t.name for t in scheduler.get_ready_tasks()]

    def test_unknown_dependency_is_unsatisfied(self):
        """A dependency not yet added keeps the task waiting."""
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("agg", ["later"]))
        assert scheduler.get_ready_tasks() == []

    def test_running_tasks_not_ready(self):
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("a"))
        scheduler.mark_phase("a", TaskPhase.RUNNING)
        assert scheduler.get_ready_tasks() == []


class TestBuildSchedulerDynamicGraph:
    """Growing the graph while the build runs."""

    def test_add_dependencies_to_waiting_task(self):
        """Extending a waiting aggregate defers it until new deps finish."""
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("resolve", kind=TaskKind.RESOLVE))
        scheduler.add_task(_make_task("agg", ["resolve"], kind=TaskKind.AGGREGATE))
        scheduler.add_task(_make_task("compile"))
        scheduler.add_dependencies("agg", ["compile", "resolve"])
        scheduler.mark_phase("resolve", TaskPhase.DONE)

        assert scheduler.get_task("agg").dependencies == ["resolve", "compile"]
        assert [t.name for t in scheduler.get_ready_tasks()] == ["compile"]

    def test_add_dependencies_after_start_raises(self):
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("agg"))
        scheduler.mark_phase("agg", TaskPhase.RUNNING)
        with pytest.raises(ValueError, match="Cannot add dependencies"):
            scheduler.add_dependencies("agg", ["x"])

    def test_self_dependency_raises(self):
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("agg"))
        with pytest.raises(ValueError, match="cannot depend on itself"):
            scheduler.add_dependencies("agg", ["agg"])


class TestBuildSchedulerFailures:
    """Terminal states and failure propagation."""

    def test_blocked_tasks_report_failed_dependency(self):
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("a"))
        scheduler.add_task(_make_task("b"))
        scheduler.add_task(_make_task("agg", ["a", "b"]))
        scheduler.mark_phase("a", TaskPhase.DONE)
        scheduler.mark_phase("b", TaskPhase.FAILED)

        blocked = scheduler.get_blocked_tasks()
        assert [(t.name, dep) for t, dep in blocked] == [("agg", "b")]
        assert scheduler.has_failed()

    def test_all_done_counts_failed_as_terminal(self):
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("a"))
        scheduler.add_task(_make_task("b"))
        assert not scheduler.all_done()
        scheduler.mark_phase("a", TaskPhase.DONE)
        scheduler.mark_phase("b", TaskPhase.FAILED)
        assert scheduler.all_done()

    def test_to_dict(self):
        scheduler = BuildScheduler()
        scheduler.add_task(_make_task("a"))
        data = scheduler.to_dict()
        assert data["tasks"]["a"]["phase"] == "waiting"
        assert data["tasks"]["a"]["kind"] == "compile"


class TestBuildSchedulerThreadSafety:
    """Concurrent access."""

    def test_concurrent_phase_updates(self):
        """Many threads marking phases never corrupt the table."""
        scheduler = BuildScheduler()
        names = [f"compile:{i}.o" for i in range(200)]
        for name in names:
            scheduler.add_task(_make_task(name))

        def worker(chunk: list[str]) -> None:
            for name in chunk:
                scheduler.mark_phase(name, TaskPhase.DONE)
                scheduler.get_ready_tasks()

        threads = [threading.Thread(target=worker, args=(names[i::4],)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert scheduler.all_done()
