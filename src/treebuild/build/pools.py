"""Worker pool for the recursive build.

A single bounded ThreadPoolExecutor runs all three kinds of build work:
- resolve: read a directory descriptor and resolve its entries
- compile: run the compilation engine for one unit (blocking external call)
- aggregate: write one directory's built-in.a

Workers only compute; they never touch scheduling state. Results travel back
to the driver through futures.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Sequence

from .archive import Aggregator
from .compiler import CompilationEngine
from .models import AggregateArtifact, CompiledUnit, CompileTarget, ResolvedDirectory
from .resolver import BuildListResolver

logger = logging.getLogger(__name__)


class BuildPool:
    """Thread pool executing resolve, compile and aggregate jobs.

    Args:
        max_workers: Maximum number of concurrent jobs (the -j value).
    """

    def __init__(self, max_workers: int) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self._max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="treebuild")
        self._shutdown = False
        self._lock = threading.Lock()

    def _check_open(self) -> None:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("BuildPool has been shut down")

    def submit_resolve(self, resolver: BuildListResolver, directory: str) -> Future[ResolvedDirectory]:
        """Submit resolution of one directory.

        Raises:
            RuntimeError: If the pool has been shut down.
        """
        self._check_open()
        return self._executor.submit(resolver.resolve, directory)

    def submit_compile(
        self,
        engine: CompilationEngine,
        target: CompileTarget,
        include_paths: Sequence[Path],
        flags: Sequence[str],
    ) -> Future[CompiledUnit]:
        """Submit compilation of one unit.

        Raises:
            RuntimeError: If the pool has been shut down.
        """
        self._check_open()
        return self._executor.submit(engine.build_unit, target, include_paths, flags)

    def submit_aggregate(
        self,
        aggregator: Aggregator,
        resolved: ResolvedDirectory,
        units: Sequence[CompiledUnit],
        children: Sequence[AggregateArtifact],
        inputs_changed: bool,
    ) -> Future[AggregateArtifact]:
        """Submit aggregation of one directory.

        Raises:
            RuntimeError: If the pool has been shut down.
        """
        self._check_open()
        return self._executor.submit(aggregator.aggregate, resolved, units, children, inputs_changed)

    def shutdown(self, cancel_pending: bool = False) -> None:
        """Shut down the pool, waiting for running jobs to finish.

        Args:
            cancel_pending: Drop queued jobs that have not started yet.
        """
        with self._lock:
            self._shutdown = True
        logger.debug(f"Shutting down build pool (cancel_pending={cancel_pending})")
        self._executor.shutdown(wait=True, cancel_futures=cancel_pending)

    @property
    def max_workers(self) -> int:
        """Maximum number of concurrent jobs."""
        return self._max_workers

    def __enter__(self) -> "BuildPool":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown(cancel_pending=exc_type is not None)
