"""Build Context - Aggregated build configuration.

This module defines:
- BuildParams: Basic build parameters from the CLI
- BuildContext: Params plus the loaded configuration snapshot and compiler

Design:
    BuildParams flows from the CLI into BuildContext.create(), which loads the
    .config file once. The resulting BuildContext is immutable and is shared,
    unchanged, by every directory of the recursive build, so concurrent
    sibling builds never observe different configuration.
"""

import multiprocessing
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config.kconfig import BuildConfig, load_config
from .compiler import Compiler, GccCompiler


def default_jobs() -> int:
    """Default worker count: $TREEBUILD_JOBS, else the CPU count."""
    env_jobs = os.environ.get("TREEBUILD_JOBS")
    if env_jobs:
        try:
            return max(1, int(env_jobs))
        except ValueError:
            pass
    return multiprocessing.cpu_count()


def default_cc() -> str:
    """Default compiler: $CC, else "cc"."""
    return os.environ.get("CC") or "cc"


@dataclass(frozen=True)
class BuildParams:
    """Basic build parameters from the CLI.

    Attributes:
        source_root: Root of the source tree
        output_root: Root of the output tree
        config_path: Path to the .config file
        include_paths: Include roots passed to every compile
        extra_cflags: Flags added to every compile before per-directory ccflags
        jobs: Worker pool size
        keep_going: Let unrelated subtrees finish after a failure
        force: Rebuild every unit and aggregate
        verbose: Whether to enable verbose output
    """

    source_root: Path
    output_root: Path
    config_path: Path
    include_paths: tuple[Path, ...] = ()
    extra_cflags: tuple[str, ...] = ()
    jobs: int = 1
    keep_going: bool = True
    force: bool = False
    verbose: bool = False


@dataclass(frozen=True)
class BuildContext:
    """Full build context shared by every directory of the build.

    Attributes:
        source_root: Absolute root of the source tree
        output_root: Absolute root of the output tree
        config: Immutable configuration snapshot
        compiler: Compiler used by the compilation engine
        include_paths: Absolute include roots
        extra_cflags: Flags added to every compile
        jobs: Worker pool size
        keep_going: Let unrelated subtrees finish after a failure
        force: Rebuild every unit and aggregate
        verbose: Whether to enable verbose output
    """

    source_root: Path
    output_root: Path
    config: BuildConfig
    compiler: Compiler
    include_paths: tuple[Path, ...] = ()
    extra_cflags: tuple[str, ...] = ()
    jobs: int = 1
    keep_going: bool = True
    force: bool = False
    verbose: bool = False

    @classmethod
    def create(
        cls,
        params: BuildParams,
        compiler: Optional[Compiler] = None,
        config: Optional[BuildConfig] = None,
    ) -> "BuildContext":
        """Create a BuildContext from BuildParams.

        Args:
            params: CLI parameters
            compiler: Compiler to use (default: GccCompiler with $CC)
            config: Pre-loaded configuration (default: load params.config_path)

        Raises:
            ConfigurationError: If the configuration cannot be loaded
        """
        if config is None:
            config = load_config(params.config_path)
        return cls(
            source_root=params.source_root.resolve(),
            output_root=params.output_root.resolve(),
            config=config,
            compiler=compiler if compiler is not None else GccCompiler(cc=default_cc()),
            include_paths=tuple(p.resolve() for p in params.include_paths),
            extra_cflags=params.extra_cflags,
            jobs=params.jobs,
            keep_going=params.keep_going,
            force=params.force,
            verbose=params.verbose,
        )
