"""
Command-line interface for treebuild.

This module provides the `treebuild` CLI tool for building configuration-driven
source trees.
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, TextIO

from treebuild import __version__
from treebuild.build import BuildListResolver, BuildParams, GccCompiler, TreeBuilder, default_cc, default_jobs, resolve_tree
from treebuild.build.models import BuildResult, display_dir
from treebuild.commands.clean import clean_output
from treebuild.config import load_config
from treebuild.errors import ConfigurationError, TreeBuildError
from treebuild.output import init_timer, log, log_build_complete, log_detail, log_header, set_output_file, set_verbose

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    source_dir: Path
    output_dir: Path
    config: Path
    include_dirs: list[Path] = field(default_factory=list)
    jobs: int = 1
    cc: Optional[str] = None
    cflags: list[str] = field(default_factory=list)
    fail_fast: bool = False
    always_make: bool = False
    verbose: bool = False
    no_tui: bool = False
    log_file: Optional[Path] = None


@dataclass
class ResolveArgs:
    """Arguments for the resolve command."""

    source_dir: Path
    config: Path
    output_dir: Optional[Path] = None
    verbose: bool = False


@dataclass
class CleanArgs:
    """Arguments for the clean command."""

    output_dir: Path
    dry_run: bool = False
    verbose: bool = False


def setup_logging(verbose: bool, log_file: Optional[TextIO] = None) -> None:
    """Route library log records to stderr and, optionally, to the log file."""
    logger = logging.getLogger("treebuild")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.StreamHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
        logger.addHandler(file_handler)


def _print_failures(result: BuildResult) -> None:
    """Print the originating error of each failed subtree."""
    for error in result.errors:
        print()
        print(error.format())
    for directory in result.failed_directories:
        dir_result = result.directories[directory]
        if dir_result.error is None and dir_result.failed_dependency:
            print(f"  {display_dir(directory)}: not archived ({dir_result.failed_dependency} failed)")


def build_command(args: BuildArgs) -> None:
    """Build a source tree into an output tree.

    Examples:
        treebuild build src out -c .config             # Build with default compiler
        treebuild build src out -c .config -I include  # Add an include root
        treebuild build src out -c .config -j 8        # Eight parallel jobs
        treebuild build src out -c .config -B          # Rebuild everything
        treebuild build src out -c .config --fail-fast # Stop after first failure
    """
    log_file: Optional[TextIO] = None
    try:
        if args.log_file is not None:
            log_file = open(args.log_file, "w", encoding="utf-8")
            set_output_file(log_file)
        setup_logging(args.verbose, log_file)
        set_verbose(args.verbose)

        log_header("treebuild", __version__)
        log(f"Building {args.source_dir} -> {args.output_dir}...")
        log_detail(f"Config: {args.config}", verbose_only=True)
        log_detail(f"Jobs: {args.jobs}", verbose_only=True)

        params = BuildParams(
            source_root=args.source_dir,
            output_root=args.output_dir,
            config_path=args.config,
            include_paths=tuple(args.include_dirs),
            extra_cflags=tuple(args.cflags),
            jobs=args.jobs,
            keep_going=not args.fail_fast,
            force=args.always_make,
            verbose=args.verbose,
        )
        compiler = GccCompiler(cc=args.cc or default_cc())

        start_time = time.time()
        result = TreeBuilder(params, compiler=compiler).build(use_tui=False if args.no_tui else None)
        build_time = time.time() - start_time

        if result.success:
            print()
            print("\033[1;32m✓ Build successful!\033[0m")
            print()
            log_detail(f"Compiled: {len(result.recompiled)}, up to date: {result.reused_count}, archives written: {len(result.aggregated)}")
            if result.root_artifact is not None:
                log_detail(f"Archive: {result.root_artifact}")
            log_build_complete(build_time)
            sys.exit(0)
        else:
            print()
            print("\033[1;31m✗ Build failed!\033[0m")
            _print_failures(result)
            log_build_complete(build_time)
            sys.exit(1)

    except ConfigurationError as e:
        print()
        print("\033[1;31m✗ Configuration error\033[0m")
        print()
        print(e.format())
        sys.exit(1)

    except PermissionError as e:
        print()
        print("\033[1;31m✗ Error: Permission denied\033[0m")
        print()
        print(str(e))
        sys.exit(1)

    except KeyboardInterrupt:
        print()
        print("\033[1;33m✗ Build interrupted\033[0m")
        sys.exit(130)  # Standard exit code for SIGINT

    except Exception as e:
        print()
        print("\033[1;31m✗ Unexpected error\033[0m")
        print()
        print(f"{type(e).__name__}: {e}")

        if args.verbose:
            import traceback

            print()
            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)

    finally:
        if log_file is not None:
            set_output_file(None)
            log_file.close()


def resolve_command(args: ResolveArgs) -> None:
    """Print the resolved build tree without compiling anything.

    Examples:
        treebuild resolve src -c .config
    """
    try:
        setup_logging(args.verbose)
        config = load_config(args.config)
        # Without an output tree, objects are placed beside their sources
        output_dir = args.output_dir if args.output_dir is not None else args.source_dir
        resolver = BuildListResolver(args.source_dir.resolve(), output_dir.resolve(), config)

        for resolved in resolve_tree(resolver):
            depth = resolved.directory.count("/") + 1 if resolved.directory else 0
            indent = "  " * depth
            print(f"{indent}{display_dir(resolved.directory)}/ -> {resolved.target.rel_artifact}")
            for target in resolved.compile_targets:
                print(f"{indent}  {target.source.name} -> {target.rel_object}")
            if args.verbose and resolved.ccflags:
                print(f"{indent}  ccflags: {' '.join(resolved.ccflags)}")
        sys.exit(0)

    except TreeBuildError as e:
        print()
        print("\033[1;31m✗ Resolution failed\033[0m")
        print()
        print(e.format())
        sys.exit(1)

    except KeyboardInterrupt:
        print()
        print("\033[1;33m✗ Interrupted\033[0m")
        sys.exit(130)


def clean_command(args: CleanArgs) -> None:
    """Remove generated build outputs.

    Examples:
        treebuild clean out            # Remove objects, records and archives
        treebuild clean out --dry-run  # Only list what would be removed
    """
    set_verbose(args.verbose)
    result = clean_output(args.output_dir, dry_run=args.dry_run)
    if not result.success:
        print()
        print("\033[1;31m✗ Clean incomplete\033[0m")
        for message in result.errors:
            print(f"  {message}")
        sys.exit(1)
    sys.exit(0)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid job count: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"job count must be at least 1, got {number}")
    return number


def _require_dir(path: Path) -> None:
    if not path.exists():
        print(f"\033[1;31m✗ Error: Path does not exist: {path}\033[0m")
        sys.exit(2)
    if not path.is_dir():
        print(f"\033[1;31m✗ Error: Path is not a directory: {path}\033[0m")
        sys.exit(2)


def _require_file(path: Path) -> None:
    if not path.is_file():
        print(f"\033[1;31m✗ Error: Config file not found: {path}\033[0m")
        sys.exit(2)


def main(argv: Optional[list[str]] = None) -> None:
    """treebuild - recursive, configuration-driven build orchestrator."""
    init_timer()

    parser = argparse.ArgumentParser(
        prog="treebuild",
        description="treebuild - recursive, configuration-driven build orchestrator",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"treebuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Build a source tree",
    )
    build_parser.add_argument("source_dir", type=Path, help="Root of the source tree")
    build_parser.add_argument("output_dir", type=Path, help="Root of the output tree")
    build_parser.add_argument(
        "-c",
        "--config",
        type=Path,
        required=True,
        help="Path to the .config file",
    )
    build_parser.add_argument(
        "-I",
        "--include",
        dest="include_dirs",
        type=Path,
        action="append",
        default=[],
        help="Include root passed to every compile (repeatable)",
    )
    build_parser.add_argument(
        "-j",
        "--jobs",
        type=_positive_int,
        default=None,
        help="Number of parallel jobs (default: $TREEBUILD_JOBS or CPU count)",
    )
    build_parser.add_argument(
        "--cc",
        default=None,
        help="C compiler (default: $CC or cc)",
    )
    build_parser.add_argument(
        "--cflag",
        dest="cflags",
        metavar="FLAG",
        action="append",
        default=[],
        help="Extra compiler flag for every unit, written with '=' since flags start with '-': --cflag=-O2 (repeatable)",
    )
    build_parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Stop launching new work after the first failure",
    )
    build_parser.add_argument(
        "-B",
        "--always-make",
        action="store_true",
        help="Rebuild every unit and archive",
    )
    build_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose build output",
    )
    build_parser.add_argument(
        "--no-tui",
        action="store_true",
        help="Disable the live progress display",
    )
    build_parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write all output to this file",
    )

    # Resolve command
    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Print the resolved build tree without compiling",
    )
    resolve_parser.add_argument("source_dir", type=Path, help="Root of the source tree")
    resolve_parser.add_argument(
        "output_dir",
        nargs="?",
        type=Path,
        default=None,
        help="Root of the output tree (default: build in the source tree)",
    )
    resolve_parser.add_argument(
        "-c",
        "--config",
        type=Path,
        required=True,
        help="Path to the .config file",
    )
    resolve_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Also show per-directory compiler flags",
    )

    # Clean command
    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove generated build outputs",
    )
    clean_parser.add_argument("output_dir", type=Path, help="Root of the output tree")
    clean_parser.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        help="Only list files that would be removed",
    )
    clean_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )

    # Parse arguments
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    # Validate paths
    if hasattr(parsed_args, "source_dir"):
        _require_dir(parsed_args.source_dir)
    if hasattr(parsed_args, "config"):
        _require_file(parsed_args.config)

    # Execute command
    if parsed_args.command == "build":
        build_args = BuildArgs(
            source_dir=parsed_args.source_dir,
            output_dir=parsed_args.output_dir,
            config=parsed_args.config,
            include_dirs=parsed_args.include_dirs,
            jobs=parsed_args.jobs if parsed_args.jobs is not None else default_jobs(),
            cc=parsed_args.cc,
            cflags=parsed_args.cflags,
            fail_fast=parsed_args.fail_fast,
            always_make=parsed_args.always_make,
            verbose=parsed_args.verbose,
            no_tui=parsed_args.no_tui,
            log_file=parsed_args.log_file,
        )
        build_command(build_args)
    elif parsed_args.command == "resolve":
        resolve_args = ResolveArgs(
            source_dir=parsed_args.source_dir,
            config=parsed_args.config,
            output_dir=parsed_args.output_dir,
            verbose=parsed_args.verbose,
        )
        resolve_command(resolve_args)
    elif parsed_args.command == "clean":
        clean_args = CleanArgs(
            output_dir=parsed_args.output_dir,
            dry_run=parsed_args.dry_run,
            verbose=parsed_args.verbose,
        )
        clean_command(clean_args)


if __name__ == "__main__":
    main()
