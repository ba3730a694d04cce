"""Compilation engine.

The engine is the boundary to the external compiler. For every CompileTarget
it:

1. Builds the compile command for the target (the compiler decides its shape)
2. Checks the unit's dependency record against the staleness rule
3. Reuses the previous object, or runs the compiler and records the
   auxiliary files it observed

Compilers implement the small Compiler protocol; GccCompiler drives any
gcc/clang-compatible ``cc`` and reads back the make-style depfile written by
``-MD -MF``.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

from ..errors import CompileError
from ..subprocess_utils import run_tool
from .depfile import DependencyRecord, needs_rebuild, parse_make_depfile
from .models import CompiledUnit, CompileTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompileRequest:
    """Everything a compiler needs to produce one unit.

    Attributes:
        target: Target being compiled
        include_paths: Include roots, shared unchanged by the whole tree
        flags: Extra compiler flags (global flags followed by per-directory ccflags)
    """

    target: CompileTarget
    include_paths: tuple[Path, ...] = ()
    flags: tuple[str, ...] = ()

    @property
    def source(self) -> Path:
        return self.target.source

    @property
    def object_path(self) -> Path:
        return self.target.object_path

    @property
    def depfile_path(self) -> Path:
        """Scratch depfile the compiler writes next to the object."""
        return self.object_path.with_name(f".{self.object_path.name}.d")


@runtime_checkable
class Compiler(Protocol):
    """Protocol for the external compiler behind the engine."""

    def command_line(self, request: CompileRequest) -> list[str]:
        """Return the command that compiles the request.

        The command is stored in the dependency record; a different command
        on a later run forces recompilation.
        """
        ...

    def compile(self, request: CompileRequest) -> list[Path]:
        """Compile one unit, writing request.object_path.

        Returns:
            Auxiliary files (headers) observed during compilation

        Raises:
            CompileError: If compilation fails
        """
        ...


class GccCompiler:
    """gcc/clang-compatible compiler driver.

    Args:
        cc: Compiler executable (e.g. "cc", "gcc", "clang", "arm-none-eabi-gcc")
        base_flags: Flags placed before everything else on every command
        timeout: Seconds before a single compile is killed (None = no limit)
    """

    def __init__(self, cc: str = "cc", base_flags: Sequence[str] = (), timeout: Optional[float] = None) -> None:
        self.cc = cc
        self.base_flags = tuple(base_flags)
        self.timeout = timeout

    def command_line(self, request: CompileRequest) -> list[str]:
        cmd = [self.cc, *self.base_flags, *request.flags]
        cmd.extend(f"-I{path}" for path in request.include_paths)
        cmd.extend(["-MD", "-MF", str(request.depfile_path)])
        cmd.extend(["-c", str(request.source), "-o", str(request.object_path)])
        return cmd

    def compile(self, request: CompileRequest) -> list[Path]:
        cmd = self.command_line(request)
        target = request.target

        try:
            result = run_tool(cmd, timeout=self.timeout)
        except FileNotFoundError as e:
            raise CompileError(f"Compiler not found: {self.cc}", directory=target.directory, entry=str(target.source)) from e
        except subprocess.TimeoutExpired as e:
            raise CompileError(
                f"Compilation timed out after {self.timeout}s",
                directory=target.directory,
                entry=str(target.source),
            ) from e

        if result.returncode != 0:
            raise CompileError(
                f"{self.cc} exited with code {result.returncode}",
                directory=target.directory,
                entry=str(target.source),
                diagnostic=result.stderr or result.stdout,
            )
        if result.stderr:
            logger.info(f"{target.source}: {result.stderr.strip()}")

        depfile = request.depfile_path
        try:
            deps = parse_make_depfile(depfile.read_text(encoding="utf-8"))
        except OSError:
            # No depfile only costs incrementality: the record lists no headers
            logger.warning(f"{self.cc} did not write {depfile}; header changes will not be tracked for {target.source}")
            deps = []
        finally:
            depfile.unlink(missing_ok=True)

        source = str(request.source)
        return [Path(d) for d in deps if d != source]


class CompilationEngine:
    """Builds compile targets incrementally.

    Args:
        compiler: Compiler implementation
        force: Rebuild every unit regardless of its dependency record
    """

    def __init__(self, compiler: Compiler, force: bool = False) -> None:
        self.compiler = compiler
        self.force = force

    def build_unit(self, target: CompileTarget, include_paths: Sequence[Path] = (), flags: Sequence[str] = ()) -> CompiledUnit:
        """Compile a target, or reuse its previous output if it is up to date.

        Args:
            target: Target to build
            include_paths: Include roots passed unchanged to every unit
            flags: Extra compiler flags

        Returns:
            CompiledUnit describing what happened

        Raises:
            CompileError: If the compiler fails or its outputs cannot be stored
        """
        request = CompileRequest(target=target, include_paths=tuple(include_paths), flags=tuple(flags))
        command = self.compiler.command_line(request)

        if self.force:
            rebuild, reason = True, "forced"
        else:
            rebuild, reason = needs_rebuild(target.source, target.object_path, target.record_path, command)

        if not rebuild:
            record = DependencyRecord.load(target.record_path)
            deps = record.dependencies if record is not None else ()
            logger.debug(f"Reusing {target.rel_object}")
            return CompiledUnit(target=target, rebuilt=False, reason=reason, dependencies=deps)

        logger.debug(f"Compiling {target.rel_object} ({reason})")
        try:
            target.object_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CompileError(f"Cannot create output directory: {e}", directory=target.directory, entry=str(target.source)) from e

        # A stale record must not vouch for a half-written object
        target.record_path.unlink(missing_ok=True)
        try:
            deps = self.compiler.compile(request)
        except CompileError:
            target.object_path.unlink(missing_ok=True)
            raise

        if not target.object_path.is_file():
            raise CompileError(
                f"Compiler reported success but wrote no object {target.object_path}",
                directory=target.directory,
                entry=str(target.source),
            )

        record = DependencyRecord(
            source=str(target.source),
            command=tuple(command),
            dependencies=tuple(str(d) for d in deps),
        )
        try:
            record.save(target.record_path)
        except OSError as e:
            raise CompileError(f"Cannot write dependency record: {e}", directory=target.directory, entry=str(target.source)) from e

        return CompiledUnit(target=target, rebuilt=True, reason=reason, dependencies=record.dependencies)
