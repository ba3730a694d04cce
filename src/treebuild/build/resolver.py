"""Build list resolver.

Turns a directory's descriptor into concrete build targets:

1. Evaluate each entry's condition against the BuildConfig snapshot
2. Classify entries into files to compile and subdirectories to descend into
3. Check every entry against the source tree (fail fast on the first bad one)
4. Rewrite the list so each subdirectory is represented by the path of its
   not-yet-built built-in.a, then stable-sort it into composition order

The resolver is pure with respect to the output tree: it only reads the
source tree, so resolving the same tree twice yields identical results.
"""

import logging
from dataclasses import dataclass, replace
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

from ..config.descriptor import DirectoryDescriptor, ObjectListEntry, load_descriptor
from ..config.kconfig import BuildConfig
from ..errors import ResolutionError
from .models import (
    SOURCE_SUFFIXES,
    AggregateTarget,
    CompileTarget,
    ResolvedDirectory,
    display_dir,
    join_rel,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildListResolver:
    """Resolves directory descriptors into build targets.

    Attributes:
        source_root: Root of the source tree
        output_root: Root of the output tree (mirrors the source tree)
        config: Configuration snapshot used to evaluate entry conditions
    """

    source_root: Path
    output_root: Path
    config: BuildConfig

    def aggregate_target(self, directory: str) -> AggregateTarget:
        """Return the aggregate target of a source-relative directory."""
        rel = Path(*PurePosixPath(directory).parts) if directory else Path()
        return AggregateTarget(
            directory=directory,
            source_dir=self.source_root / rel,
            output_dir=self.output_root / rel,
        )

    def load(self, directory: str) -> DirectoryDescriptor:
        """Load the descriptor of a source-relative directory."""
        return load_descriptor(self.aggregate_target(directory).source_dir, directory)

    def resolve(self, directory: str, descriptor: Optional[DirectoryDescriptor] = None) -> ResolvedDirectory:
        """Resolve one directory.

        Args:
            directory: Source-relative directory ("" for the root)
            descriptor: Pre-loaded descriptor; loaded from disk when None

        Returns:
            ResolvedDirectory with compile targets, sorted subdirectories and
            the composition order of its aggregate

        Raises:
            DescriptorError: If the descriptor is missing or malformed
            ResolutionError: On the first entry that matches neither a source
                file nor a subdirectory
        """
        target = self.aggregate_target(directory)
        if descriptor is None:
            descriptor = self.load(directory)

        files: dict[str, CompileTarget] = {}
        subdirs: dict[str, AggregateTarget] = {}

        for entry in descriptor.active_entries(self.config):
            # "beta/" and "./beta/" name the same directory
            entry = replace(entry, name=PurePosixPath(entry.name).as_posix())
            if entry.is_dir:
                if entry.name not in subdirs:
                    subdirs[entry.name] = self._resolve_dir(target, entry)
            elif entry.name not in files:
                files[entry.name] = self._resolve_file(target, entry)

        subdirectories = tuple(subdirs[name] for name in sorted(subdirs))
        compile_targets = tuple(files.values())

        composition = sorted(
            [t.object_path for t in compile_targets] + [s.artifact_path for s in subdirectories],
            key=lambda p: p.relative_to(target.output_dir).as_posix(),
        )

        resolved = ResolvedDirectory(
            target=target,
            compile_targets=compile_targets,
            subdirectories=subdirectories,
            composition=tuple(composition),
            ccflags=tuple(descriptor.active_ccflags(self.config)),
        )
        logger.debug(f"Resolved {display_dir(directory)}: {len(compile_targets)} files, {len(subdirectories)} subdirectories")
        return resolved

    def _resolve_file(self, target: AggregateTarget, entry: ObjectListEntry) -> CompileTarget:
        rel_name = PurePosixPath(entry.name)
        if rel_name.is_absolute() or ".." in rel_name.parts:
            raise ResolutionError(
                f"File entry '{entry.spelling}' escapes its directory",
                directory=target.directory,
                entry=entry.identifier,
            )

        source = self._find_source(target.source_dir, entry)
        if source is None:
            if (target.source_dir / entry.name).is_dir():
                raise ResolutionError(
                    f"'{entry.spelling}' names a directory; directory entries need a trailing '/'",
                    directory=target.directory,
                    entry=entry.identifier,
                )
            raise ResolutionError(
                f"No source file for '{entry.spelling}' (tried {', '.join(entry.name + s for s in SOURCE_SUFFIXES)})",
                directory=target.directory,
                entry=entry.identifier,
            )

        object_path = target.output_dir / Path(*rel_name.parts).with_name(f"{rel_name.name}.o")
        return CompileTarget(
            directory=target.directory,
            name=entry.name,
            source=source,
            object_path=object_path,
            record_path=object_path.with_name(f".{rel_name.name}.o.cmd"),
        )

    def _find_source(self, source_dir: Path, entry: ObjectListEntry) -> Optional[Path]:
        # "alpha.c" written explicitly wins over suffix lookup
        if entry.spelling and entry.spelling != entry.name and not entry.spelling.endswith(".o"):
            exact = source_dir / entry.spelling
            if exact.is_file():
                return exact
        for suffix in SOURCE_SUFFIXES:
            candidate = source_dir / f"{entry.name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def _resolve_dir(self, target: AggregateTarget, entry: ObjectListEntry) -> AggregateTarget:
        rel = PurePosixPath(entry.name)
        if rel.is_absolute() or ".." in rel.parts:
            raise ResolutionError(
                f"Directory entry '{entry.spelling}' escapes its parent directory",
                directory=target.directory,
                entry=entry.identifier,
            )

        child = self.aggregate_target(join_rel(target.directory, rel.as_posix()))
        if not child.source_dir.is_dir():
            raise ResolutionError(
                f"Subdirectory '{entry.spelling}' does not exist",
                directory=target.directory,
                entry=entry.identifier,
            )

        # A symlink back to an ancestor would make the tree infinite
        parent_real = target.source_dir.resolve()
        child_real = child.source_dir.resolve()
        if parent_real == child_real or parent_real.is_relative_to(child_real):
            raise ResolutionError(
                f"Subdirectory '{entry.spelling}' loops back to an ancestor ({child_real})",
                directory=target.directory,
                entry=entry.identifier,
            )
        return child


def resolve_tree(resolver: BuildListResolver, directory: str = "") -> Iterator[ResolvedDirectory]:
    """Resolve a whole subtree depth-first without compiling anything.

    Yields directories parent-first, children in sorted order. Stops at the
    first ResolutionError or DescriptorError, which propagates to the caller.
    """
    resolved = resolver.resolve(directory)
    yield resolved
    for child in resolved.subdirectories:
        yield from resolve_tree(resolver, child.directory)
