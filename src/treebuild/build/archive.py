"""Aggregate artifacts as deterministic GNU thin archives.

Every directory's compiled units and its children's aggregates are combined
into one ``built-in.a``. The file uses the GNU thin-archive layout (what
``ar cDPrST`` produces): members are referenced by path instead of being
copied, and timestamps, owners and modes are zeroed, so the same inputs in
the same order always produce the same bytes:

    !<thin>\\n
    //              <blank fields>        <table size>`\\n   extended name table
    alpha.o/\\n beta/built-in.a/\\n ...
    /0              0     0     0     644     <size>`\\n   one header per member
    /9              ...
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from ..errors import AggregationError
from .models import AggregateArtifact, CompiledUnit, ResolvedDirectory, display_dir

logger = logging.getLogger(__name__)

THIN_MAGIC = b"!<thin>\n"
_HEADER_SIZE = 60
_HEADER_END = b"`\n"


@dataclass(frozen=True)
class ThinMember:
    """One member entry of a thin archive."""

    name: str
    size: int


def _field(value: str, width: int) -> bytes:
    encoded = value.encode("utf-8")
    if len(encoded) > width:
        raise ValueError(f"archive header field {value!r} exceeds {width} bytes")
    return encoded.ljust(width, b" ")


def _header(name: str, size: int, deterministic_fields: bool = True) -> bytes:
    if deterministic_fields:
        meta = _field("0", 12) + _field("0", 6) + _field("0", 6) + _field("644", 8)
    else:
        meta = b" " * 32
    return _field(name, 16) + meta + _field(str(size), 10) + _HEADER_END


def render_thin_archive(archive_path: Path, members: Sequence[Path]) -> bytes:
    """Render thin-archive bytes for the given members.

    Args:
        archive_path: Where the archive will live; member names are stored
            relative to its directory
        members: Member files in composition order (must exist)

    Returns:
        Archive contents

    Raises:
        OSError: If a member cannot be stat'ed
    """
    if not members:
        return THIN_MAGIC

    base = archive_path.parent
    table = bytearray()
    offsets: list[int] = []
    for member in members:
        offsets.append(len(table))
        table += (_relative_name(member, base) + "/\n").encode("utf-8")
    if len(table) % 2:
        table += b"\n"

    out = bytearray(THIN_MAGIC)
    out += _header("//", len(table), deterministic_fields=False)
    out += table
    for member, offset in zip(members, offsets):
        out += _header(f"/{offset}", member.stat().st_size)
    return bytes(out)


def _relative_name(member: Path, base: Path) -> str:
    try:
        return member.relative_to(base).as_posix()
    except ValueError:
        return member.as_posix()


def parse_thin_archive(data: bytes) -> list[ThinMember]:
    """Parse thin-archive bytes into member entries.

    Raises:
        ValueError: If the data is not a well-formed thin archive
    """
    if not data.startswith(THIN_MAGIC):
        raise ValueError("not a thin archive (bad magic)")

    pos = len(THIN_MAGIC)
    names = b""
    members: list[ThinMember] = []

    while pos < len(data):
        header = data[pos : pos + _HEADER_SIZE]
        if len(header) < _HEADER_SIZE or header[58:60] != _HEADER_END:
            raise ValueError(f"truncated or corrupt member header at offset {pos}")
        name = header[0:16].decode("utf-8").rstrip()
        size = int(header[48:58].decode("ascii").strip() or 0)
        pos += _HEADER_SIZE

        if name == "//":
            names = data[pos : pos + size]
            pos += size + (size % 2)
            continue

        if not name.startswith("/") or not name[1:].isdigit():
            raise ValueError(f"unexpected member name {name!r}")
        offset = int(name[1:])
        end = names.find(b"/\n", offset)
        if end < 0:
            raise ValueError(f"member name offset {offset} outside name table")
        members.append(ThinMember(name=names[offset:end].decode("utf-8"), size=size))

    return members


def read_thin_archive(path: Path) -> list[ThinMember]:
    """Read the member list of a thin archive on disk."""
    return parse_thin_archive(path.read_bytes())


class Aggregator:
    """Produces one built-in.a per directory.

    Args:
        force: Rewrite every archive regardless of its inputs
    """

    def __init__(self, force: bool = False) -> None:
        self.force = force

    def aggregate(
        self,
        resolved: ResolvedDirectory,
        units: Iterable[CompiledUnit],
        children: Iterable[AggregateArtifact],
        inputs_changed: bool = False,
    ) -> AggregateArtifact:
        """Combine a directory's units and child artifacts.

        The archive is rewritten if it is missing, forced, any input was
        rebuilt in this run (inputs_changed), any member is newer than it, or
        its bytes would differ. Otherwise the existing archive is reused.

        Args:
            resolved: The directory's resolution (defines composition order)
            units: Compiled units of this directory
            children: Aggregate artifacts of the directory's DirEntry children
            inputs_changed: True if any unit or child was rebuilt in this run

        Returns:
            The directory's AggregateArtifact

        Raises:
            AggregationError: If inputs do not match the resolution, a member
                is missing, or the archive cannot be written
        """
        target = resolved.target
        where = display_dir(target.directory)

        expected = set(resolved.composition)
        supplied = {u.target.object_path for u in units} | {c.path for c in children}
        if supplied != expected:
            missing = sorted(str(p) for p in expected - supplied)
            extra = sorted(str(p) for p in supplied - expected)
            raise AggregationError(
                f"Inputs do not match resolved entries (missing: {missing}, unexpected: {extra})",
                directory=target.directory,
                entry=target.rel_artifact,
            )

        members = resolved.composition
        archive = target.artifact_path
        try:
            content = render_thin_archive(archive, members)
        except OSError as e:
            raise AggregationError(f"Member unavailable for {where}: {e}", directory=target.directory, entry=target.rel_artifact) from e

        if not self.force and not inputs_changed and self._is_current(archive, members, content):
            logger.debug(f"Reusing {target.rel_artifact}")
            return AggregateArtifact(target=target, members=members, rebuilt=False)

        try:
            target.output_dir.mkdir(parents=True, exist_ok=True)
            temp_file = archive.with_name(archive.name + ".tmp")
            temp_file.write_bytes(content)
            temp_file.replace(archive)
        except OSError as e:
            raise AggregationError(f"Cannot write {archive}: {e}", directory=target.directory, entry=target.rel_artifact) from e

        logger.debug(f"Wrote {target.rel_artifact} ({len(members)} members)")
        return AggregateArtifact(target=target, members=members, rebuilt=True)

    @staticmethod
    def _is_current(archive: Path, members: Sequence[Path], content: bytes) -> bool:
        try:
            archive_mtime = archive.stat().st_mtime_ns
            if archive.read_bytes() != content:
                return False
            return all(m.stat().st_mtime_ns <= archive_mtime for m in members)
        except OSError:
            return False
