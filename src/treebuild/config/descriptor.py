"""Directory descriptor parsing (Kbuild-style object lists).

Each source directory carries a ``Kbuild`` file (or, failing that, a
``Makefile``) declaring which objects and subdirectories participate in the
build, conditioned on configuration flags:

    obj-y                += core.o
    obj-$(CONFIG_NET)    += net/ socket.o
    ccflags-$(CONFIG_DEBUG) := -DDEBUG \\
                               -g

Only ``obj-*`` and ``ccflags-*`` variables are interpreted; anything else is
ignored. The descriptor itself never consults the configuration while
parsing: it records each entry's condition, and active_entries() evaluates
those conditions against a BuildConfig snapshot.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..errors import DescriptorError
from .kconfig import ENABLED, BuildConfig

logger = logging.getLogger(__name__)

# Descriptor file names, in lookup order
DESCRIPTOR_NAMES = ("Kbuild", "Makefile")

_ASSIGN_RE = re.compile(r"^(?P<var>[A-Za-z0-9_.$()\-]+)\s*(?P<op>\+=|:=|\?=|=)\s*(?P<value>.*)$")
_SUFFIX_RE = re.compile(r"^(obj|ccflags)-(?P<cond>.*)$")
_FLAG_REF_RE = re.compile(r"^\$\((?P<flag>[A-Za-z0-9_]+)\)$")


@dataclass(frozen=True)
class ObjectListEntry:
    """A single identifier contributed by a directory descriptor.

    Attributes:
        name: Identifier with the file extension or trailing "/" removed
        is_dir: True for a DirEntry (subdirectory), False for a FileEntry
        condition: Flag the entry is conditioned on, None for unconditional entries
        spelling: The word exactly as written in the descriptor
    """

    name: str
    is_dir: bool
    condition: Optional[str] = None
    spelling: str = ""

    @property
    def identifier(self) -> str:
        """Identifier as shown in diagnostics (DirEntries keep their trailing slash)."""
        return f"{self.name}/" if self.is_dir else self.name


@dataclass(frozen=True)
class FlagEntry:
    """A compiler flag contributed by a ccflags-* assignment."""

    flag: str
    condition: Optional[str] = None


@dataclass(frozen=True)
class DirectoryDescriptor:
    """Parsed object list of one directory.

    Attributes:
        path: Descriptor file that was parsed
        entries: Object-list entries in declaration order (conditions unevaluated)
        ccflags: Compiler flag entries in declaration order
    """

    path: Path
    entries: tuple[ObjectListEntry, ...]
    ccflags: tuple[FlagEntry, ...] = ()

    def active_entries(self, config: BuildConfig) -> list[ObjectListEntry]:
        """Return entries whose condition evaluates to built-in (``y``)."""
        return [e for e in self.entries if _condition_holds(e.condition, config)]

    def active_ccflags(self, config: BuildConfig) -> list[str]:
        """Return enabled compiler flags in declaration order."""
        return [f.flag for f in self.ccflags if _condition_holds(f.condition, config)]


def _condition_holds(condition: Optional[str], config: BuildConfig) -> bool:
    if condition is None:
        return True
    return config.expand(condition) == ENABLED


def find_descriptor(directory: Path) -> Optional[Path]:
    """Return the descriptor file of a directory, or None if it has none."""
    for name in DESCRIPTOR_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def _logical_lines(text: str) -> list[tuple[int, str]]:
    """Join backslash continuations and strip comments.

    Returns:
        (starting line number, logical line) pairs for non-empty lines
    """
    lines: list[tuple[int, str]] = []
    pending = ""
    start = 0

    for line_num, raw in enumerate(text.splitlines(), start=1):
        if not pending:
            start = line_num
        hash_pos = raw.find("#")
        if hash_pos >= 0:
            raw = raw[:hash_pos]
        stripped = raw.rstrip()
        if stripped.endswith("\\"):
            pending += stripped[:-1] + " "
            continue
        logical = (pending + stripped).strip()
        pending = ""
        if logical:
            lines.append((start, logical))

    if pending.strip():
        lines.append((start, pending.strip()))
    return lines


def _parse_condition(suffix: str, where: str, line_num: int) -> tuple[bool, Optional[str]]:
    """Interpret the part after ``obj-``/``ccflags-``.

    Returns:
        (built_in, condition): built_in is False for fixed non-built-in
        suffixes such as ``obj-m`` or ``obj-n``; condition is the flag name
        for ``$(CONFIG_X)`` references.
    """
    if suffix == "y":
        return True, None
    ref = _FLAG_REF_RE.match(suffix)
    if ref:
        return True, ref.group("flag")
    if suffix and "$" in suffix:
        raise DescriptorError(f"Unsupported variable reference on line {line_num}: {suffix!r}", entry=where)
    return False, None


def _parse_word(word: str, condition: Optional[str], where: str, line_num: int) -> ObjectListEntry:
    if word.endswith("/"):
        name = word.rstrip("/")
        if not name:
            raise DescriptorError(f"Empty directory entry on line {line_num}", entry=where)
        return ObjectListEntry(name=name, is_dir=True, condition=condition, spelling=word)

    stem, dot, _ = word.rpartition(".")
    name = stem if dot and stem else word
    return ObjectListEntry(name=name, is_dir=False, condition=condition, spelling=word)


def parse_descriptor(text: str, path: Path) -> DirectoryDescriptor:
    """Parse descriptor text.

    Args:
        text: Descriptor contents
        path: Descriptor path, used for diagnostics

    Returns:
        DirectoryDescriptor with unevaluated conditions

    Raises:
        DescriptorError: On an unsupported variable reference or empty entry
    """
    where = str(path)
    entries: list[ObjectListEntry] = []
    ccflags: list[FlagEntry] = []

    for line_num, line in _logical_lines(text):
        match = _ASSIGN_RE.match(line)
        if match is None:
            logger.debug(f"{where}:{line_num}: ignoring non-assignment line")
            continue

        var_match = _SUFFIX_RE.match(match.group("var"))
        if var_match is None:
            continue

        built_in, condition = _parse_condition(var_match.group("cond"), where, line_num)
        if not built_in:
            logger.debug(f"{where}:{line_num}: skipping {match.group('var')} (not built-in)")
            continue

        op = match.group("op")
        words = match.group("value").split()
        if match.group("var").startswith("obj-"):
            if op == "?=" and any(e.condition == condition for e in entries):
                continue
            if op in (":=", "="):
                entries = [e for e in entries if e.condition != condition]
            entries.extend(_parse_word(word, condition, where, line_num) for word in words)
        else:
            if op == "?=" and any(f.condition == condition for f in ccflags):
                continue
            if op in (":=", "="):
                ccflags = [f for f in ccflags if f.condition != condition]
            ccflags.extend(FlagEntry(flag=word, condition=condition) for word in words)

    return DirectoryDescriptor(path=path, entries=tuple(entries), ccflags=tuple(ccflags))


def load_descriptor(directory: Path, rel_dir: str = "") -> DirectoryDescriptor:
    """Locate and parse the descriptor of a source directory.

    Args:
        directory: Absolute source directory
        rel_dir: Source-relative directory, used for diagnostics

    Raises:
        DescriptorError: If no descriptor exists or it cannot be read or parsed
    """
    path = find_descriptor(directory)
    if path is None:
        raise DescriptorError(
            f"No descriptor ({' or '.join(DESCRIPTOR_NAMES)}) found in {directory}",
            directory=rel_dir,
        )

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DescriptorError(f"Cannot read descriptor {path}: {e}", directory=rel_dir) from e

    try:
        descriptor = parse_descriptor(text, path)
    except DescriptorError as e:
        e.directory = rel_dir
        raise

    logger.debug(f"Parsed {path}: {len(descriptor.entries)} entries, {len(descriptor.ccflags)} flags")
    return descriptor
