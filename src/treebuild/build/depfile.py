"""Dependency records and the incremental staleness rule.

Each compiled unit is accompanied by a dependency record (``.<stem>.o.cmd``)
holding the exact command that produced it and every auxiliary file the
compiler observed. A later run uses the record to decide whether the unit
can be reused:

    reuse  iff  object exists
           and  record loads and matches the current command
           and  source + every recorded dependency exist
           and  none of them is newer than the object

Anything missing or unreadable means "rebuild"; the check never guesses in
favour of reuse.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)

RECORD_VERSION = 1


@dataclass(frozen=True)
class DependencyRecord:
    """Persisted dependency information for one compiled unit.

    Attributes:
        source: Source file that was compiled
        command: Full compiler command line
        dependencies: Auxiliary files observed during compilation (headers),
            excluding the source itself
    """

    source: str
    command: tuple[str, ...]
    dependencies: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "version": RECORD_VERSION,
            "source": self.source,
            "command": list(self.command),
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DependencyRecord":
        """Deserialize from dictionary.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        if data.get("version") != RECORD_VERSION:
            raise ValueError(f"unsupported record version {data.get('version')!r}")
        source = data["source"]
        command = data["command"]
        deps = data["dependencies"]
        if not isinstance(source, str) or not isinstance(command, list) or not isinstance(deps, list):
            raise TypeError("malformed dependency record")
        if not all(isinstance(x, str) for x in command + deps):
            raise TypeError("malformed dependency record")
        return cls(source=source, command=tuple(command), dependencies=tuple(deps))

    def save(self, path: Path) -> None:
        """Write the record atomically (temp file + rename).

        Raises:
            OSError: If the record cannot be written
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = path.with_name(path.name + ".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        temp_file.replace(path)

    @classmethod
    def load(cls, path: Path) -> Optional["DependencyRecord"]:
        """Load a record, returning None if it is missing or malformed."""
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed dependency record {path}: {e}")
            return None


def parse_make_depfile(text: str) -> list[str]:
    """Extract prerequisites from a make-style depfile (``cc -MD`` output).

    Handles backslash line continuations, ``\\ `` escaped spaces, ``$$``
    escapes and the phony ``header.h:`` rules emitted by ``-MP``. Every
    prerequisite is returned once, in first-seen order.

    Args:
        text: Depfile contents

    Returns:
        Prerequisite paths as written by the compiler
    """
    joined = text.replace("\\\r\n", " ").replace("\\\n", " ")
    seen: dict[str, None] = {}

    for line in joined.splitlines():
        tokens = _split_depfile_words(line)
        if not tokens:
            continue
        # First token(s) up to the one ending in ':' are targets
        for i, token in enumerate(tokens):
            if token.endswith(":"):
                for dep in tokens[i + 1 :]:
                    seen.setdefault(dep, None)
                break
    return list(seen)


def _split_depfile_words(line: str) -> list[str]:
    words: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\" and i + 1 < len(line) and line[i + 1] in " #":
            current.append(line[i + 1])
            i += 2
            continue
        if ch == "$" and i + 1 < len(line) and line[i + 1] == "$":
            current.append("$")
            i += 2
            continue
        if ch in " \t":
            if current:
                words.append("".join(current))
                current = []
        else:
            current.append(ch)
        i += 1
    if current:
        words.append("".join(current))

    # A lone ":" separator after a target ("obj.o : dep.h")
    merged: list[str] = []
    for word in words:
        if word == ":" and merged:
            merged[-1] += ":"
        else:
            merged.append(word)
    return merged


def needs_rebuild(source: Path, object_path: Path, record_path: Path, command: Sequence[str]) -> tuple[bool, str]:
    """Decide whether a unit must be recompiled.

    Args:
        source: Source file of the unit
        object_path: Existing (or missing) compiled unit
        record_path: Dependency record stored beside the unit
        command: Command line the unit would be compiled with now

    Returns:
        (rebuild, reason)
    """
    try:
        object_mtime = object_path.stat().st_mtime_ns
    except OSError:
        return True, "object missing"

    record = DependencyRecord.load(record_path)
    if record is None:
        return True, "dependency record missing"

    if tuple(command) != record.command:
        return True, "command line changed"

    for dep in (str(source), *record.dependencies):
        try:
            dep_mtime = os.stat(dep).st_mtime_ns
        except OSError:
            return True, f"dependency missing: {dep}"
        if dep_mtime > object_mtime:
            return True, f"newer prerequisite: {dep}"

    return False, "up to date"
