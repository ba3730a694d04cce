"""Kconfig-style configuration source.

Parses a flat ``.config`` file produced by a separate configuration tool:

    CONFIG_NET=y
    CONFIG_HOSTNAME="buildhost"
    CONFIG_LOG_LEVEL=4
    # CONFIG_USB is not set

The result is an immutable BuildConfig snapshot. The build core never
mutates it; it is passed explicitly into every recursive directory build.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

_ASSIGN_RE = re.compile(r"^(CONFIG_[A-Za-z0-9_]+)=(.*)$")
_NOT_SET_RE = re.compile(r"^#\s*(CONFIG_[A-Za-z0-9_]+) is not set\s*$")

ENABLED = "y"
DISABLED = "n"


@dataclass(frozen=True)
class BuildConfig:
    """Read-only mapping of configuration flag names to values.

    Values are stored as strings exactly as written in the .config file, with
    surrounding double quotes removed from string values. A flag is enabled
    only when its value is ``y``.

    Attributes:
        values: Flag name -> value (read-only view)
        source: File the snapshot was loaded from, if any
    """

    values: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    source: Optional[Path] = None

    @classmethod
    def from_mapping(cls, flags: Mapping[str, Union[str, bool, int]], source: Optional[Path] = None) -> "BuildConfig":
        """Create a snapshot from a plain mapping.

        Booleans map to ``y``/``n``; other values are converted with ``str()``.
        The input mapping is copied, so later changes to it are not observed.
        """
        values: dict[str, str] = {}
        for name, value in flags.items():
            if isinstance(value, bool):
                values[name] = ENABLED if value else DISABLED
            else:
                values[name] = str(value)
        return cls(values=MappingProxyType(values), source=source)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the raw value of a flag, or default when unset."""
        return self.values.get(name, default)

    def is_enabled(self, name: str) -> bool:
        """Check whether a flag is set to ``y``."""
        return self.values.get(name) == ENABLED

    def expand(self, name: str) -> str:
        """Expand ``$(name)`` the way make would: the value, or empty when unset."""
        return self.values.get(name, "")

    def enabled_flags(self) -> frozenset[str]:
        """Return the set of flags whose value is ``y``."""
        return frozenset(name for name, value in self.values.items() if value == ENABLED)

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def __len__(self) -> int:
        return len(self.values)


def parse_config(text: str, source: Optional[Path] = None) -> BuildConfig:
    """Parse .config text into a BuildConfig.

    Args:
        text: File contents
        source: Path used in error messages

    Returns:
        Immutable configuration snapshot

    Raises:
        ConfigurationError: If a non-comment line is not a CONFIG_ assignment
    """
    values: dict[str, str] = {}
    where = str(source) if source else "<config>"

    for line_num, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue

        not_set = _NOT_SET_RE.match(line)
        if not_set:
            values[not_set.group(1)] = DISABLED
            continue
        if line.startswith("#"):
            continue

        match = _ASSIGN_RE.match(line)
        if match is None:
            raise ConfigurationError(f"Malformed configuration line {line_num}: {raw_line!r}", entry=where)

        name, value = match.group(1), match.group(2).strip()
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        values[name] = value

    logger.debug(f"Parsed {len(values)} configuration flags from {where}")
    return BuildConfig(values=MappingProxyType(values), source=source)


def load_config(path: Path) -> BuildConfig:
    """Load a .config file once at process start.

    Args:
        path: Path to the configuration file

    Returns:
        Immutable configuration snapshot

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed
    """
    if not path.is_file():
        raise ConfigurationError(f"Configuration file not found: {path}", entry=str(path))

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}", entry=str(path)) from e

    config = parse_config(text, source=path)
    logger.info(f"Loaded {len(config.enabled_flags())} enabled flags ({len(config)} total) from {path}")
    return config
