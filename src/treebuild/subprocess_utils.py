"""Subprocess utilities for running external build tools.

Wraps subprocess.run so every tool invocation gets the same treatment:
captured text output, stdin detached from the terminal, an optional
timeout, and (on Windows) no console window per compile.
"""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW  # type: ignore[attr-defined]
    return 0


def run_tool(cmd: list[str], cwd: Optional[Path] = None, timeout: Optional[float] = None, **kwargs: Any) -> subprocess.CompletedProcess:
    """Run a build tool and capture its output.

    stdin is redirected to DEVNULL so parallel tool processes never compete
    for terminal input, and output is captured as text so it can be attached
    to error reports.

    Args:
        cmd: Command and arguments
        cwd: Working directory for the tool
        timeout: Seconds before the tool is killed (None = no limit)
        **kwargs: Additional arguments passed to subprocess.run

    Returns:
        CompletedProcess with stdout/stderr as text

    Raises:
        FileNotFoundError: If the tool executable does not exist
        subprocess.TimeoutExpired: If the tool exceeds the timeout
    """
    default_flags = get_subprocess_creation_flags()
    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    kwargs.setdefault("stdin", subprocess.DEVNULL)

    logger.debug(f"Running: {' '.join(cmd[:3])}... ({len(cmd)} args)")
    return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, timeout=timeout, **kwargs)
