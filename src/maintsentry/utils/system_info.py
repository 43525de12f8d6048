"""Host metadata for the report header."""
from __future__ import annotations

import getpass
import logging
import os
import platform
import socket
import sys
from pathlib import Path
from typing import Dict, Optional

from ..core.interfaces import OSInterface
from ..core.resilience import with_graceful_degradation
from ..tasks.types import Source
from .parsers import parse_os_release

logger = logging.getLogger(__name__)

OS_RELEASE_PATHS = (Path("/etc/os-release"), Path("/usr/lib/os-release"))

# Probed in order; the first one found on PATH wins
PACKAGE_MANAGERS = (
    ("dpkg-query", Source.APT),
    ("rpm", Source.RPM),
    ("brew", Source.HOMEBREW),
)


def _os_name(os_interface: OSInterface) -> str:
    for path in OS_RELEASE_PATHS:
        content = os_interface.read_file(path)
        if content:
            release = parse_os_release(content)
            name = release.get("PRETTY_NAME") or release.get("NAME")
            if name:
                return name
    return f"{platform.system()} {platform.release()}".strip()


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


@with_graceful_degradation(
    default_return={"hostname": "unknown"},
    error_message="Could not collect host information",
)
def collect_host_info(os_interface: OSInterface) -> Dict[str, str]:
    """Collect host facts shown in the report. Never raises."""
    return {
        "hostname": socket.gethostname(),
        "os": _os_name(os_interface),
        "kernel": platform.release(),
        "architecture": platform.machine() or "unknown",
        "cpu_count": str(os.cpu_count() or 1),
        "python": platform.python_version(),
        "user": _current_user(),
        "executable": sys.executable,
    }


def detect_package_manager(os_interface: OSInterface) -> Optional[Source]:
    """Return the Source of the first package manager found on PATH."""
    for executable, source in PACKAGE_MANAGERS:
        if os_interface.which(executable):
            logger.debug("Using package manager %s", executable)
            return source
    return None
