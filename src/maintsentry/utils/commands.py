"""Command execution helpers layered on the injectable OSInterface."""
from __future__ import annotations

import logging
from typing import Sequence

from ..core.errors import CommandExecutionError
from ..core.interfaces import CommandResult, OSInterface

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0

# Package managers resolve dependencies and download metadata
SLOW_COMMANDS = {
    "apt-get": 300.0,
    "dnf": 300.0,
    "brew": 300.0,
}


def get_suggested_timeout(command: Sequence[str]) -> float:
    """Suggested timeout for a command based on known slow commands."""
    if not command:
        return _DEFAULT_TIMEOUT
    return SLOW_COMMANDS.get(command[0], _DEFAULT_TIMEOUT)


def run_checked(
    os_interface: OSInterface,
    command: Sequence[str],
    timeout: float | None = None,
) -> CommandResult:
    """Run a command and raise CommandExecutionError unless it exits 0."""
    if not command:
        raise ValueError("Command must not be empty")
    result = os_interface.run_command(command, timeout=timeout or get_suggested_timeout(command))
    if result.timed_out or result.returncode != 0:
        raise CommandExecutionError(
            command,
            result.stdout,
            result.stderr,
            result.returncode,
            timed_out=result.timed_out,
        )
    return result
