"""Error taxonomy for the maintenance session pipeline.

Only ConfigurationError is fatal to a session. Every other error is caught
at its component boundary and recorded into a TaskResult or LogEntry.
"""
from __future__ import annotations

import shlex
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from ..tasks.types import WorkItem


class MaintenanceError(Exception):
    """Base class for all maintsentry errors."""


class ConfigurationError(MaintenanceError):
    """No valid allow-list or settings; aborts the session before any task runs."""


class DetectionError(MaintenanceError):
    """An audit task could not detect system state."""


class ActionItemError(MaintenanceError):
    """Acting on a single work item failed."""

    def __init__(self, item: "WorkItem", message: str) -> None:
        super().__init__(f"{item.name}: {message}")
        self.item = item
        self.reason = message


class TemplateResolutionError(MaintenanceError):
    """A template source could not be read or was unusable."""


class NormalizationError(MaintenanceError):
    """A log line did not match the execution log grammar."""

    def __init__(self, message: str, line: str = "") -> None:
        super().__init__(message)
        self.line = line


class TaskTimeoutError(MaintenanceError):
    """A task exceeded its per-task timeout."""

    def __init__(self, task_name: str, timeout: float) -> None:
        super().__init__(f"Task {task_name} timed out after {timeout:g}s")
        self.task_name = task_name
        self.timeout = timeout


class CommandExecutionError(MaintenanceError):
    """Raised when a command cannot be executed or exits with error."""

    def __init__(
        self,
        command: Sequence[str],
        stdout: str,
        stderr: str,
        returncode: int,
        timed_out: bool = False,
    ) -> None:
        cmd_str = " ".join(shlex.quote(arg) for arg in command)
        if timed_out:
            message = f"Command '{cmd_str}' timed out"
        else:
            message = f"Command '{cmd_str}' failed with code {returncode}: {stderr.strip()}"
        super().__init__(message)
        self.command = list(command)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.timed_out = timed_out

    @property
    def short_reason(self) -> Optional[str]:
        lines = self.stderr.strip().splitlines()
        return lines[-1] if lines else None
