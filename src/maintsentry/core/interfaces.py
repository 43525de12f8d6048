"""Abstract interfaces defining strict layer separation.

Architecture:
┌─────────────────────────────────────────────────────────────────┐
│                     DETECTION LAYER (audits)                     │
│  - Discovers system state                                        │
│  - Returns DetectionRecords                                      │
│  - NO side effects (read-only)                                   │
└─────────────────────────────────────────────────────────────────┘
                              │
                              ▼
┌─────────────────────────────────────────────────────────────────┐
│                  DECISION LAYER (diff + decide)                  │
│  - Intersects detections with the configured allow-list          │
│  - Decides run / skip per action task                            │
└─────────────────────────────────────────────────────────────────┘
                              │
                              ▼
┌─────────────────────────────────────────────────────────────────┐
│                     ACTION LAYER (actions)                       │
│  - Mutates system state, one work item at a time                 │
│  - Honors dry-run (validation only)                              │
└─────────────────────────────────────────────────────────────────┘
                              │
                              ▼
┌─────────────────────────────────────────────────────────────────┐
│                     REPORTING LAYER                              │
│  - Normalizes persisted artifacts, aggregates metrics            │
│  - Renders HTML / JSON / text from one SessionSummary            │
└─────────────────────────────────────────────────────────────────┘
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Protocol, Sequence

if TYPE_CHECKING:
    from ..tasks.types import DetectionRecord, ItemOutcome, WorkItem
    from .context import SessionContext


# =============================================================================
# OS INTERFACE - Abstraction for all OS interactions (Dependency Injection)
# =============================================================================


@dataclass
class CommandResult:
    """Result from running a shell command."""

    stdout: str
    stderr: str
    returncode: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class OSInterface(Protocol):
    """Protocol defining all OS-level interactions used by built-in tasks.

    This abstraction allows complete mocking of OS interactions for testing.
    """

    def run_command(
        self,
        args: Sequence[str],
        timeout: float = 30.0,
    ) -> CommandResult:
        """Execute a command and return results.

        Args:
            args: Command and arguments to execute
            timeout: Maximum seconds to wait

        Returns:
            CommandResult with stdout, stderr, and return code
        """
        ...

    def which(self, executable: str) -> Optional[str]:
        """Return the full path of an executable on PATH, or None."""
        ...

    def read_file(self, path: Path) -> Optional[str]:
        """Read file contents as string, or None if unreadable."""
        ...

    def file_exists(self, path: Path) -> bool:
        """Check if file exists."""
        ...

    def is_file(self, path: Path) -> bool:
        """Check if path is a regular file (not a directory)."""
        ...

    def get_file_mtime(self, path: Path) -> Optional[float]:
        """Get file modification time as a timestamp, or None if unavailable."""
        ...

    def list_directory(self, path: Path) -> List[Path]:
        """List directory contents (empty when unreadable)."""
        ...

    def remove_file(self, path: Path) -> None:
        """Delete a file. Raises OSError on failure."""
        ...

    def get_temp_directory(self) -> Path:
        """Get the system temporary directory."""
        ...


# =============================================================================
# TASK CAPABILITIES - what the pipeline core calls
# =============================================================================


class DetectionCapability(Protocol):
    """External detection capability of an audit task."""

    name: str

    def detect(self, ctx: "SessionContext") -> List["DetectionRecord"]:
        """Discover system state.

        This method MUST be read-only. It may raise DetectionError.
        """
        ...


class ActionCapability(Protocol):
    """External action capability of an action task."""

    name: str

    def act(self, item: "WorkItem", ctx: "SessionContext", dry_run: bool) -> "ItemOutcome":
        """Act on a single work item.

        In dry-run mode no mutating call is made. Raises ActionItemError when
        the item cannot be processed.
        """
        ...
