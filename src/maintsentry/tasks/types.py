"""Core types for maintenance tasks - no external dependencies."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class Source(str, Enum):
    """Where a detection record came from."""

    APT = "apt"
    DNF = "dnf"
    RPM = "rpm"
    HOMEBREW = "homebrew"
    WINGET = "winget"
    CHOCOLATEY = "chocolatey"
    REGISTRY = "registry"
    SERVICE_LIST = "service_list"
    FILESYSTEM = "filesystem"
    SYSCTL = "sysctl"
    OTHER = "other"


class MatchMode(str, Enum):
    """How a config entry pattern is compared against a detection."""

    EXACT = "exact"
    GLOB = "glob"


class TaskKind(str, Enum):
    """Read-only audit or mutating action."""

    AUDIT = "audit"
    ACTION = "action"


class TaskStatus(str, Enum):
    """Final status of a task run."""

    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL_FAILURE = "partial_failure"
    SKIPPED = "skipped"


class ReportFormat(str, Enum):
    """Output formats for the final report."""

    HTML = "html"
    JSON = "json"
    TEXT = "text"


class LogLevel(str, Enum):
    """Levels accepted in execution logs. UNKNOWN marks unparsed lines."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"


class OutcomeKind(str, Enum):
    """Outcome of acting on a single work item."""

    SUCCESS = "success"
    FAILED = "failed"
    ALREADY_ABSENT = "already_absent"
    WOULD_SUCCEED = "would_succeed"
    WOULD_SKIP = "would_skip"


# Display names for human-readable output
STATUS_DISPLAY_NAMES: Dict[TaskStatus, str] = {
    TaskStatus.SUCCESS: "Success",
    TaskStatus.FAILED: "Failed",
    TaskStatus.PARTIAL_FAILURE: "Partial Failure",
    TaskStatus.SKIPPED: "Skipped",
}

# Fields a config entry may match against besides metadata.<key>
MATCH_FIELDS = ("match_key", "name", "source")
DEFAULT_MATCH_FIELD = "match_key"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp, assuming UTC when no offset is given."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DetectionRecord:
    """A single entity discovered by an audit task."""

    name: str
    source: Source
    match_key: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def field_value(self, match_field: str) -> Optional[str]:
        """Return the value used for matching, or None if the field is absent."""
        if match_field == "match_key":
            return self.match_key
        if match_field == "name":
            return self.name
        if match_field == "source":
            return self.source.value
        if match_field.startswith("metadata."):
            value = self.metadata.get(match_field[len("metadata."):])
            return None if value is None else str(value)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source.value,
            "match_key": self.match_key,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DetectionRecord":
        return cls(
            name=str(data["name"]),
            source=Source(data.get("source", Source.OTHER.value)),
            match_key=str(data.get("match_key", data["name"])),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class ConfigEntry:
    """One allow-list entry authorizing action on matching detections."""

    pattern: str
    match_field: str = DEFAULT_MATCH_FIELD
    match_mode: MatchMode = MatchMode.EXACT
    category: str = "default"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "match_field": self.match_field,
            "match_mode": self.match_mode.value,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConfigEntry":
        return cls(
            pattern=str(data["pattern"]),
            match_field=str(data.get("match_field", DEFAULT_MATCH_FIELD)),
            match_mode=MatchMode(data.get("match_mode", MatchMode.EXACT.value)),
            category=str(data.get("category", "default")),
        )


@dataclass(frozen=True)
class WorkItem:
    """A detection confirmed by an allow-list entry as authorized for action."""

    record: DetectionRecord
    entry: ConfigEntry

    @property
    def name(self) -> str:
        return self.record.name

    def to_dict(self) -> Dict[str, Any]:
        return {"record": self.record.to_dict(), "entry": self.entry.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkItem":
        return cls(
            record=DetectionRecord.from_dict(data["record"]),
            entry=ConfigEntry.from_dict(data["entry"]),
        )


@dataclass(frozen=True)
class ItemOutcome:
    """Result of acting on one work item."""

    item: WorkItem
    outcome: OutcomeKind
    error: Optional[str] = None
    detail: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome == OutcomeKind.FAILED


@dataclass(frozen=True)
class TaskResult:
    """Standardized, immutable record of one task run."""

    task_name: str
    kind: TaskKind
    status: TaskStatus
    items_detected: int
    items_processed: int
    items_failed: int
    duration_ms: int
    dry_run: bool
    correlation_id: str
    started_at: datetime
    ended_at: datetime
    reason: Optional[str] = None
    error: Optional[str] = None
    parent_correlation_id: Optional[str] = None

    def __post_init__(self) -> None:
        if min(self.items_detected, self.items_processed, self.items_failed) < 0:
            raise ValueError(f"Item counts for {self.task_name} must not be negative")
        if self.items_processed + self.items_failed > self.items_detected:
            raise ValueError(
                f"Task {self.task_name}: processed ({self.items_processed}) + failed "
                f"({self.items_failed}) exceeds detected ({self.items_detected})"
            )

    @property
    def status_display_name(self) -> str:
        return STATUS_DISPLAY_NAMES.get(self.status, self.status.value)

    @property
    def succeeded(self) -> bool:
        return self.status in (TaskStatus.SUCCESS, TaskStatus.PARTIAL_FAILURE)

    @classmethod
    def skipped(
        cls,
        task_name: str,
        kind: TaskKind,
        reason: str,
        *,
        correlation_id: str,
        dry_run: bool,
        at: Optional[datetime] = None,
        parent_correlation_id: Optional[str] = None,
    ) -> "TaskResult":
        moment = at or utc_now()
        return cls(
            task_name=task_name,
            kind=kind,
            status=TaskStatus.SKIPPED,
            items_detected=0,
            items_processed=0,
            items_failed=0,
            duration_ms=0,
            dry_run=dry_run,
            correlation_id=correlation_id,
            started_at=moment,
            ended_at=moment,
            reason=reason,
            parent_correlation_id=parent_correlation_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_name": self.task_name,
            "kind": self.kind.value,
            "status": self.status.value,
            "items_detected": self.items_detected,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "duration_ms": self.duration_ms,
            "dry_run": self.dry_run,
            "correlation_id": self.correlation_id,
            "started_at": format_timestamp(self.started_at),
            "ended_at": format_timestamp(self.ended_at),
            "reason": self.reason,
            "error": self.error,
            "parent_correlation_id": self.parent_correlation_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskResult":
        return cls(
            task_name=str(data["task_name"]),
            kind=TaskKind(data["kind"]),
            status=TaskStatus(data["status"]),
            items_detected=int(data["items_detected"]),
            items_processed=int(data["items_processed"]),
            items_failed=int(data["items_failed"]),
            duration_ms=int(data["duration_ms"]),
            dry_run=bool(data["dry_run"]),
            correlation_id=str(data["correlation_id"]),
            started_at=parse_timestamp(data["started_at"]),
            ended_at=parse_timestamp(data["ended_at"]),
            reason=data.get("reason"),
            error=data.get("error"),
            parent_correlation_id=data.get("parent_correlation_id"),
        )
