"""Session-level metrics and the immutable session summary.

Every metric is derived from the persisted TaskResult set plus the
normalized log entries. Nothing here keeps state between calls.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..core.config import HealthWeights
from ..tasks.types import (
    LogLevel,
    TaskKind,
    TaskResult,
    TaskStatus,
    format_timestamp,
    parse_timestamp,
)
from .normalizer import LogEntry

logger = logging.getLogger(__name__)

# Score of a task that never produced a result
MISSING_SCORE = 0.0


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _percent(part: float, whole: float, empty: float) -> float:
    if whole <= 0:
        return empty
    return part / whole * 100.0


@dataclass(frozen=True)
class TaskMetric:
    """Per-task row of the dashboard. ``score`` is None for skipped tasks."""

    task_name: str
    status: Optional[TaskStatus]
    has_data: bool
    score: Optional[float]
    kind: Optional[TaskKind] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_name": self.task_name,
            "status": self.status.value if self.status else None,
            "has_data": self.has_data,
            "score": self.score,
            "kind": self.kind.value if self.kind else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskMetric":
        return cls(
            task_name=str(data["task_name"]),
            status=TaskStatus(data["status"]) if data.get("status") else None,
            has_data=bool(data["has_data"]),
            score=data.get("score"),
            kind=TaskKind(data["kind"]) if data.get("kind") else None,
        )

    @classmethod
    def missing(cls, task_name: str) -> "TaskMetric":
        return cls(task_name=task_name, status=None, has_data=False, score=MISSING_SCORE)


def task_score(result: TaskResult) -> Optional[float]:
    if result.status is TaskStatus.SUCCESS:
        return 100.0
    if result.status is TaskStatus.FAILED:
        return 0.0
    if result.status is TaskStatus.PARTIAL_FAILURE:
        attempted = result.items_processed + result.items_failed
        if attempted == 0:
            return 50.0
        return round(result.items_processed / attempted * 100.0, 1)
    return None


@dataclass(frozen=True)
class AggregateMetrics:
    """Computed session metrics. All percentages are in [0, 100]."""

    total_tasks: int
    successful_tasks: int
    partial_tasks: int
    failed_tasks: int
    skipped_tasks: int
    success_rate: float
    error_count: int
    warning_count: int
    unparsed_count: int
    log_entry_count: int
    security_score: float
    error_density_score: float
    health_score: float
    data_completeness: float
    items_detected: int = 0
    items_processed: int = 0
    items_failed: int = 0
    total_duration_ms: int = 0
    missing_tasks: Tuple[str, ...] = ()
    task_metrics: Tuple[TaskMetric, ...] = ()

    @property
    def missing_count(self) -> int:
        return len(self.missing_tasks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "successful_tasks": self.successful_tasks,
            "partial_tasks": self.partial_tasks,
            "failed_tasks": self.failed_tasks,
            "skipped_tasks": self.skipped_tasks,
            "success_rate": self.success_rate,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "unparsed_count": self.unparsed_count,
            "log_entry_count": self.log_entry_count,
            "security_score": self.security_score,
            "error_density_score": self.error_density_score,
            "health_score": self.health_score,
            "data_completeness": self.data_completeness,
            "items_detected": self.items_detected,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "total_duration_ms": self.total_duration_ms,
            "missing_tasks": list(self.missing_tasks),
            "task_metrics": [m.to_dict() for m in self.task_metrics],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AggregateMetrics":
        values = dict(data)
        values["missing_tasks"] = tuple(values.get("missing_tasks", ()))
        values["task_metrics"] = tuple(
            TaskMetric.from_dict(m) for m in values.get("task_metrics", ())
        )
        return cls(**values)


@dataclass(frozen=True)
class ErrorRecord:
    """One line of the report's errors section."""

    source: str
    category: str
    message: str
    task_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "category": self.category,
            "message": self.message,
            "task_name": self.task_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ErrorRecord":
        return cls(
            source=str(data["source"]),
            category=str(data["category"]),
            message=str(data["message"]),
            task_name=data.get("task_name"),
        )


@dataclass(frozen=True)
class SessionSummary:
    """Everything the report needs, computed once at session end."""

    session_id: str
    start_time: datetime
    end_time: datetime
    dry_run: bool
    task_results: Tuple[TaskResult, ...]
    aggregate_metrics: AggregateMetrics
    data_completeness: float
    errors: Tuple[ErrorRecord, ...] = ()
    host: Mapping[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "dry_run": self.dry_run,
            "host": dict(self.host),
            "task_results": [r.to_dict() for r in self.task_results],
            "aggregate_metrics": self.aggregate_metrics.to_dict(),
            "data_completeness": self.data_completeness,
            "errors": [e.to_dict() for e in self.errors],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionSummary":
        return cls(
            session_id=str(data["session_id"]),
            start_time=parse_timestamp(data["start_time"]),
            end_time=parse_timestamp(data["end_time"]),
            dry_run=bool(data["dry_run"]),
            host=dict(data.get("host") or {}),
            task_results=tuple(TaskResult.from_dict(r) for r in data["task_results"]),
            aggregate_metrics=AggregateMetrics.from_dict(data["aggregate_metrics"]),
            data_completeness=data["data_completeness"],
            errors=tuple(ErrorRecord.from_dict(e) for e in data.get("errors", ())),
        )


class AnalyticsAggregator:
    """Computes AggregateMetrics and assembles the SessionSummary.

    Tasks that were expected but left no result are never averaged away:
    they count in the success-rate denominator, score 0, and are listed
    in ``missing_tasks``.
    """

    def __init__(
        self,
        weights: Optional[HealthWeights] = None,
        security_tasks: Sequence[str] = (),
    ) -> None:
        self.weights = weights or HealthWeights()
        self.security_tasks = tuple(security_tasks)

    def aggregate(
        self,
        task_results: Sequence[TaskResult],
        log_entries: Sequence[LogEntry],
        expected_tasks: Optional[Iterable[str]] = None,
    ) -> AggregateMetrics:
        by_name: Dict[str, TaskResult] = {r.task_name: r for r in task_results}
        expected = list(expected_tasks) if expected_tasks is not None else list(by_name)
        missing = tuple(name for name in expected if name not in by_name)

        counts = {status: 0 for status in TaskStatus}
        for result in task_results:
            counts[result.status] += 1

        total = len(task_results) + len(missing)
        succeeded = sum(1 for result in task_results if result.succeeded)
        success_rate = _percent(succeeded, total, empty=0.0)

        error_count = sum(1 for e in log_entries if e.is_error)
        warning_count = sum(1 for e in log_entries if e.level is LogLevel.WARNING)
        unparsed_count = sum(1 for e in log_entries if e.normalization_failed)
        error_density = 100.0 * (1 - error_count / len(log_entries)) if log_entries else 100.0

        security = self._security_score(by_name, expected)
        health = (
            self.weights.success_rate * clamp(success_rate)
            + self.weights.security * clamp(security)
            + self.weights.error_density * clamp(error_density)
        )

        completeness = _percent(
            sum(1 for name in expected if name in by_name), len(expected), empty=100.0
        )

        metrics: List[TaskMetric] = []
        for name in expected:
            result = by_name.get(name)
            if result is None:
                metrics.append(TaskMetric.missing(name))
        for result in task_results:
            metrics.append(
                TaskMetric(
                    task_name=result.task_name,
                    status=result.status,
                    has_data=True,
                    score=task_score(result),
                    kind=result.kind,
                )
            )
        order = {name: index for index, name in enumerate(expected)}
        metrics.sort(key=lambda m: order.get(m.task_name, len(order)))

        if missing:
            logger.warning("No result recorded for task(s): %s", ", ".join(missing))

        return AggregateMetrics(
            total_tasks=total,
            successful_tasks=counts[TaskStatus.SUCCESS],
            partial_tasks=counts[TaskStatus.PARTIAL_FAILURE],
            failed_tasks=counts[TaskStatus.FAILED],
            skipped_tasks=counts[TaskStatus.SKIPPED],
            success_rate=round(success_rate, 1),
            error_count=error_count,
            warning_count=warning_count,
            unparsed_count=unparsed_count,
            log_entry_count=len(log_entries),
            security_score=round(clamp(security), 1),
            error_density_score=round(clamp(error_density), 1),
            health_score=round(clamp(health), 1),
            data_completeness=round(completeness, 1),
            items_detected=sum(r.items_detected for r in task_results),
            items_processed=sum(r.items_processed for r in task_results),
            items_failed=sum(r.items_failed for r in task_results),
            total_duration_ms=sum(r.duration_ms for r in task_results),
            missing_tasks=missing,
            task_metrics=tuple(metrics),
        )

    def _security_score(self, by_name: Mapping[str, TaskResult], expected: Sequence[str]) -> float:
        relevant = [n for n in self.security_tasks if n in by_name or n in expected]
        if not relevant:
            return 100.0
        earned = 0.0
        for name in relevant:
            result = by_name.get(name)
            if result is None:
                continue
            if result.status is TaskStatus.SUCCESS:
                earned += 1.0
            elif result.status is TaskStatus.PARTIAL_FAILURE:
                earned += 0.5
        return earned / len(relevant) * 100.0

    def build_summary(
        self,
        *,
        session_id: str,
        start_time: datetime,
        end_time: datetime,
        dry_run: bool,
        task_results: Sequence[TaskResult],
        log_entries: Sequence[LogEntry],
        expected_tasks: Optional[Iterable[str]] = None,
        host: Optional[Mapping[str, Any]] = None,
    ) -> SessionSummary:
        metrics = self.aggregate(task_results, log_entries, expected_tasks)
        return SessionSummary(
            session_id=session_id,
            start_time=start_time,
            end_time=end_time,
            dry_run=dry_run,
            task_results=tuple(task_results),
            aggregate_metrics=metrics,
            data_completeness=metrics.data_completeness,
            errors=tuple(collect_errors(task_results, log_entries, metrics.missing_tasks)),
            host=dict(host or {}),
        )


def collect_errors(
    task_results: Iterable[TaskResult],
    log_entries: Iterable[LogEntry],
    missing_tasks: Iterable[str] = (),
) -> List[ErrorRecord]:
    """Gather everything the errors section should show."""
    errors: List[ErrorRecord] = []
    for name in missing_tasks:
        errors.append(
            ErrorRecord(
                source="session",
                category="missing_result",
                message=f"Task {name} produced no result",
                task_name=name,
            )
        )
    for result in task_results:
        if result.status in (TaskStatus.FAILED, TaskStatus.PARTIAL_FAILURE):
            errors.append(
                ErrorRecord(
                    source="task",
                    category=result.reason or result.status.value,
                    message=result.error or result.status_display_name,
                    task_name=result.task_name,
                )
            )
    for entry in log_entries:
        if entry.normalization_failed:
            errors.append(
                ErrorRecord(
                    source=entry.source or entry.component,
                    category="normalization",
                    message=f"{entry.normalization_error}: {entry.raw_message[:200]}",
                )
            )
        elif entry.is_error and entry.line_number is not None:
            # Snapshot entries have no line number and are covered above
            errors.append(
                ErrorRecord(
                    source=entry.source or entry.component,
                    category=entry.level.value.lower(),
                    message=entry.message or entry.raw_message,
                    task_name=entry.component,
                )
            )
    return errors
