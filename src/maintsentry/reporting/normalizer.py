"""Normalize heterogeneous session artifacts into one canonical LogEntry stream.

Two artifact shapes are consumed:

1. Structured snapshots: one JSON TaskResult object per task.
2. Execution logs: one record per line in the fixed field grammar described
   in ``maintsentry.core.artifacts``.

Nothing is ever dropped. A line or snapshot that does not parse becomes a
RAW_UNPARSED entry with level UNKNOWN, the full original text, and the
reason it failed.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.artifacts import (
    LEVEL_ALIASES,
    LOG_FIELD_COUNT,
    LOG_FIELD_SEPARATOR,
    ArtifactKind,
    RawArtifact,
)
from ..core.errors import NormalizationError
from ..tasks.types import (
    LogLevel,
    TaskResult,
    TaskStatus,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

_STATUS_LEVELS = {
    TaskStatus.SUCCESS: LogLevel.SUCCESS,
    TaskStatus.PARTIAL_FAILURE: LogLevel.WARNING,
    TaskStatus.FAILED: LogLevel.ERROR,
    TaskStatus.SKIPPED: LogLevel.INFO,
}


class EntryKind(str, Enum):
    STRUCTURED = "structured"
    RAW_UNPARSED = "raw_unparsed"


@dataclass(frozen=True)
class LogEntry:
    """Canonical log record.

    ``kind`` tags the variant: STRUCTURED entries carry parsed fields,
    RAW_UNPARSED entries carry only ``raw_message`` and a
    ``normalization_error``.
    """

    timestamp: datetime
    level: LogLevel
    component: str
    raw_message: str
    operation: Optional[str] = None
    target: Optional[str] = None
    result: Optional[str] = None
    metadata: Optional[Mapping[str, Any]] = None
    message: str = ""
    kind: EntryKind = EntryKind.STRUCTURED
    normalization_error: Optional[str] = None
    source: Optional[str] = None
    line_number: Optional[int] = None

    @property
    def normalization_failed(self) -> bool:
        return self.kind is EntryKind.RAW_UNPARSED

    @property
    def is_error(self) -> bool:
        return self.level in (LogLevel.ERROR, LogLevel.CRITICAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": format_timestamp(self.timestamp),
            "level": self.level.value,
            "component": self.component,
            "operation": self.operation,
            "target": self.target,
            "result": self.result,
            "metadata": dict(self.metadata) if self.metadata is not None else None,
            "message": self.message,
            "raw_message": self.raw_message,
            "kind": self.kind.value,
            "normalization_error": self.normalization_error,
            "source": self.source,
            "line_number": self.line_number,
        }


def parse_level(token: str) -> LogLevel:
    normalized = token.strip().upper()
    if normalized in LEVEL_ALIASES:
        return LEVEL_ALIASES[normalized]
    try:
        level = LogLevel(normalized)
    except ValueError:
        raise NormalizationError(f"unknown level '{token.strip()}'") from None
    if level is LogLevel.UNKNOWN:
        raise NormalizationError("level UNKNOWN is reserved for unparsed lines")
    return level


def parse_log_line(line: str) -> Dict[str, Any]:
    """Parse one execution log line into its fields.

    Raises NormalizationError describing the first grammar violation.
    """
    parts = line.split(LOG_FIELD_SEPARATOR, LOG_FIELD_COUNT - 1)
    if len(parts) != LOG_FIELD_COUNT:
        raise NormalizationError(
            f"expected {LOG_FIELD_COUNT} fields, found {len(parts)}", line
        )
    raw_ts, raw_level, component, operation, target, result, raw_meta, message = parts

    try:
        timestamp = parse_timestamp(raw_ts.strip())
    except ValueError:
        raise NormalizationError(f"invalid timestamp '{raw_ts.strip()}'", line) from None

    level = parse_level(raw_level)
    component = component.strip()
    if not component:
        raise NormalizationError("empty component", line)

    metadata = None
    if raw_meta.strip():
        try:
            metadata = json.loads(raw_meta)
        except json.JSONDecodeError as exc:
            raise NormalizationError(f"corrupt metadata JSON: {exc.msg}", line) from None
        if not isinstance(metadata, dict):
            raise NormalizationError("metadata is not a JSON object", line)

    return {
        "timestamp": timestamp,
        "level": level,
        "component": component,
        "operation": operation.strip() or None,
        "target": target.strip() or None,
        "result": result.strip() or None,
        "metadata": metadata,
        "message": message.strip(),
    }


def _salvage_timestamp(line: str) -> Optional[datetime]:
    head = line.split(LOG_FIELD_SEPARATOR, 1)[0].strip()
    try:
        return parse_timestamp(head)
    except ValueError:
        return None


@dataclass
class LogNormalizer:
    """Turns raw artifacts into a timestamp-ordered LogEntry list."""

    unparsed_count: int = field(default=0, init=False)

    def normalize(self, artifacts: Iterable[RawArtifact]) -> List[LogEntry]:
        indexed: List[Tuple[int, LogEntry]] = []
        self.unparsed_count = 0
        for artifact in artifacts:
            if artifact.kind is ArtifactKind.SNAPSHOT:
                entries = [self._from_snapshot(artifact)]
            else:
                entries = self._from_execution_log(artifact)
            for entry in entries:
                if entry.normalization_failed:
                    self.unparsed_count += 1
                indexed.append((len(indexed), entry))

        # Stable on input order for equal timestamps
        indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]))
        if self.unparsed_count:
            logger.warning(
                "%d artifact record(s) could not be normalized and were kept as raw entries",
                self.unparsed_count,
            )
        return [entry for _, entry in indexed]

    def _from_snapshot(self, artifact: RawArtifact) -> LogEntry:
        try:
            data = json.loads(artifact.content)
            result = TaskResult.from_dict(data)
        except json.JSONDecodeError as exc:
            return self._raw(artifact, artifact.content, f"corrupt snapshot JSON: {exc.msg}",
                             artifact.modified_at)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            return self._raw(artifact, artifact.content, f"invalid snapshot: {exc}",
                             artifact.modified_at)

        summary = (
            f"{result.kind.value} {result.task_name} {result.status.value}"
            + (f" ({result.reason})" if result.reason else "")
        )
        return LogEntry(
            timestamp=result.ended_at,
            level=_STATUS_LEVELS[result.status],
            component=result.task_name,
            operation=result.kind.value,
            result=result.status.value,
            metadata={
                "items_detected": result.items_detected,
                "items_processed": result.items_processed,
                "items_failed": result.items_failed,
                "duration_ms": result.duration_ms,
                "correlation_id": result.correlation_id,
            },
            message=result.error or summary,
            raw_message=json.dumps(data, sort_keys=True),
            source=artifact.name,
        )

    def _from_execution_log(self, artifact: RawArtifact) -> List[LogEntry]:
        entries: List[LogEntry] = []
        last_timestamp = artifact.modified_at
        for number, line in enumerate(artifact.content.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                fields = parse_log_line(line)
            except NormalizationError as exc:
                timestamp = _salvage_timestamp(line) or last_timestamp
                last_timestamp = timestamp
                entries.append(self._raw(artifact, line, str(exc), timestamp, number))
                continue
            last_timestamp = fields["timestamp"]
            entries.append(
                LogEntry(
                    raw_message=line,
                    source=artifact.name,
                    line_number=number,
                    **fields,
                )
            )
        return entries

    @staticmethod
    def _raw(
        artifact: RawArtifact,
        text: str,
        reason: str,
        timestamp: datetime,
        line_number: Optional[int] = None,
    ) -> LogEntry:
        logger.debug("Unparsed record in %s:%s: %s", artifact.name, line_number, reason)
        return LogEntry(
            timestamp=timestamp,
            level=LogLevel.UNKNOWN,
            component=artifact.name,
            raw_message=text,
            kind=EntryKind.RAW_UNPARSED,
            normalization_error=reason,
            source=artifact.name,
            line_number=line_number,
        )
