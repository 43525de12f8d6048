"""Persisted artifact shapes shared by the result recorder and the log normalizer.

Execution log line grammar (one record per line, fields separated by " | "):

    timestamp | level | component | operation | target | result | metadata-json | message

Optional fields are written as empty strings. The message is the remainder
of the line and may itself contain the separator.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from ..tasks.types import LogLevel

LOG_FIELD_SEPARATOR = " | "
LOG_FIELD_COUNT = 8

SUCCESS_LEVEL = 25
logging.addLevelName(SUCCESS_LEVEL, LogLevel.SUCCESS.value)

PYTHON_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: SUCCESS_LEVEL,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}

# Aliases written by older tooling
LEVEL_ALIASES = {
    "WARN": LogLevel.WARNING,
    "ERR": LogLevel.ERROR,
    "FATAL": LogLevel.CRITICAL,
    "TRACE": LogLevel.DEBUG,
    "VERBOSE": LogLevel.DEBUG,
}


class ArtifactKind(str, Enum):
    SNAPSHOT = "snapshot"
    EXECUTION_LOG = "execution_log"


@dataclass(frozen=True)
class RawArtifact:
    """Raw content of one persisted artifact, as read from disk."""

    name: str
    kind: ArtifactKind
    content: str
    modified_at: datetime


def _clean_field(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).replace("\r", " ").replace("\n", " ")
    return text.replace(LOG_FIELD_SEPARATOR, " / ").strip()


def _metadata_field(metadata: Optional[Mapping[str, Any]]) -> str:
    if not metadata:
        return ""
    text = json.dumps(dict(metadata), sort_keys=True, default=str)
    # "|" only occurs inside JSON strings, where the escape is equivalent
    return text.replace("|", "\\u007c")


def format_log_line(
    timestamp: datetime,
    level: str,
    component: str,
    message: str,
    *,
    operation: Optional[str] = None,
    target: Optional[str] = None,
    result: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> str:
    fields = [
        timestamp.astimezone(timezone.utc).isoformat(timespec="microseconds"),
        level,
        _clean_field(component),
        _clean_field(operation),
        _clean_field(target),
        _clean_field(result),
        _metadata_field(metadata),
        str(message).replace("\r", " ").replace("\n", " "),
    ]
    return LOG_FIELD_SEPARATOR.join(fields)


class ExecutionLogFormatter(logging.Formatter):
    """Formats log records into the execution log grammar.

    Structured fields come from ``extra``: component, operation, target,
    result, metadata.
    """

    def format(self, record: logging.LogRecord) -> str:
        return format_log_line(
            datetime.fromtimestamp(record.created, tz=timezone.utc),
            record.levelname,
            getattr(record, "component", record.name),
            record.getMessage(),
            operation=getattr(record, "operation", None),
            target=getattr(record, "target", None),
            result=getattr(record, "result", None),
            metadata=getattr(record, "metadata", None),
        )
