"""Persistence of task results and raw session artifacts.

Each task is the only writer of its own files for the duration of its run,
so no locking is needed. Loaders always read from disk; nothing is cached
in memory between tasks.

Layout under ``<artifact_root>/<session_id>/``::

    results/<task>.json      TaskResult snapshot
    audit/<task>.json        detections of an audit task
    diff/<task>.json         work items of an action task
    logs/<task>.log          execution log (line grammar, see core.artifacts)
    session_summary.json
    reports/maintenance_report.{html,json,txt}
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, List, Mapping, Optional

from ..core.artifacts import PYTHON_LEVELS, ArtifactKind, ExecutionLogFormatter, RawArtifact
from ..tasks.types import DetectionRecord, LogLevel, TaskResult, WorkItem

if TYPE_CHECKING:
    from ..core.context import SessionContext

logger = logging.getLogger(__name__)

RESULTS_DIR = "results"
AUDIT_DIR = "audit"
DIFF_DIR = "diff"
LOGS_DIR = "logs"
REPORTS_DIR = "reports"
SUMMARY_FILE = "session_summary.json"


def _write_json(path: Path, payload: Any) -> Path:
    """Write JSON through a temp file so readers never see half a document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    os.replace(tmp_path, path)
    return path


def _read_json(path: Path) -> Optional[Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Unreadable artifact %s: %s", path, exc)
        return None


class ExecutionLog:
    """Line-oriented execution log for one task.

    Built on a private ``logging.Logger`` with a FileHandler, so it never
    leaks into the application's logger hierarchy. Usable as a context
    manager; closing releases the file handle.
    """

    def __init__(self, path: Path, component: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self.component = component
        self._handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        self._handler.setFormatter(ExecutionLogFormatter())
        self._logger = logging.Logger(f"maintsentry.execution.{component}", level=logging.DEBUG)
        self._logger.addHandler(self._handler)
        self._logger.propagate = False

    def event(
        self,
        level: LogLevel,
        message: str,
        *,
        operation: Optional[str] = None,
        target: Optional[str] = None,
        result: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        py_level = PYTHON_LEVELS.get(level, logging.INFO)
        self._logger.log(
            py_level,
            message,
            extra={
                "component": self.component,
                "operation": operation,
                "target": target,
                "result": result,
                "metadata": metadata,
            },
        )
        logger.log(py_level, "[%s] %s", self.component, message)

    def info(self, message: str, **fields: Any) -> None:
        self.event(LogLevel.INFO, message, **fields)

    def success(self, message: str, **fields: Any) -> None:
        self.event(LogLevel.SUCCESS, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.event(LogLevel.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.event(LogLevel.ERROR, message, **fields)

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._handler.close()

    def __enter__(self) -> "ExecutionLog":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class ResultRecorder:
    """Builds the session directory and reads it back for downstream stages."""

    def __init__(self, session_dir: Path) -> None:
        self.session_dir = session_dir

    @classmethod
    def for_context(cls, ctx: "SessionContext") -> "ResultRecorder":
        return cls(ctx.session_dir)

    def _path(self, folder: str, task_name: str, suffix: str) -> Path:
        return self.session_dir / folder / f"{task_name}{suffix}"

    # -- writers ------------------------------------------------------------

    def record_result(self, result: TaskResult) -> Path:
        path = _write_json(self._path(RESULTS_DIR, result.task_name, ".json"), result.to_dict())
        logger.debug("Recorded %s result for %s", result.status.value, result.task_name)
        return path

    def record_detections(self, task_name: str, detections: Iterable[DetectionRecord]) -> Path:
        payload = {"task_name": task_name, "detections": [d.to_dict() for d in detections]}
        return _write_json(self._path(AUDIT_DIR, task_name, ".json"), payload)

    def record_diff(self, task_name: str, items: Iterable[WorkItem]) -> Path:
        payload = {"task_name": task_name, "work_items": [item.to_dict() for item in items]}
        return _write_json(self._path(DIFF_DIR, task_name, ".json"), payload)

    def open_log(self, task_name: str) -> ExecutionLog:
        return ExecutionLog(self._path(LOGS_DIR, task_name, ".log"), component=task_name)

    def write_summary(self, payload: Mapping[str, Any]) -> Path:
        return _write_json(self.session_dir / SUMMARY_FILE, dict(payload))

    def write_report(self, file_name: str, content: str) -> Path:
        """Persist report content under the reports folder."""
        path = self.session_dir / REPORTS_DIR / file_name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    # -- loaders ------------------------------------------------------------

    def load_result(self, task_name: str) -> Optional[TaskResult]:
        data = _read_json(self._path(RESULTS_DIR, task_name, ".json"))
        if data is None:
            return None
        try:
            return TaskResult.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding malformed result for %s: %s", task_name, exc)
            return None

    def load_results(self) -> List[TaskResult]:
        results = []
        for path in sorted((self.session_dir / RESULTS_DIR).glob("*.json")):
            result = self.load_result(path.stem)
            if result is not None:
                results.append(result)
        results.sort(key=lambda r: (r.started_at, r.task_name))
        return results

    def load_detections(self, task_name: str) -> List[DetectionRecord]:
        data = _read_json(self._path(AUDIT_DIR, task_name, ".json"))
        if not isinstance(data, dict):
            return []
        records = []
        for raw in data.get("detections", []):
            try:
                records.append(DetectionRecord.from_dict(raw))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed detection in %s: %s", task_name, exc)
        return records

    def load_diff(self, task_name: str) -> List[WorkItem]:
        data = _read_json(self._path(DIFF_DIR, task_name, ".json"))
        if not isinstance(data, dict):
            return []
        return [WorkItem.from_dict(raw) for raw in data.get("work_items", [])]

    def collect_artifacts(self) -> List[RawArtifact]:
        """Raw snapshots and execution logs for the log normalizer."""
        artifacts: List[RawArtifact] = []
        sources = (
            (RESULTS_DIR, "*.json", ArtifactKind.SNAPSHOT),
            (LOGS_DIR, "*.log", ArtifactKind.EXECUTION_LOG),
        )
        for folder, pattern, kind in sources:
            for path in sorted((self.session_dir / folder).glob(pattern)):
                try:
                    content = path.read_text(encoding="utf-8", errors="replace")
                    modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
                except OSError as exc:
                    logger.warning("Cannot read artifact %s: %s", path, exc)
                    continue
                artifacts.append(
                    RawArtifact(
                        name=f"{folder}/{path.name}",
                        kind=kind,
                        content=content,
                        modified_at=modified,
                    )
                )
        return artifacts
