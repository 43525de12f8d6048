"""Session orchestration: audits, decisions, actions, then the report.

Tasks run strictly one after another. Every task boundary is also an
error boundary: a task that fails, times out or raises is recorded as
Failed and the session moves on. Only ConfigurationError leaves ``run()``.
"""
from __future__ import annotations

import functools
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Sequence

from ..core.config import ConfigStore
from ..core.context import SessionContext
from ..core.errors import DetectionError, TaskTimeoutError
from ..core.resilience import call_with_timeout
from ..reporting.analytics import AnalyticsAggregator, SessionSummary
from ..reporting.normalizer import LogNormalizer
from ..reporting.renderer import Document, ReportRenderer
from ..reporting.templates import TemplateEngine
from ..tasks.base import ActionTask, AuditTask, MaintenanceTask, TaskSelection, TaskTable
from ..tasks.types import TaskKind, TaskResult, TaskStatus, utc_now
from ..utils.system_info import collect_host_info
from .decision import REASON_TIMED_OUT, ExecutionDecisionEngine
from .diff import DiffEngine
from .executor import ActionExecutor
from .recorder import ExecutionLog, ResultRecorder

logger = logging.getLogger(__name__)

REASON_DETECTION_ERROR = "DetectionError"
REASON_UNEXPECTED_ERROR = "UnexpectedError"


@dataclass(frozen=True)
class SessionOutcome:
    summary: SessionSummary
    documents: List[Document]
    report_paths: List[Path]
    session_dir: Path

    @property
    def has_failures(self) -> bool:
        metrics = self.summary.aggregate_metrics
        return bool(metrics.failed_tasks or metrics.partial_tasks or metrics.missing_tasks)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _detection_source(task: AuditTask, detections: Sequence[Any]) -> str:
    """Sources seen in the records; the task default when there are none."""
    sources = sorted({record.source.value for record in detections})
    return ",".join(sources) if sources else task.source.value


class SessionPipeline:
    """Runs a TaskSelection end to end and produces the report documents."""

    def __init__(
        self,
        config: ConfigStore,
        table: TaskTable,
        *,
        diff_engine: Optional[DiffEngine] = None,
        decision_engine: Optional[ExecutionDecisionEngine] = None,
        executor: Optional[ActionExecutor] = None,
        normalizer: Optional[LogNormalizer] = None,
        aggregator: Optional[AnalyticsAggregator] = None,
        template_engine: Optional[TemplateEngine] = None,
        renderer: Optional[ReportRenderer] = None,
        host_info: Optional[Callable[[SessionContext], Mapping[str, Any]]] = None,
    ) -> None:
        settings = config.settings
        self.config = config
        self.table = table
        self.diff_engine = diff_engine or DiffEngine()
        self.decision_engine = decision_engine or ExecutionDecisionEngine()
        self.executor = executor or ActionExecutor()
        self.normalizer = normalizer or LogNormalizer()
        self.aggregator = aggregator or AnalyticsAggregator(
            settings.health_weights, settings.security_tasks
        )
        self.template_engine = template_engine or TemplateEngine.from_settings(settings)
        self.renderer = renderer or ReportRenderer(settings.report_title)
        self.host_info = host_info or (lambda ctx: collect_host_info(ctx.os))

    def select(self, names: Optional[Sequence[str]] = None) -> TaskSelection:
        """Explicit names run as given; otherwise every enabled task runs."""
        if not names:
            names = [name for name in self.table.names if self.config.is_enabled(name)]
            if not names:
                logger.warning("No enabled tasks in the registration table")
                return TaskSelection(tasks=(), table=self.table)
        return self.decision_engine.select(self.table, names, self.config.task_order)

    def run(self, selection: TaskSelection, ctx: SessionContext) -> SessionOutcome:
        self.table.validate()
        self._warn_unknown_allow_lists()

        recorder = ResultRecorder.for_context(ctx)
        logger.info(
            "Session %s started: %d task(s)%s",
            ctx.session_id,
            len(selection),
            " (dry run)" if ctx.dry_run else "",
        )

        for task in selection:
            if ctx.cancellation.is_cancelled:
                self._skip_cancelled(task, ctx, recorder)
                continue
            if task.kind is TaskKind.AUDIT:
                result = self._run_audit(task, ctx, recorder)
            else:
                result = self._run_action(task, ctx, recorder)
            recorder.record_result(result)

        return self._finish(selection, ctx, recorder)

    # -- tasks --------------------------------------------------------------

    def _skip_cancelled(
        self, task: MaintenanceTask, ctx: SessionContext, recorder: ResultRecorder
    ) -> None:
        decision = self.decision_engine.cancelled()
        logger.info("Skipping %s: %s", task.name, decision.reason)
        recorder.record_result(
            TaskResult.skipped(
                task.name,
                task.kind,
                decision.reason,
                correlation_id=ctx.correlation_id(task.name),
                dry_run=ctx.dry_run,
            )
        )

    def _timeout_for(self, task: MaintenanceTask) -> float:
        return self.config.task_timeout(task.name, task.timeout)

    def _run_audit(
        self, task: AuditTask, ctx: SessionContext, recorder: ResultRecorder
    ) -> TaskResult:
        correlation_id = ctx.correlation_id(task.name)
        started_at = utc_now()
        start = time.perf_counter()
        reason = error = None
        detections = []

        with recorder.open_log(task.name) as log:
            log.info(f"Starting audit {task.name}", operation="detect")
            try:
                detections = call_with_timeout(
                    task.detect, self._timeout_for(task), ctx, name=task.name
                )
            except TaskTimeoutError as exc:
                reason, error = REASON_TIMED_OUT, str(exc)
            except DetectionError as exc:
                reason, error = REASON_DETECTION_ERROR, str(exc)
            except Exception as exc:  # noqa: BLE001 - task boundary
                logger.exception("Unexpected error in audit %s", task.name)
                reason, error = REASON_UNEXPECTED_ERROR, f"{type(exc).__name__}: {exc}"

            if error is None:
                recorder.record_detections(task.name, detections)
                log.success(
                    f"Detected {len(detections)} item(s)",
                    operation="detect",
                    result=TaskStatus.SUCCESS.value,
                    metadata={"items": len(detections), "source": _detection_source(task, detections)},
                )
            else:
                log.error(error, operation="detect", result=TaskStatus.FAILED.value,
                          metadata={"reason": reason})
                dependents = self.table.dependents(task.name)
                if dependents:
                    logger.warning(
                        "Audit %s failed; dependent action(s) see an empty diff: %s",
                        task.name,
                        ", ".join(dependents),
                    )

        failed = error is not None
        return TaskResult(
            task_name=task.name,
            kind=TaskKind.AUDIT,
            status=TaskStatus.FAILED if failed else TaskStatus.SUCCESS,
            items_detected=0 if failed else len(detections),
            items_processed=0 if failed else len(detections),
            items_failed=0,
            duration_ms=_elapsed_ms(start),
            dry_run=ctx.dry_run,
            correlation_id=correlation_id,
            started_at=started_at,
            ended_at=utc_now(),
            reason=reason,
            error=error,
        )

    def _run_action(
        self, task: ActionTask, ctx: SessionContext, recorder: ResultRecorder
    ) -> TaskResult:
        correlation_id = ctx.correlation_id(task.name)
        audit_result = recorder.load_result(task.depends_on) if task.depends_on else None
        parent_id = audit_result.correlation_id if audit_result else None

        with recorder.open_log(task.name) as log:
            detections = recorder.load_detections(task.depends_on) if task.depends_on else []
            entries = ctx.config.allow_list(
                task.name, match_field=task.match_field, match_mode=task.match_mode
            )
            work_items = self.diff_engine.diff(detections, entries)
            recorder.record_diff(task.name, work_items)
            log.info(
                f"{len(work_items)} of {len(detections)} detection(s) authorized by "
                f"{len(entries)} allow-list entr{'y' if len(entries) == 1 else 'ies'}",
                operation="diff",
                metadata={"detections": len(detections), "entries": len(entries),
                          "work_items": len(work_items)},
            )

            decision = self.decision_engine.decide(task, audit_result, work_items)
            if not decision.should_run:
                log.info(f"Skipped: {decision.reason}", operation="decide",
                         result=TaskStatus.SKIPPED.value)
                return TaskResult.skipped(
                    task.name,
                    TaskKind.ACTION,
                    decision.reason,
                    correlation_id=correlation_id,
                    dry_run=ctx.dry_run,
                    parent_correlation_id=parent_id,
                )
            if audit_result is not None and audit_result.status is TaskStatus.FAILED:
                log.warning(
                    f"Dependency {task.depends_on} failed; running on an empty diff",
                    operation="decide",
                    metadata={"dependency": task.depends_on, "reason": audit_result.reason},
                )

            started_at = utc_now()
            start = time.perf_counter()
            stop = threading.Event()
            execute = functools.partial(self.executor.execute, stop=stop)
            try:
                outcome = call_with_timeout(
                    execute,
                    self._timeout_for(task),
                    task,
                    work_items,
                    ctx,
                    name=task.name,
                    stop=stop,
                    correlation_id=correlation_id,
                    parent_correlation_id=parent_id,
                    log=log,
                )
                return outcome.result
            except TaskTimeoutError as exc:
                return self._failed_action(task, ctx, log, work_items, started_at, start,
                                           REASON_TIMED_OUT, str(exc), parent_id)
            except Exception as exc:  # noqa: BLE001 - task boundary
                logger.exception("Unexpected error in action %s", task.name)
                return self._failed_action(task, ctx, log, work_items, started_at, start,
                                           REASON_UNEXPECTED_ERROR,
                                           f"{type(exc).__name__}: {exc}", parent_id)

    @staticmethod
    def _failed_action(
        task: ActionTask,
        ctx: SessionContext,
        log: ExecutionLog,
        work_items: Sequence[Any],
        started_at: datetime,
        start: float,
        reason: str,
        error: str,
        parent_id: Optional[str],
    ) -> TaskResult:
        log.error(error, operation="execute", result=TaskStatus.FAILED.value,
                  metadata={"reason": reason})
        return TaskResult(
            task_name=task.name,
            kind=TaskKind.ACTION,
            status=TaskStatus.FAILED,
            items_detected=len(work_items),
            items_processed=0,
            items_failed=0,
            duration_ms=_elapsed_ms(start),
            dry_run=ctx.dry_run,
            correlation_id=ctx.correlation_id(task.name),
            started_at=started_at,
            ended_at=utc_now(),
            reason=reason,
            error=error,
            parent_correlation_id=parent_id,
        )

    # -- reporting ----------------------------------------------------------

    def _finish(
        self, selection: TaskSelection, ctx: SessionContext, recorder: ResultRecorder
    ) -> SessionOutcome:
        entries = self.normalizer.normalize(recorder.collect_artifacts())
        results = recorder.load_results()
        summary = self.aggregator.build_summary(
            session_id=ctx.session_id,
            start_time=ctx.started_at,
            end_time=utc_now(),
            dry_run=ctx.dry_run,
            task_results=results,
            log_entries=entries,
            expected_tasks=selection.names,
            host=self.host_info(ctx),
        )
        recorder.write_summary(summary.to_dict())

        documents = self.renderer.render_all(
            summary, self.template_engine, ctx.settings.report_formats
        )
        paths = [recorder.write_report(doc.file_name, doc.content) for doc in documents]
        metrics = summary.aggregate_metrics
        logger.info(
            "Session %s finished: health %.1f, success rate %.1f%%, %d error(s)",
            ctx.session_id,
            metrics.health_score,
            metrics.success_rate,
            metrics.error_count,
        )
        return SessionOutcome(
            summary=summary,
            documents=documents,
            report_paths=paths,
            session_dir=ctx.session_dir,
        )

    def _warn_unknown_allow_lists(self) -> None:
        for name in self.config.allow_list_names:
            if name not in self.table:
                logger.warning("Allow-list configured for unknown task %s", name)
            elif self.table.get(name).kind is not TaskKind.ACTION:
                logger.warning("Allow-list configured for audit task %s is ignored", name)
