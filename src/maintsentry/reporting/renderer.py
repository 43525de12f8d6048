"""Render a SessionSummary into HTML, JSON and plain-text documents."""
from __future__ import annotations

import html
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .. import __version__
from ..tasks.types import STATUS_DISPLAY_NAMES, ReportFormat, TaskResult, format_timestamp
from .analytics import AggregateMetrics, ErrorRecord, SessionSummary, TaskMetric
from .templates import PLACEHOLDER_PATTERN, Template, TemplateBundle, TemplateEngine

logger = logging.getLogger(__name__)

REPORT_BASENAME = "maintenance_report"

_EXTENSIONS = {
    ReportFormat.HTML: "html",
    ReportFormat.JSON: "json",
    ReportFormat.TEXT: "txt",
}
_MEDIA_TYPES = {
    ReportFormat.HTML: "text/html",
    ReportFormat.JSON: "application/json",
    ReportFormat.TEXT: "text/plain",
}


class SafeText(str):
    """Pre-rendered fragment inserted without escaping."""


@dataclass(frozen=True)
class Document:
    format: ReportFormat
    content: str
    file_name: str
    media_type: str


def render_value(value: Any, escape: bool) -> str:
    if value is None:
        return ""
    if isinstance(value, SafeText):
        return str(value)
    if isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    return html.escape(text) if escape else text


def substitute(content: str, values: Mapping[str, Any], escape: bool = False) -> str:
    """Replace ``{{NAME}}`` tokens. Unmapped tokens are left verbatim."""

    def _replace(match) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        return render_value(values[key], escape)

    return PLACEHOLDER_PATTERN.sub(_replace, content)


def _format_score(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.1f}"


class ReportRenderer:
    """Combines a SessionSummary with a TemplateBundle into a Document.

    Metrics are read from the summary as-is; nothing is recomputed per
    output format.
    """

    def __init__(self, title: str = "Maintenance Report") -> None:
        self.title = title

    def render(
        self,
        summary: SessionSummary,
        bundle: TemplateBundle,
        report_format: ReportFormat,
    ) -> Document:
        if report_format is ReportFormat.JSON:
            content = self._render_json(summary)
        else:
            content = self._render_markup(summary, bundle, report_format is ReportFormat.HTML)
        if bundle.fallback_names:
            logger.info(
                "%s report rendered with built-in template(s): %s",
                report_format.value,
                ", ".join(bundle.fallback_names),
            )
        return Document(
            format=report_format,
            content=content,
            file_name=f"{REPORT_BASENAME}.{_EXTENSIONS[report_format]}",
            media_type=_MEDIA_TYPES[report_format],
        )

    def render_all(
        self,
        summary: SessionSummary,
        engine: TemplateEngine,
        formats: Iterable[ReportFormat],
    ) -> List[Document]:
        return [self.render(summary, engine.bundle(fmt), fmt) for fmt in formats]

    # -- JSON ---------------------------------------------------------------

    def payload(self, summary: SessionSummary) -> Dict[str, Any]:
        """The JSON report document, also embedded in the HTML page for export."""
        payload = summary.to_dict()
        payload["report"] = {
            "title": self.title,
            "generator": f"maintsentry {__version__}",
            "generated_at": format_timestamp(summary.end_time),
        }
        return payload

    def _render_json(self, summary: SessionSummary) -> str:
        return json.dumps(self.payload(summary), indent=2, sort_keys=True)

    def _embedded_json(self, summary: SessionSummary) -> str:
        text = json.dumps(self.payload(summary), sort_keys=True)
        # "<" only occurs inside JSON strings; escaping it keeps "</script>" out
        return text.replace("<", "\\u003c")

    # -- HTML / text --------------------------------------------------------

    def _render_markup(self, summary: SessionSummary, bundle: TemplateBundle, escape: bool) -> str:
        results = {r.task_name: r for r in summary.task_results}
        metrics = summary.aggregate_metrics

        card = self._template(bundle, "module_card")
        cards = "".join(
            substitute(card, self.card_values(metric, results.get(metric.task_name)), escape)
            for metric in metrics.task_metrics
        )
        dashboard = substitute(
            self._template(bundle, "dashboard"), self.dashboard_values(metrics), escape
        )
        errors = substitute(
            self._template(bundle, "errors"),
            {
                "ERROR_TOTAL": len(summary.errors),
                "ERROR_ROWS": SafeText(self._error_rows(summary.errors, escape)),
            },
            escape,
        )

        values: Dict[str, Any] = {
            "TITLE": self.title,
            "SESSION_ID": summary.session_id,
            "GENERATED_AT": format_timestamp(summary.end_time),
            "START_TIME": format_timestamp(summary.start_time),
            "END_TIME": format_timestamp(summary.end_time),
            "DURATION": f"{summary.duration_seconds:.1f}s",
            "DRY_RUN": summary.dry_run,
            "MODE": "Dry run" if summary.dry_run else "Live",
            "VERSION": __version__,
            "HOSTNAME": summary.host.get("hostname"),
            "HOST_ROWS": SafeText(self._host_rows(summary.host, escape)),
            "HEALTH_SCORE": _format_score(metrics.health_score),
            "DASHBOARD": SafeText(dashboard),
            "MODULE_CARDS": SafeText(cards),
            "ERRORS_SECTION": SafeText(errors),
            "STYLES": SafeText(self._template(bundle, "style")),
            "SCRIPT": SafeText(self._template(bundle, "script")),
            "REPORT_DATA": SafeText(self._embedded_json(summary)) if escape else "",
        }
        return substitute(self._template(bundle, "main"), values, escape)

    @staticmethod
    def _template(bundle: TemplateBundle, role: str) -> str:
        template: Optional[Template] = bundle.get(role)
        return template.content if template else ""

    @staticmethod
    def card_values(metric: TaskMetric, result: Optional[TaskResult]) -> Dict[str, Any]:
        if result is None:
            return {
                "TASK_NAME": metric.task_name,
                "TASK_KIND": "",
                "STATUS_CLASS": "missing",
                "STATUS_LABEL": "No data",
                "REASON": "(no result recorded)",
                "ITEMS_DETECTED": 0,
                "ITEMS_PROCESSED": 0,
                "ITEMS_FAILED": 0,
                "DURATION_MS": 0,
                "SCORE": _format_score(metric.score),
                "HAS_DATA": False,
                "ERROR": None,
                "CORRELATION_ID": None,
                "DRY_RUN": None,
            }
        return {
            "TASK_NAME": result.task_name,
            "TASK_KIND": result.kind.value,
            "STATUS_CLASS": result.status.value,
            "STATUS_LABEL": STATUS_DISPLAY_NAMES[result.status],
            "REASON": f"({result.reason})" if result.reason else None,
            "ITEMS_DETECTED": result.items_detected,
            "ITEMS_PROCESSED": result.items_processed,
            "ITEMS_FAILED": result.items_failed,
            "DURATION_MS": result.duration_ms,
            "SCORE": _format_score(metric.score),
            "HAS_DATA": True,
            "ERROR": result.error,
            "CORRELATION_ID": result.correlation_id,
            "DRY_RUN": result.dry_run,
        }

    @staticmethod
    def dashboard_values(metrics: AggregateMetrics) -> Dict[str, Any]:
        return {
            "HEALTH_SCORE": _format_score(metrics.health_score),
            "SUCCESS_RATE": _format_score(metrics.success_rate),
            "SECURITY_SCORE": _format_score(metrics.security_score),
            "ERROR_DENSITY_SCORE": _format_score(metrics.error_density_score),
            "DATA_COMPLETENESS": _format_score(metrics.data_completeness),
            "TOTAL_TASKS": metrics.total_tasks,
            "SUCCESSFUL_TASKS": metrics.successful_tasks,
            "PARTIAL_TASKS": metrics.partial_tasks,
            "FAILED_TASKS": metrics.failed_tasks,
            "SKIPPED_TASKS": metrics.skipped_tasks,
            "MISSING_TASKS": metrics.missing_count,
            "MISSING_TASK_NAMES": ", ".join(metrics.missing_tasks),
            "ERROR_COUNT": metrics.error_count,
            "WARNING_COUNT": metrics.warning_count,
            "UNPARSED_COUNT": metrics.unparsed_count,
            "ITEMS_DETECTED": metrics.items_detected,
            "ITEMS_PROCESSED": metrics.items_processed,
            "ITEMS_FAILED": metrics.items_failed,
            "TOTAL_DURATION_MS": metrics.total_duration_ms,
        }

    @staticmethod
    def _host_rows(host: Mapping[str, Any], escape: bool) -> str:
        if escape:
            return "".join(
                f"<li><strong>{html.escape(str(key))}:</strong> {html.escape(str(value))}</li>"
                for key, value in host.items()
            )
        return "\n".join(f"{key}: {value}" for key, value in host.items())

    @staticmethod
    def _error_rows(errors: Iterable[ErrorRecord], escape: bool) -> str:
        errors = list(errors)
        if escape:
            if not errors:
                return '<tr><td colspan="4">No errors recorded.</td></tr>'
            return "".join(
                "<tr>"
                f"<td>{html.escape(e.task_name or '')}</td>"
                f"<td>{html.escape(e.category)}</td>"
                f"<td>{html.escape(e.source)}</td>"
                f"<td>{html.escape(e.message)}</td>"
                "</tr>"
                for e in errors
            )
        if not errors:
            return "  No errors recorded."
        return "\n".join(
            f"  [{e.category}] {e.task_name or e.source}: {e.message}" for e in errors
        )
