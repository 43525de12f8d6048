"""Log normalization, analytics and report rendering."""

from .analytics import AggregateMetrics, AnalyticsAggregator, ErrorRecord, SessionSummary, TaskMetric
from .normalizer import EntryKind, LogEntry, LogNormalizer
from .renderer import Document, ReportRenderer
from .templates import Template, TemplateBundle, TemplateEngine, TemplateType

__all__ = [
    "AggregateMetrics",
    "AnalyticsAggregator",
    "Document",
    "EntryKind",
    "ErrorRecord",
    "LogEntry",
    "LogNormalizer",
    "ReportRenderer",
    "SessionSummary",
    "TaskMetric",
    "Template",
    "TemplateBundle",
    "TemplateEngine",
    "TemplateType",
]
