"""Session pipeline: diff, decide, execute, record."""

from .decision import Decision, ExecutionDecisionEngine, Verdict
from .diff import DiffEngine
from .executor import ActionExecutor, ExecutionOutcome
from .pipeline import SessionOutcome, SessionPipeline
from .recorder import ExecutionLog, ResultRecorder

__all__ = [
    "ActionExecutor",
    "Decision",
    "DiffEngine",
    "ExecutionDecisionEngine",
    "ExecutionLog",
    "ExecutionOutcome",
    "ResultRecorder",
    "SessionOutcome",
    "SessionPipeline",
    "Verdict",
]
