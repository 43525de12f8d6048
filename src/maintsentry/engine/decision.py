"""Run/skip decisions and execution ordering for maintenance tasks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from ..core.errors import ConfigurationError
from ..tasks.base import ActionTask, MaintenanceTask, TaskSelection, TaskTable
from ..tasks.types import TaskKind, TaskResult, WorkItem

logger = logging.getLogger(__name__)

REASON_MISSING_DEPENDENCY = "missing dependency"
REASON_NOTHING_TO_DO = "nothing to do"
REASON_CANCELLED = "cancelled"
REASON_TIMED_OUT = "TimedOut"


class Verdict(str, Enum):
    RUN = "run"
    SKIP = "skip"


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    reason: str

    @property
    def should_run(self) -> bool:
        return self.verdict is Verdict.RUN


class ExecutionDecisionEngine:
    """Decides per action task whether to run, and in which order tasks run.

    Rules are evaluated in order:

    1. required audit has no result yet  -> skip ("missing dependency")
    2. empty diff and not always-run     -> skip ("nothing to do")
    3. otherwise                         -> run
    """

    def decide(
        self,
        task: ActionTask,
        audit_result: Optional[TaskResult],
        diff: Sequence[WorkItem],
    ) -> Decision:
        if task.depends_on is not None and audit_result is None:
            decision = Decision(Verdict.SKIP, REASON_MISSING_DEPENDENCY)
        elif not diff and not task.always_run:
            decision = Decision(Verdict.SKIP, REASON_NOTHING_TO_DO)
        elif not diff:
            decision = Decision(Verdict.RUN, "always-run")
        else:
            decision = Decision(Verdict.RUN, f"{len(diff)} work item(s)")
        logger.debug("Decision for %s: %s (%s)", task.name, decision.verdict.value, decision.reason)
        return decision

    @staticmethod
    def cancelled() -> Decision:
        return Decision(Verdict.SKIP, REASON_CANCELLED)

    @staticmethod
    def order_tasks(
        tasks: Iterable[MaintenanceTask],
        configured_order: Sequence[str] = (),
    ) -> List[MaintenanceTask]:
        """All audits first in configured order, then actions by priority.

        Tasks absent from ``configured_order`` keep their input order after
        the configured ones. Priority ties keep configured order.
        """
        task_list = list(tasks)
        position = {name: index for index, name in enumerate(configured_order)}
        fallback = len(position)

        def configured(item: Tuple[int, MaintenanceTask]) -> Tuple[int, int]:
            index, task = item
            return (position.get(task.name, fallback), index)

        ranked = [task for _, task in sorted(enumerate(task_list), key=configured)]
        audits = [t for t in ranked if t.kind is TaskKind.AUDIT]
        actions = [t for t in ranked if t.kind is TaskKind.ACTION]
        actions.sort(key=lambda t: getattr(t, "priority", 100))
        return audits + actions

    def select(
        self,
        table: TaskTable,
        names: Optional[Sequence[str]] = None,
        configured_order: Sequence[str] = (),
    ) -> TaskSelection:
        """Resolve task names against the table into an ordered selection."""
        if names:
            unknown = [name for name in names if name not in table]
            if unknown:
                raise ConfigurationError(f"Unknown task(s) selected: {', '.join(unknown)}")
            chosen = [table.get(name).task for name in dict.fromkeys(names)]
        else:
            chosen = [spec.task for spec in table]
        ordered = self.order_tasks(chosen, configured_order)
        return TaskSelection(tasks=tuple(ordered), table=table)
