"""Executes an action capability over a work-item set with partial-failure tracking."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence

from ..core.errors import ActionItemError
from ..tasks.types import (
    ItemOutcome,
    OutcomeKind,
    TaskKind,
    TaskResult,
    TaskStatus,
    WorkItem,
    utc_now,
)

if TYPE_CHECKING:
    from ..core.context import SessionContext
    from ..core.interfaces import ActionCapability
    from .recorder import ExecutionLog

logger = logging.getLogger(__name__)

_PROCESSED = {
    OutcomeKind.SUCCESS,
    OutcomeKind.ALREADY_ABSENT,
    OutcomeKind.WOULD_SUCCEED,
    OutcomeKind.WOULD_SKIP,
}


@dataclass(frozen=True)
class ExecutionOutcome:
    """TaskResult plus the per-item outcomes it was aggregated from."""

    result: TaskResult
    outcomes: List[ItemOutcome]


def aggregate_status(outcomes: Sequence[ItemOutcome]) -> TaskStatus:
    """Success if nothing failed, Failed if everything failed, else PartialFailure."""
    failed = sum(1 for o in outcomes if o.failed)
    if failed == 0:
        return TaskStatus.SUCCESS
    if failed == len(outcomes):
        return TaskStatus.FAILED
    return TaskStatus.PARTIAL_FAILURE


class ActionExecutor:
    """Invokes ``act()`` once per work item.

    A failing item never aborts the task: the error is captured into its
    ItemOutcome and the remaining items are still processed. Dry runs go
    through the same loop; the capability skips its mutating call.

    Once ``stop`` is set no further item is started. An item already in
    progress runs to completion.
    """

    def execute(
        self,
        capability: "ActionCapability",
        work_items: Sequence[WorkItem],
        ctx: "SessionContext",
        *,
        correlation_id: str,
        parent_correlation_id: Optional[str] = None,
        log: Optional["ExecutionLog"] = None,
        stop: Optional[threading.Event] = None,
    ) -> ExecutionOutcome:
        dry_run = ctx.dry_run
        started_at = utc_now()
        start = time.perf_counter()
        outcomes: List[ItemOutcome] = []

        if log is not None:
            log.info(
                f"Processing {len(work_items)} work item(s)" + (" (dry run)" if dry_run else ""),
                operation="execute",
                metadata={"dry_run": dry_run, "items": len(work_items)},
            )

        for item in work_items:
            if stop is not None and stop.is_set():
                logger.warning(
                    "Action %s stopped after %d of %d item(s)",
                    capability.name,
                    len(outcomes),
                    len(work_items),
                )
                break
            outcome = self._act_on(capability, item, ctx, dry_run)
            outcomes.append(outcome)
            # The log is closed once the caller has given up on this task
            if log is not None and not (stop is not None and stop.is_set()):
                self._log_outcome(log, outcome)

        processed = sum(1 for o in outcomes if o.outcome in _PROCESSED)
        failed = sum(1 for o in outcomes if o.failed)
        status = aggregate_status(outcomes)
        errors = [o.error for o in outcomes if o.error]
        result = TaskResult(
            task_name=capability.name,
            kind=TaskKind.ACTION,
            status=status,
            items_detected=len(work_items),
            items_processed=processed,
            items_failed=failed,
            duration_ms=int((time.perf_counter() - start) * 1000),
            dry_run=dry_run,
            correlation_id=correlation_id,
            started_at=started_at,
            ended_at=utc_now(),
            error="; ".join(errors[:5]) if errors else None,
            parent_correlation_id=parent_correlation_id,
        )
        logger.info(
            "Action %s finished: %s (%d processed, %d failed of %d)",
            capability.name,
            status.value,
            processed,
            failed,
            len(work_items),
        )
        return ExecutionOutcome(result=result, outcomes=outcomes)

    @staticmethod
    def _act_on(
        capability: "ActionCapability",
        item: WorkItem,
        ctx: "SessionContext",
        dry_run: bool,
    ) -> ItemOutcome:
        try:
            return capability.act(item, ctx, dry_run)
        except ActionItemError as exc:
            logger.warning("Action %s failed for %s: %s", capability.name, item.name, exc.reason)
            return ItemOutcome(item=item, outcome=OutcomeKind.FAILED, error=str(exc))
        except Exception as exc:  # noqa: BLE001 - one item must not abort the task
            logger.exception("Unhandled error in %s for item %s", capability.name, item.name)
            return ItemOutcome(
                item=item,
                outcome=OutcomeKind.FAILED,
                error=f"{item.name}: {type(exc).__name__}: {exc}",
            )

    @staticmethod
    def _log_outcome(log: "ExecutionLog", outcome: ItemOutcome) -> None:
        metadata = {
            "category": outcome.item.entry.category,
            "source": outcome.item.record.source.value,
        }
        if outcome.detail:
            metadata["detail"] = outcome.detail
        if outcome.failed:
            log.error(
                outcome.error or "failed",
                operation="act",
                target=outcome.item.name,
                result=outcome.outcome.value,
                metadata=metadata,
            )
        elif outcome.outcome is OutcomeKind.SUCCESS:
            log.success(
                f"Processed {outcome.item.name}",
                operation="act",
                target=outcome.item.name,
                result=outcome.outcome.value,
                metadata=metadata,
            )
        else:
            log.info(
                f"{outcome.item.name}: {outcome.outcome.value.replace('_', ' ')}",
                operation="act",
                target=outcome.item.name,
                result=outcome.outcome.value,
                metadata=metadata,
            )
