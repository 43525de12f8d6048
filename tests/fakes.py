"""Fake maintenance tasks shared by the test suite."""
from __future__ import annotations

import time
from typing import Any, Iterable, List, Optional, Sequence

from maintsentry.core.errors import ActionItemError
from maintsentry.tasks.base import ActionTask, AuditTask
from maintsentry.tasks.types import DetectionRecord, MatchMode, Source, WorkItem


def make_records(*names: str, source: Source = Source.OTHER, **metadata: Any) -> List[DetectionRecord]:
    """DetectionRecords whose name and match_key are both ``name``."""
    return [DetectionRecord(name=n, source=source, match_key=n, metadata=dict(metadata)) for n in names]


class FakeAudit(AuditTask):
    """Audit returning canned records, or raising / sleeping on demand."""

    auto_register = False

    def __init__(
        self,
        name: str = "fake_audit",
        records: Iterable[DetectionRecord] = (),
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.records = list(records)
        self.error = error
        self.delay = delay
        self.calls = 0

    def detect(self, ctx) -> List[DetectionRecord]:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.records)


class FakeAction(ActionTask):
    """Action recording what it applied.

    Items named in ``fail`` raise ActionItemError, ``crash`` raises a plain
    RuntimeError and ``absent`` validates as already done.
    """

    auto_register = False
    match_field = "name"

    def __init__(
        self,
        name: str = "fake_action",
        depends_on: Optional[str] = "fake_audit",
        *,
        always_run: bool = False,
        priority: int = 100,
        match_mode: MatchMode = MatchMode.EXACT,
        fail: Sequence[str] = (),
        crash: Sequence[str] = (),
        absent: Sequence[str] = (),
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.depends_on = depends_on
        self.always_run = always_run
        self.priority = priority
        self.match_mode = match_mode
        self.fail = set(fail)
        self.crash = set(crash)
        self.absent = set(absent)
        self.delay = delay
        self.validated: List[str] = []
        self.applied: List[str] = []

    def validate(self, item: WorkItem, ctx) -> Optional[str]:
        self.validated.append(item.name)
        if item.name in self.absent:
            return "already absent"
        return None

    def apply(self, item: WorkItem, ctx) -> Optional[str]:
        if self.delay:
            time.sleep(self.delay)
        if item.name in self.fail:
            raise ActionItemError(item, "simulated failure")
        if item.name in self.crash:
            raise RuntimeError("simulated crash")
        self.applied.append(item.name)
        return "done"
