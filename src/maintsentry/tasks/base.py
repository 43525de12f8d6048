"""Base classes, registry and registration table for maintenance tasks."""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    Type,
)

from ..core.errors import ConfigurationError
from .types import (
    DEFAULT_MATCH_FIELD,
    DetectionRecord,
    ItemOutcome,
    MatchMode,
    OutcomeKind,
    Source,
    TaskKind,
    WorkItem,
)

if TYPE_CHECKING:
    from ..core.context import SessionContext

logger = logging.getLogger(__name__)


class TaskRegistry:
    """Registry for all built-in maintenance tasks."""

    _registry: ClassVar[Dict[str, Type["MaintenanceTask"]]] = {}

    @classmethod
    def register(cls, task_cls: Type["MaintenanceTask"]) -> None:
        name = task_cls.name
        if not name:
            raise ValueError(f"Maintenance task {task_cls.__name__} must define a name")
        if name in cls._registry:
            raise ValueError(f"Duplicate task name registered: {name}")
        cls._registry[name] = task_cls
        logger.debug("Registered maintenance task: %s", name)

    @classmethod
    def get(cls, name: str) -> Optional[Type["MaintenanceTask"]]:
        return cls._registry.get(name)

    @classmethod
    def get_all(cls) -> Iterable[Type["MaintenanceTask"]]:
        return cls._registry.values()

    @classmethod
    def clear(cls) -> None:
        cls._registry.clear()


class MaintenanceTaskMeta(abc.ABCMeta):
    """Metaclass that auto-registers concrete maintenance tasks."""

    def __new__(mcls, name: str, bases: Tuple[type, ...], namespace: Dict[str, Any]):
        cls = super().__new__(mcls, name, bases, namespace)
        auto_register = getattr(cls, "auto_register", True)
        # MaintenanceTask itself has no kind and no abstract methods
        has_kind = getattr(cls, "kind", None) is not None
        if auto_register and has_kind and not inspect_is_abstract(cls):
            TaskRegistry.register(cls)
        return cls


def inspect_is_abstract(cls: type) -> bool:
    """Helper to determine whether a class is abstract."""

    abstract_methods = getattr(cls, "__abstractmethods__", set())
    return bool(abstract_methods)


class MaintenanceTask(metaclass=MaintenanceTaskMeta):
    """Base class for audit and action tasks."""

    auto_register: ClassVar[bool] = True
    kind: ClassVar[TaskKind]
    name: str = ""
    description: str = ""
    category: str = "general"
    # Seconds; None falls back to the configured task_timeout
    timeout: Optional[float] = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, kind={self.kind.value})"


class AuditTask(MaintenanceTask):
    """Read-only detection step producing DetectionRecords."""

    kind = TaskKind.AUDIT
    source: Source = Source.OTHER

    @abc.abstractmethod
    def detect(self, ctx: "SessionContext") -> List[DetectionRecord]:
        """Discover system state. May raise DetectionError."""

    def record(self, name: str, match_key: Optional[str] = None, **metadata: Any) -> DetectionRecord:
        """Shorthand for building a record from this audit's source."""
        return DetectionRecord(
            name=name,
            source=self.source,
            match_key=match_key if match_key is not None else name,
            metadata=metadata,
        )


class ActionTask(MaintenanceTask):
    """Mutating task gated by a diff against an allow-list."""

    kind = TaskKind.ACTION
    depends_on: Optional[str] = None
    always_run: bool = False
    # Lower runs earlier
    priority: int = 100
    match_field: str = DEFAULT_MATCH_FIELD
    match_mode: MatchMode = MatchMode.EXACT

    def validate(self, item: WorkItem, ctx: "SessionContext") -> Optional[str]:
        """Return a reason the item needs no change, or None if it should be acted on.

        Must not mutate system state; dry runs call only this.
        """
        return None

    @abc.abstractmethod
    def apply(self, item: WorkItem, ctx: "SessionContext") -> Optional[str]:
        """Perform the mutating call for one item. Raises ActionItemError on failure."""

    def act(self, item: WorkItem, ctx: "SessionContext", dry_run: bool) -> ItemOutcome:
        reason = self.validate(item, ctx)
        if reason is not None:
            kind = OutcomeKind.WOULD_SKIP if dry_run else OutcomeKind.ALREADY_ABSENT
            return ItemOutcome(item=item, outcome=kind, detail=reason)
        if dry_run:
            return ItemOutcome(item=item, outcome=OutcomeKind.WOULD_SUCCEED)
        detail = self.apply(item, ctx)
        return ItemOutcome(item=item, outcome=OutcomeKind.SUCCESS, detail=detail)


# =============================================================================
# Registration table
# =============================================================================


@dataclass(frozen=True)
class TaskSpec:
    """One row of the registration table."""

    name: str
    kind: TaskKind
    depends_on: Optional[str]
    task: MaintenanceTask


class TaskTable:
    """TaskName -> {kind, dependency, handler}, validated before a session starts."""

    def __init__(self, tasks: Iterable[MaintenanceTask]) -> None:
        self._specs: Dict[str, TaskSpec] = {}
        for task in tasks:
            if not task.name:
                raise ConfigurationError(f"Task {type(task).__name__} has no name")
            if task.name in self._specs:
                raise ConfigurationError(f"Duplicate task name: {task.name}")
            self._specs[task.name] = TaskSpec(
                name=task.name,
                kind=task.kind,
                depends_on=getattr(task, "depends_on", None),
                task=task,
            )

    @classmethod
    def from_registry(cls) -> "TaskTable":
        """Instantiate every registered task class."""
        return cls(task_cls() for task_cls in TaskRegistry.get_all())

    def validate(self) -> None:
        """Fail fast on dependency references that cannot be satisfied."""
        for spec in self._specs.values():
            if spec.kind is not TaskKind.ACTION or spec.depends_on is None:
                continue
            dependency = self._specs.get(spec.depends_on)
            if dependency is None:
                raise ConfigurationError(
                    f"Action task {spec.name} depends on unregistered task {spec.depends_on}"
                )
            if dependency.kind is not TaskKind.AUDIT:
                raise ConfigurationError(
                    f"Action task {spec.name} depends on {spec.depends_on}, which is not an audit"
                )

    def get(self, name: str) -> TaskSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise ConfigurationError(f"Unknown task: {name}") from None

    def dependents(self, audit_name: str) -> List[str]:
        return [s.name for s in self._specs.values() if s.depends_on == audit_name]

    @property
    def names(self) -> List[str]:
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[TaskSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)


@dataclass(frozen=True)
class TaskSelection:
    """Ordered subset of the table to run in one session."""

    tasks: Tuple[MaintenanceTask, ...]
    table: TaskTable

    @property
    def names(self) -> List[str]:
        return [task.name for task in self.tasks]

    def __iter__(self) -> Iterator[MaintenanceTask]:
        return iter(self.tasks)

    def __len__(self) -> int:
        return len(self.tasks)
