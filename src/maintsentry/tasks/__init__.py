"""Maintenance task implementations."""
from __future__ import annotations

from importlib import import_module
from typing import Iterable, Type

from .base import (
    ActionTask,
    AuditTask,
    MaintenanceTask,
    TaskRegistry,
    TaskSelection,
    TaskSpec,
    TaskTable,
)

_TASK_MODULES: tuple[str, ...] = (
    "packages",
    "services",
    "temp_files",
    "hardening",
)


def load_tasks() -> Iterable[Type[MaintenanceTask]]:
    """Import all built-in task modules to populate the registry.

    Classes dropped by ``TaskRegistry.clear()`` are registered again.
    """

    for module_name in _TASK_MODULES:
        module = import_module(f"{__name__}.{module_name}")
        for task_cls in getattr(module, "TASKS", ()):
            if TaskRegistry.get(task_cls.name) is None:
                TaskRegistry.register(task_cls)
    return TaskRegistry.get_all()


__all__ = [
    "ActionTask",
    "AuditTask",
    "MaintenanceTask",
    "TaskRegistry",
    "TaskSelection",
    "TaskSpec",
    "TaskTable",
    "load_tasks",
]
