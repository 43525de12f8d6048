"""Pytest configuration and shared fixtures for maintsentry tests."""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Optional, Sequence

import pytest

from maintsentry.core.config import ConfigStore
from maintsentry.core.context import SessionContext
from maintsentry.core.injection import DependencyContainer, MockOSInterface
from maintsentry.engine.pipeline import SessionPipeline
from maintsentry.tasks.base import TaskRegistry, TaskTable


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def isolated_registry():
    """Empty task registry for the duration of a test, restored afterwards."""
    saved = dict(TaskRegistry._registry)
    TaskRegistry.clear()
    yield TaskRegistry
    TaskRegistry.clear()
    TaskRegistry._registry.update(saved)


@pytest.fixture
def mock_os(tmp_path) -> MockOSInterface:
    mock = MockOSInterface()
    mock.mock_temp_directory(tmp_path / "tmp")
    return mock


@pytest.fixture
def make_config(tmp_path) -> Callable[..., ConfigStore]:
    """Factory for a ConfigStore whose artifacts land under tmp_path."""

    def _create(
        allow_lists: Optional[Dict[str, list]] = None,
        settings: Optional[Dict[str, Any]] = None,
        tasks: Optional[Dict[str, Dict[str, Any]]] = None,
        task_order: Sequence[str] = (),
    ) -> ConfigStore:
        merged = {
            "artifact_dir": str(tmp_path / "sessions"),
            "log_dir": str(tmp_path / "logs"),
        }
        merged.update(settings or {})
        return ConfigStore.from_dict(
            {
                "settings": merged,
                "allow_lists": allow_lists or {},
                "tasks": tasks or {},
                "task_order": list(task_order),
            }
        )

    return _create


@pytest.fixture
def make_context(mock_os) -> Callable[..., SessionContext]:
    def _create(config: ConfigStore, **kwargs: Any) -> SessionContext:
        kwargs.setdefault("container", DependencyContainer(os_interface=mock_os))
        return SessionContext.create(config, **kwargs)

    return _create


@pytest.fixture
def session_ctx(make_config, make_context) -> SessionContext:
    return make_context(make_config())


@pytest.fixture
def run_session(make_context):
    """Run a full pipeline session over the given task instances.

    Returns ``(outcome, ctx)``.
    """

    def _run(config: ConfigStore, tasks: Iterable[Any], names=None, ctx=None, **pipeline_kwargs):
        pipeline_kwargs.setdefault("host_info", lambda _ctx: {"hostname": "test-host"})
        pipeline = SessionPipeline(config, TaskTable(tasks), **pipeline_kwargs)
        ctx = ctx or make_context(config)
        outcome = pipeline.run(pipeline.select(names), ctx)
        return outcome, ctx

    return _run
