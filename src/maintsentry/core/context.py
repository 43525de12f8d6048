"""Explicit session state passed to every component call."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..tasks.types import utc_now
from .config import ConfigStore, Settings
from .injection import DependencyContainer
from .interfaces import OSInterface
from .resilience import CancellationToken

_CORRELATION_NAMESPACE = uuid.UUID("6f1c2a0e-8d53-4c1e-9a57-3f0b1f3c9d21")


def new_session_id(now: Optional[datetime] = None) -> str:
    """Sortable, collision-resistant session identifier."""
    moment = now or utc_now()
    return f"{moment.strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:8]}"


def make_correlation_id(session_id: str, task_name: str) -> str:
    """Deterministic id, unique per (session, task) pair."""
    return str(uuid.uuid5(_CORRELATION_NAMESPACE, f"{session_id}/{task_name}"))


@dataclass(frozen=True)
class SessionContext:
    """Everything a component needs to know about the running session."""

    session_id: str
    started_at: datetime
    dry_run: bool
    config: ConfigStore
    container: DependencyContainer
    artifact_root: Path
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    @classmethod
    def create(
        cls,
        config: ConfigStore,
        *,
        dry_run: Optional[bool] = None,
        container: Optional[DependencyContainer] = None,
        artifact_root: Optional[Path] = None,
        session_id: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> "SessionContext":
        started = utc_now()
        return cls(
            session_id=session_id or new_session_id(started),
            started_at=started,
            dry_run=config.settings.dry_run if dry_run is None else dry_run,
            config=config,
            container=container or DependencyContainer.default(),
            artifact_root=artifact_root or config.settings.artifact_dir,
            cancellation=cancellation or CancellationToken(),
        )

    @property
    def settings(self) -> Settings:
        return self.config.settings

    @property
    def os(self) -> OSInterface:
        return self.container.os

    @property
    def session_dir(self) -> Path:
        return self.artifact_root / self.session_id

    def task_options(self, task_name: str) -> Dict[str, Any]:
        return self.config.task_options(task_name)

    def correlation_id(self, task_name: str) -> str:
        return make_correlation_id(self.session_id, task_name)
