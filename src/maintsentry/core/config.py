"""Configuration store: allow-lists and session settings.

The configuration is a single JSON document loaded once per session and
never mutated afterwards. Anything that makes it unusable raises
ConfigurationError, which aborts the session before any task runs.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..tasks.types import DEFAULT_MATCH_FIELD, MATCH_FIELDS, ConfigEntry, MatchMode, ReportFormat
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".local" / "state" / "maintsentry"
DEFAULT_ARTIFACT_DIR = DEFAULT_STATE_DIR / "sessions"
DEFAULT_LOG_DIR = DEFAULT_STATE_DIR / "logs"
DEFAULT_TASK_TIMEOUT = 300.0


@dataclass(frozen=True)
class HealthWeights:
    """Weights of the health score sub-scores. Must sum to 1.0."""

    success_rate: float = 0.5
    security: float = 0.3
    error_density: float = 0.2

    def __post_init__(self) -> None:
        values = (self.success_rate, self.security, self.error_density)
        if any(not isinstance(v, (int, float)) or v < 0 for v in values):
            raise ConfigurationError(f"Health weights must be non-negative numbers: {values}")
        if not math.isclose(sum(values), 1.0, abs_tol=1e-6):
            raise ConfigurationError(
                f"Health weights must sum to 1.0, got {sum(values):.4f}"
            )

    def to_dict(self) -> Dict[str, float]:
        return {
            "success_rate": self.success_rate,
            "security": self.security,
            "error_density": self.error_density,
        }


@dataclass(frozen=True)
class Settings:
    """Session-wide settings."""

    dry_run: bool = False
    task_timeout: float = DEFAULT_TASK_TIMEOUT
    artifact_dir: Path = DEFAULT_ARTIFACT_DIR
    log_dir: Path = DEFAULT_LOG_DIR
    template_dir: Optional[Path] = None
    legacy_template_dirs: Tuple[Path, ...] = ()
    report_formats: Tuple[ReportFormat, ...] = (
        ReportFormat.HTML,
        ReportFormat.JSON,
        ReportFormat.TEXT,
    )
    report_title: str = "Maintenance Report"
    security_tasks: Tuple[str, ...] = ()
    health_weights: HealthWeights = field(default_factory=HealthWeights)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Settings":
        if not isinstance(data, Mapping):
            raise ConfigurationError("'settings' must be an object")
        kwargs: Dict[str, Any] = {}
        if "dry_run" in data:
            kwargs["dry_run"] = _expect(data, "dry_run", bool)
        if "task_timeout" in data:
            timeout = _expect(data, "task_timeout", (int, float))
            if timeout < 0:
                raise ConfigurationError("'task_timeout' must not be negative")
            kwargs["task_timeout"] = float(timeout)
        for key in ("artifact_dir", "log_dir"):
            if data.get(key):
                kwargs[key] = Path(_expect(data, key, str)).expanduser()
        if data.get("template_dir"):
            kwargs["template_dir"] = Path(_expect(data, "template_dir", str)).expanduser()
        if "legacy_template_dirs" in data:
            kwargs["legacy_template_dirs"] = tuple(
                Path(p).expanduser() for p in _expect_str_list(data, "legacy_template_dirs")
            )
        if "report_formats" in data:
            try:
                kwargs["report_formats"] = tuple(
                    ReportFormat(fmt.lower()) for fmt in _expect_str_list(data, "report_formats")
                )
            except ValueError as exc:
                raise ConfigurationError(f"Unknown report format: {exc}") from exc
        if "report_title" in data:
            kwargs["report_title"] = _expect(data, "report_title", str)
        if "security_tasks" in data:
            kwargs["security_tasks"] = tuple(_expect_str_list(data, "security_tasks"))
        if "health_weights" in data:
            weights = _expect(data, "health_weights", dict)
            try:
                kwargs["health_weights"] = HealthWeights(**weights)
            except TypeError as exc:
                raise ConfigurationError(f"Invalid health_weights: {exc}") from exc
        return cls(**kwargs)


def _expect(data: Mapping[str, Any], key: str, types: Any) -> Any:
    value = data[key]
    allowed = types if isinstance(types, tuple) else (types,)
    # bool is an int subclass; refuse it where a number is expected
    if isinstance(value, bool) and bool not in allowed:
        raise ConfigurationError(f"'{key}' has invalid type bool")
    if not isinstance(value, allowed):
        raise ConfigurationError(f"'{key}' has invalid type {type(value).__name__}")
    return value


def _expect_str_list(data: Mapping[str, Any], key: str) -> List[str]:
    value = data[key]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"'{key}' must be a list of strings")
    return list(value)


class ConfigStore:
    """Immutable view over the loaded configuration document."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        task_order: Sequence[str] = (),
        task_options: Optional[Mapping[str, Mapping[str, Any]]] = None,
        allow_lists: Optional[Mapping[str, Sequence[Any]]] = None,
        source: Optional[Path] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.task_order: Tuple[str, ...] = tuple(task_order)
        self.source = source
        self._task_options = {name: dict(opts) for name, opts in (task_options or {}).items()}
        self._allow_lists = {name: list(entries) for name, entries in (allow_lists or {}).items()}
        # Validate every allow-list up front so errors surface before any task runs
        for name, entries in self._allow_lists.items():
            for raw in entries:
                _parse_entry(name, raw, DEFAULT_MATCH_FIELD, MatchMode.EXACT)

    @classmethod
    def load(cls, path: Path) -> "ConfigStore":
        """Load configuration from a JSON file."""
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Cannot read configuration {path}: {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc
        store = cls.from_dict(data, source=path)
        logger.info("Loaded configuration from %s", path)
        return store

    @classmethod
    def from_dict(cls, data: Any, source: Optional[Path] = None) -> "ConfigStore":
        if not isinstance(data, Mapping):
            raise ConfigurationError("Configuration root must be an object")
        settings = Settings.from_dict(data.get("settings") or {})
        task_order = _expect_str_list(data, "task_order") if "task_order" in data else []
        tasks = data.get("tasks") or {}
        if not isinstance(tasks, Mapping) or not all(isinstance(v, Mapping) for v in tasks.values()):
            raise ConfigurationError("'tasks' must map task names to objects")
        allow_lists = data.get("allow_lists") or {}
        if not isinstance(allow_lists, Mapping) or not all(
            isinstance(v, list) for v in allow_lists.values()
        ):
            raise ConfigurationError("'allow_lists' must map task names to lists")
        return cls(
            settings,
            task_order=task_order,
            task_options=tasks,
            allow_lists=allow_lists,
            source=source,
        )

    def with_settings(self, settings: Settings) -> "ConfigStore":
        """Copy of this store with ``settings`` replaced (CLI overrides)."""
        return type(self)(
            settings,
            task_order=self.task_order,
            task_options=self._task_options,
            allow_lists=self._allow_lists,
            source=self.source,
        )

    @property
    def allow_list_names(self) -> List[str]:
        return list(self._allow_lists)

    def task_options(self, task_name: str) -> Dict[str, Any]:
        return dict(self._task_options.get(task_name, {}))

    def is_enabled(self, task_name: str) -> bool:
        return bool(self._task_options.get(task_name, {}).get("enabled", True))

    def task_timeout(self, task_name: str, default: Optional[float] = None) -> float:
        """Per-task timeout: task option, then task class default, then settings."""
        value = self._task_options.get(task_name, {}).get("timeout")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if default is not None:
            return default
        return self.settings.task_timeout

    def allow_list(
        self,
        task_name: str,
        *,
        match_field: str = DEFAULT_MATCH_FIELD,
        match_mode: MatchMode = MatchMode.EXACT,
    ) -> List[ConfigEntry]:
        """Allow-list entries for an action task, filled with the task's match rule."""
        return [
            _parse_entry(task_name, raw, match_field, match_mode)
            for raw in self._allow_lists.get(task_name, [])
        ]


def _parse_entry(
    task_name: str,
    raw: Any,
    match_field: str,
    match_mode: MatchMode,
) -> ConfigEntry:
    if isinstance(raw, str):
        if not raw.strip():
            raise ConfigurationError(f"Empty allow-list pattern for {task_name}")
        return ConfigEntry(pattern=raw.strip(), match_field=match_field, match_mode=match_mode)
    if not isinstance(raw, Mapping) or not isinstance(raw.get("pattern"), str):
        raise ConfigurationError(
            f"Allow-list entry for {task_name} must be a string or an object with 'pattern'"
        )
    entry_field = str(raw.get("match_field", match_field))
    if entry_field not in MATCH_FIELDS and not entry_field.startswith("metadata."):
        raise ConfigurationError(f"Unknown match_field '{entry_field}' for {task_name}")
    try:
        entry_mode = MatchMode(str(raw.get("match_mode", match_mode.value)).lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unknown match_mode for {task_name}: {exc}") from exc
    return ConfigEntry(
        pattern=raw["pattern"].strip(),
        match_field=entry_field,
        match_mode=entry_mode,
        category=str(raw.get("category", "default")),
    )
