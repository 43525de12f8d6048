"""Report template resolution with multi-tier fallback and mtime-keyed caching.

Resolution order for a template ``name``:

1. ``<primary_dir>/<name>``
2. ``<primary_dir>/<subdir>/<name>`` (``components/`` for markup, ``assets/``
   for stylesheets and scripts)
3. ``<legacy_dir>/<name>`` for each configured legacy directory
4. the built-in literal from ``fallbacks``

Cached entries are keyed on the resolved path and its ``st_mtime_ns``. An
entry is reused until the file's modification time changes; there is no
wall-clock expiry.
"""
from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from ..core.errors import TemplateResolutionError
from ..tasks.types import ReportFormat
from .fallbacks import fallback_for

logger = logging.getLogger(__name__)

PACKAGED_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Z][A-Z0-9_]*)\s*\}\}")


class TemplateType(str, Enum):
    MAIN = "main"
    COMPONENT = "component"
    STYLE = "style"
    SCRIPT = "script"


_SUBDIRS = {
    TemplateType.MAIN: "components",
    TemplateType.COMPONENT: "components",
    TemplateType.STYLE: "assets",
    TemplateType.SCRIPT: "assets",
}

REQUIRED_PLACEHOLDERS: Dict[TemplateType, Tuple[str, ...]] = {
    TemplateType.MAIN: ("TITLE", "DASHBOARD", "MODULE_CARDS", "ERRORS_SECTION"),
    TemplateType.COMPONENT: (),
    TemplateType.STYLE: (),
    TemplateType.SCRIPT: (),
}

# Components declare their own set, keyed by file stem
COMPONENT_PLACEHOLDERS: Dict[str, Tuple[str, ...]] = {
    "module_card": ("TASK_NAME", "STATUS_LABEL"),
    "dashboard": ("HEALTH_SCORE", "SUCCESS_RATE", "DATA_COMPLETENESS"),
    "errors": ("ERROR_ROWS",),
}

# File names each output format needs
FORMAT_TEMPLATES: Dict[ReportFormat, Dict[str, Tuple[str, TemplateType]]] = {
    ReportFormat.HTML: {
        "main": ("report.html", TemplateType.MAIN),
        "module_card": ("module_card.html", TemplateType.COMPONENT),
        "dashboard": ("dashboard.html", TemplateType.COMPONENT),
        "errors": ("errors.html", TemplateType.COMPONENT),
        "style": ("report.css", TemplateType.STYLE),
        "script": ("dashboard.js", TemplateType.SCRIPT),
    },
    ReportFormat.TEXT: {
        "main": ("report.txt", TemplateType.MAIN),
        "module_card": ("module_card.txt", TemplateType.COMPONENT),
        "dashboard": ("dashboard.txt", TemplateType.COMPONENT),
        "errors": ("errors.txt", TemplateType.COMPONENT),
    },
    ReportFormat.JSON: {},
}


def required_placeholders(name: str, template_type: TemplateType) -> Tuple[str, ...]:
    if template_type is TemplateType.COMPONENT:
        return COMPONENT_PLACEHOLDERS.get(Path(name).stem, ())
    return REQUIRED_PLACEHOLDERS[template_type]


def find_placeholders(content: str) -> List[str]:
    """Placeholder names in order of first appearance."""
    seen: Dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(content):
        seen.setdefault(match.group(1), None)
    return list(seen)


@dataclass(frozen=True)
class Template:
    name: str
    type: TemplateType
    content: str
    resolved_path: Optional[Path] = None
    is_fallback: bool = False
    required_placeholders: Tuple[str, ...] = ()
    missing_placeholders: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.missing_placeholders


@dataclass(frozen=True)
class TemplateBundle:
    """All templates one output format needs, keyed by role."""

    format: ReportFormat
    templates: Dict[str, Template] = field(default_factory=dict)

    def get(self, role: str) -> Optional[Template]:
        return self.templates.get(role)

    @property
    def main(self) -> Optional[Template]:
        return self.templates.get("main")

    @property
    def fallback_names(self) -> List[str]:
        return [t.name for t in self.templates.values() if t.is_fallback]


class CacheInfo(NamedTuple):
    hits: int
    misses: int
    size: int


class TemplateEngine:
    """Resolves, validates and caches report templates.

    ``get()`` never raises and never returns empty content. The cache is
    shared by every task in the process and guarded by a lock.
    """

    def __init__(
        self,
        primary_dir: Optional[Path] = None,
        legacy_dirs: Sequence[Path] = (),
    ) -> None:
        self.primary_dir = Path(primary_dir) if primary_dir else PACKAGED_TEMPLATE_DIR
        self.legacy_dirs = tuple(Path(d) for d in legacy_dirs)
        self._cache: Dict[Tuple[str, int], Template] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_settings(cls, settings) -> "TemplateEngine":
        return cls(settings.template_dir, settings.legacy_template_dirs)

    def candidates(self, name: str, template_type: TemplateType) -> List[Path]:
        paths = [
            self.primary_dir / name,
            self.primary_dir / _SUBDIRS[template_type] / name,
        ]
        paths.extend(directory / name for directory in self.legacy_dirs)
        return paths

    def get(self, name: str, template_type: TemplateType = TemplateType.COMPONENT) -> str:
        return self.resolve(name, template_type).content

    def resolve(self, name: str, template_type: TemplateType = TemplateType.COMPONENT) -> Template:
        for path in self.candidates(name, template_type):
            try:
                stat = path.stat()
            except OSError:
                continue
            if not path.is_file():
                continue
            key = (str(path), stat.st_mtime_ns)
            with self._lock:
                cached = self._cache.get(key)
                if cached is not None:
                    self._hits += 1
                    return cached
            try:
                template = self._load(path, name, template_type)
            except TemplateResolutionError as exc:
                logger.warning("Skipping template candidate %s: %s", path, exc)
                continue
            with self._lock:
                self._misses += 1
                self._evict(str(path))
                self._cache[key] = template
            return template

        logger.warning(
            "Template %s (%s) not found in %s; using built-in fallback",
            name,
            template_type.value,
            ", ".join(str(p) for p in self.candidates(name, template_type)),
        )
        return self._build(name, template_type, fallback_for(name), None)

    def bundle(self, report_format: ReportFormat) -> TemplateBundle:
        roles = FORMAT_TEMPLATES.get(report_format, {})
        return TemplateBundle(
            format=report_format,
            templates={role: self.resolve(name, kind) for role, (name, kind) in roles.items()},
        )

    def cache_info(self) -> CacheInfo:
        with self._lock:
            return CacheInfo(self._hits, self._misses, len(self._cache))

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def _evict(self, path: str) -> None:
        for key in [k for k in self._cache if k[0] == path]:
            del self._cache[key]

    def _load(self, path: Path, name: str, template_type: TemplateType) -> Template:
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise TemplateResolutionError(f"unreadable: {exc}") from exc
        if not content.strip():
            raise TemplateResolutionError("empty file")
        logger.debug("Loaded template %s from %s", name, path)
        return self._build(name, template_type, content, path)

    @staticmethod
    def _build(
        name: str,
        template_type: TemplateType,
        content: str,
        path: Optional[Path],
    ) -> Template:
        required = required_placeholders(name, template_type)
        present = set(find_placeholders(content))
        missing = tuple(p for p in required if p not in present)
        if missing:
            logger.warning(
                "Template %s is missing required placeholder(s): %s",
                path or name,
                ", ".join(missing),
            )
        return Template(
            name=name,
            type=template_type,
            content=content,
            resolved_path=path,
            is_fallback=path is None,
            required_placeholders=required,
            missing_placeholders=missing,
        )
