"""Stale temporary file detection and cleanup."""
from __future__ import annotations

import time
from pathlib import Path
from typing import List, Optional

from ..core.errors import ActionItemError, DetectionError
from .base import ActionTask, AuditTask
from .types import DetectionRecord, MatchMode, Source, WorkItem

DEFAULT_MAX_AGE_DAYS = 7
_SECONDS_PER_DAY = 86400


class StaleTempFilesAudit(AuditTask):
    """Find regular files in temp directories older than ``max_age_days``.

    Subdirectories are not descended into or reported.

    Options: ``max_age_days`` (default 7) and ``directories`` (default: the
    system temp directory).
    """

    name = "stale_temp_files"
    description = "Finds stale files in temporary directories."
    category = "cleanup"
    source = Source.FILESYSTEM

    def detect(self, ctx) -> List[DetectionRecord]:
        options = ctx.task_options(self.name)
        max_age = options.get("max_age_days", DEFAULT_MAX_AGE_DAYS)
        if not isinstance(max_age, (int, float)) or isinstance(max_age, bool) or max_age < 0:
            raise DetectionError(f"Invalid max_age_days: {max_age!r}")
        directories = [Path(d) for d in options.get("directories", [])] or [
            ctx.os.get_temp_directory()
        ]

        now = time.time()
        records: List[DetectionRecord] = []
        for directory in directories:
            for path in ctx.os.list_directory(directory):
                if not ctx.os.is_file(path):
                    continue
                mtime = ctx.os.get_file_mtime(path)
                if mtime is None:
                    continue
                age_days = (now - mtime) / _SECONDS_PER_DAY
                if age_days < max_age:
                    continue
                records.append(
                    self.record(
                        path.name,
                        str(path),
                        path=str(path),
                        directory=str(directory),
                        age_days=round(age_days, 1),
                    )
                )
        return records


class TempFileCleanupAction(ActionTask):
    """Delete stale temp files whose names match the allow-list."""

    name = "temp_file_cleanup"
    description = "Removes allow-listed stale temporary files."
    category = "cleanup"
    depends_on = "stale_temp_files"
    priority = 90
    match_field = "name"
    match_mode = MatchMode.GLOB

    def validate(self, item: WorkItem, ctx) -> Optional[str]:
        if not ctx.os.file_exists(Path(item.record.match_key)):
            return "already removed"
        return None

    def apply(self, item: WorkItem, ctx) -> Optional[str]:
        path = Path(item.record.match_key)
        try:
            ctx.os.remove_file(path)
        except OSError as exc:
            raise ActionItemError(item, exc.strerror or str(exc)) from exc
        return f"removed {path}"


TASKS = (StaleTempFilesAudit, TempFileCleanupAction)
