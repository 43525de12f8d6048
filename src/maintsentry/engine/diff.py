"""Diff detections against an allow-list to get the authorized work items."""
from __future__ import annotations

import fnmatch
import logging
from typing import List, Sequence, Set

from ..tasks.types import ConfigEntry, DetectionRecord, MatchMode, WorkItem

logger = logging.getLogger(__name__)


class DiffEngine:
    """Computes ``detections ∩ allow-list`` under each entry's match rule.

    An empty allow-list always yields an empty diff: nothing is ever acted
    on without an explicit entry authorizing it.
    """

    def diff(
        self,
        detections: Sequence[DetectionRecord],
        config_entries: Sequence[ConfigEntry],
    ) -> List[WorkItem]:
        if not detections or not config_entries:
            logger.debug(
                "Empty diff: %d detections, %d allow-list entries",
                len(detections),
                len(config_entries),
            )
            return []

        items: List[WorkItem] = []
        seen: Set[int] = set()
        for entry in config_entries:
            for record in detections:
                if id(record) in seen:
                    continue
                if self.matches(entry, record):
                    seen.add(id(record))
                    items.append(WorkItem(record=record, entry=entry))

        logger.debug(
            "Diff matched %d of %d detections against %d entries",
            len(items),
            len(detections),
            len(config_entries),
        )
        return items

    @staticmethod
    def matches(entry: ConfigEntry, record: DetectionRecord) -> bool:
        """Case-insensitive exact or glob comparison of one entry and one record."""
        value = record.field_value(entry.match_field)
        if not value:
            return False
        candidate = value.casefold()
        pattern = entry.pattern.casefold()
        if entry.match_mode is MatchMode.GLOB:
            return fnmatch.fnmatchcase(candidate, pattern)
        return candidate == pattern
