from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple

from SellSchedule.observability_metrics import schedule_entries
from SellSchedule.schedule.models import ScheduleEntry


logger = logging.getLogger("schedule_store")


def _id_sort_key(entry_id: str) -> Tuple[int, int, str]:
    # Chat ids are snowflakes; order numerically when possible.
    s = str(entry_id)
    if s.isdigit():
        return (0, int(s), s)
    return (1, 0, s)


class ScheduleStore:
    """
    In-memory schedule, keyed by originating message id.

    Entries are immutable, so `snapshot()` can hand out references without
    copying them; callers never see a half-updated entry.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ScheduleEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return str(entry_id) in self._entries

    def upsert(self, entry: ScheduleEntry) -> None:
        self._entries[entry.id] = entry
        self._update_gauge()

    def remove(self, entry_id: str) -> Optional[ScheduleEntry]:
        removed = self._entries.pop(str(entry_id), None)
        if removed is not None:
            self._update_gauge()
        return removed

    def find(self, entry_id: str) -> Optional[ScheduleEntry]:
        return self._entries.get(str(entry_id))

    def snapshot(self, regions: Optional[Iterable[str]] = None) -> Tuple[ScheduleEntry, ...]:
        """All entries ordered by id, optionally limited to `regions`."""
        wanted = set(regions) if regions is not None else None
        ordered = sorted(self._entries.values(), key=lambda e: _id_sort_key(e.id))
        if wanted is None:
            return tuple(ordered)
        return tuple(e for e in ordered if e.region in wanted)

    def _update_gauge(self) -> None:
        try:
            schedule_entries.set(len(self._entries))
        except Exception:
            pass  # Metrics must never break runtime
