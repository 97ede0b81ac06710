# video_clicker/annotation_log.py
from __future__ import annotations

import math
from typing import Iterable, Iterator, List, Optional, Tuple

from .domain import ORIGIN_NEW, ORIGIN_PRE_EXISTING, Entry


class AnnotationLog:
    """
    Committed entries in creation order (not time order).

    Entries are immutable, so a tuple of the current entries is a complete,
    cheap snapshot of the log.
    """

    def __init__(self, entries: Iterable[Entry] = ()):
        self._entries: List[Entry] = []
        for e in entries:
            self.append(e)

    # ---------------- Queries ----------------

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(list(self._entries))

    def __contains__(self, entry_id: object) -> bool:
        return self.get(str(entry_id)) is not None

    def entries(self) -> List[Entry]:
        return list(self._entries)

    def live_entries(self) -> List[Entry]:
        """Entries not soft-deleted."""
        return [e for e in self._entries if not e.deleted]

    def get(self, entry_id: str) -> Optional[Entry]:
        for e in self._entries:
            if e.entry_id == entry_id:
                return e
        return None

    def ids(self) -> List[str]:
        return [e.entry_id for e in self._entries]

    def latest_time(self) -> Optional[float]:
        """Largest playback time among live entries, or None if there are none."""
        times = [e.playback_time_seconds for e in self._entries if not e.deleted]
        return max(times) if times else None

    def new_entry_ids(self) -> List[str]:
        return [e.entry_id for e in self._entries if e.origin == ORIGIN_NEW]

    def pre_existing_ids(self) -> List[str]:
        return [e.entry_id for e in self._entries if e.origin == ORIGIN_PRE_EXISTING]

    def deleted_entry_ids(self) -> List[str]:
        return [e.entry_id for e in self._entries if e.deleted]

    # ---------------- Mutation ----------------

    def append(self, entry: Entry) -> None:
        if self.get(entry.entry_id) is not None:
            raise ValueError(f"Duplicate entry id: {entry.entry_id}")
        t = float(entry.playback_time_seconds)
        if not math.isfinite(t) or t < 0:
            raise ValueError(f"Entry {entry.entry_id}: playback time must be >= 0")
        self._entries.append(entry)

    def remove(self, entry_id: str) -> Optional[Entry]:
        for i, e in enumerate(self._entries):
            if e.entry_id == entry_id:
                return self._entries.pop(i)
        return None

    def replace(self, entry: Entry) -> bool:
        for i, e in enumerate(self._entries):
            if e.entry_id == entry.entry_id:
                self._entries[i] = entry
                return True
        return False

    def clear(self) -> None:
        self._entries = []

    # ---------------- Snapshots ----------------

    def freeze(self) -> Tuple[Entry, ...]:
        return tuple(self._entries)

    def restore(self, entries: Iterable[Entry]) -> None:
        self._entries = list(entries)
