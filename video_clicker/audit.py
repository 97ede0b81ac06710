# video_clicker/audit.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List

from .context import SessionContext
from .domain import ORIGIN_NEW, ORIGIN_PRE_EXISTING, Entry
from .history import HistoryStack
from .indicators import IndicatorScheduler

logger = logging.getLogger(__name__)


class AuditReconciler:
    """
    Deletion and export rules over the shared log.

    Pre-existing entries (loaded from an earlier export) are only flagged as
    deleted, so undo can bring them back. New entries are removed outright.
    In entry mode every deletion is a removal.
    """

    def __init__(self, ctx: SessionContext, history: HistoryStack, indicators: IndicatorScheduler):
        self._ctx = ctx
        self._history = history
        self._indicators = indicators
        self._original: List[Entry] = []

    @property
    def original_entries(self) -> List[Entry]:
        return list(self._original)

    def load_original(self, entries: Iterable[Entry]) -> int:
        """
        Replaces the log with previously exported entries, tagged pre-existing.
        Clears undo history: the loaded log is the new baseline.
        """
        loaded: List[Entry] = []
        seen = set()
        for e in entries:
            if e.entry_id in seen:
                logger.warning("Skipping duplicate imported entry id %s", e.entry_id)
                continue
            seen.add(e.entry_id)
            loaded.append(replace(e, origin=ORIGIN_PRE_EXISTING, deleted=False))

        self._original = loaded
        self._ctx.log.restore(loaded)
        self._history.clear()
        self._indicators.clear_all()
        logger.info("Loaded %d pre-existing entries for audit", len(loaded))
        return len(loaded)

    def set_original(self, entries: Iterable[Entry]) -> None:
        """Re-installs the pre-existing baseline without touching the log (session restore)."""
        self._original = [replace(e, origin=ORIGIN_PRE_EXISTING, deleted=False) for e in entries]

    def restore_original(self) -> None:
        """Resets the log to the pre-existing entries, nothing deleted (restart counting)."""
        self._ctx.log.restore(self._original)

    # ---------------- Deletion ----------------

    def delete_entry(self, entry_id: str) -> bool:
        ctx = self._ctx
        entry = ctx.log.get(entry_id)
        if entry is None:
            ctx.notify("error", "Entry not found")
            return False
        if entry.deleted:
            ctx.notify("warning", "Entry is already marked for deletion")
            return False

        self._history.snapshot()
        if ctx.audit_mode and entry.origin == ORIGIN_PRE_EXISTING:
            ctx.log.replace(entry.mark_deleted())
            logger.info("Pre-existing entry %s marked for deletion", entry_id)
        else:
            ctx.log.remove(entry_id)
            logger.info("Entry %s removed", entry_id)

        self._indicators.discard(entry_id)
        ctx.notify("success", "Entry deleted")
        return True

    def restore_entry(self, entry_id: str) -> bool:
        """Clears the deletion flag of a pre-existing entry."""
        ctx = self._ctx
        entry = ctx.log.get(entry_id)
        if entry is None or not entry.deleted:
            ctx.notify("warning", "Entry is not marked for deletion")
            return False

        self._history.snapshot()
        ctx.log.replace(replace(entry, deleted=False))
        logger.info("Entry %s restored", entry_id)
        return True

    def toggle_deleted(self, entry_id: str) -> bool:
        entry = self._ctx.log.get(entry_id)
        if entry is not None and entry.deleted:
            return self.restore_entry(entry_id)
        return self.delete_entry(entry_id)

    # ---------------- Export ----------------

    def export_entries(self) -> List[Entry]:
        """Pre-existing entries, then new ones, both without deleted entries. No duplicate ids."""
        log = self._ctx.log
        out: List[Entry] = []
        seen = set()
        for origin in (ORIGIN_PRE_EXISTING, ORIGIN_NEW):
            for e in log.entries():
                if e.origin != origin or e.deleted or e.entry_id in seen:
                    continue
                seen.add(e.entry_id)
                out.append(e)
        return out
