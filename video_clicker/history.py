# video_clicker/history.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple

from .context import SessionContext
from .domain import Entry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """
    Log state captured before a mutation.

    Entries are frozen, so holding the tuple is enough; nothing is serialized.
    The id sets are stored alongside for bookkeeping and export checks.
    """
    entries: Tuple[Entry, ...]
    new_entry_ids: FrozenSet[str]
    deleted_entry_ids: FrozenSet[str]

    def entry_ids(self) -> List[str]:
        return [e.entry_id for e in self.entries]


class HistoryStack:
    """
    Linear undo/redo over the annotation log.

    snapshot() must be called immediately before every log mutation. It clears
    the redo stack, since a fresh edit invalidates the undone branch. The undo
    stack keeps at most settings.max_undo_depth snapshots (oldest evicted).
    """

    def __init__(self, ctx: SessionContext):
        self._ctx = ctx
        self._undo: List[Snapshot] = []
        self._redo: List[Snapshot] = []

    @property
    def max_depth(self) -> int:
        return max(1, int(self._ctx.settings.max_undo_depth))

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo_depth(self) -> int:
        return len(self._undo)

    def redo_depth(self) -> int:
        return len(self._redo)

    def clear(self) -> None:
        self._undo = []
        self._redo = []

    # ---------------- Operations ----------------

    def capture(self) -> Snapshot:
        log = self._ctx.log
        return Snapshot(
            entries=log.freeze(),
            new_entry_ids=frozenset(log.new_entry_ids()),
            deleted_entry_ids=frozenset(log.deleted_entry_ids()),
        )

    def snapshot(self) -> None:
        self._push_undo(self.capture())
        if self._redo:
            logger.debug("New edit: discarding %d redo snapshot(s)", len(self._redo))
        self._redo = []

    def undo(self) -> Tuple[bool, Optional[Entry]]:
        """
        Restores the previous log state.

        Returns (ok, removed) where removed is the most recently created entry
        present now but absent after the undo (None if nothing was removed).
        """
        if not self._undo:
            self._ctx.notify("warning", "Nothing to undo")
            return (False, None)

        previous = self._undo.pop()
        current = self.capture()
        self._redo.append(current)

        removed = _last_missing(current.entries, previous.entries)
        self._ctx.log.restore(previous.entries)
        logger.info(
            "Undo: %d -> %d entries%s",
            len(current.entries), len(previous.entries),
            f" (removed {removed.entry_id})" if removed else "",
        )
        return (True, removed)

    def redo(self) -> Tuple[bool, Optional[Entry]]:
        """Mirror of undo(). Returns (ok, restored) for the most recent entry brought back."""
        if not self._redo:
            self._ctx.notify("warning", "Nothing to redo")
            return (False, None)

        target = self._redo.pop()
        current = self.capture()
        self._push_undo(current)

        restored = _last_missing(target.entries, current.entries)
        self._ctx.log.restore(target.entries)
        logger.info(
            "Redo: %d -> %d entries%s",
            len(current.entries), len(target.entries),
            f" (restored {restored.entry_id})" if restored else "",
        )
        return (True, restored)

    def _push_undo(self, snap: Snapshot) -> None:
        self._undo.append(snap)
        overflow = len(self._undo) - self.max_depth
        if overflow > 0:
            del self._undo[:overflow]


def _last_missing(source: Tuple[Entry, ...], other: Tuple[Entry, ...]) -> Optional[Entry]:
    """Latest-created entry of source whose id is not in other."""
    other_ids = {e.entry_id for e in other}
    for e in reversed(source):
        if e.entry_id not in other_ids:
            return e
    return None
