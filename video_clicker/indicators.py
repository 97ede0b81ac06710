# video_clicker/indicators.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .context import SessionContext
from .domain import Entry

logger = logging.getLogger(__name__)


# -----------------------------
# Phases / colors
# -----------------------------

# New-entry axis (wall clock since the phase began)
PHASE_WAITING = "waiting"      # draft open, questionnaire on screen
PHASE_FINALIZED = "finalized"  # just committed, fades out
PHASE_UNDO = "undo"            # rolled back, stays until the next click

# Review axis (playback time relative to the entry)
PHASE_PREVIEW = "preview"      # entry is coming up, fades in
PHASE_ACTIVE = "active"        # playback is at the entry
PHASE_SHOWN = "shown"          # entry just passed, fades out

CREATION_PHASES = (PHASE_WAITING, PHASE_FINALIZED, PHASE_UNDO)
REVIEW_PHASES = (PHASE_PREVIEW, PHASE_ACTIVE, PHASE_SHOWN)

COLOR_GREEN = "green"
COLOR_RED = "red"
COLOR_ORANGE = "orange"

PHASE_COLORS = {
    PHASE_WAITING: COLOR_GREEN,
    PHASE_FINALIZED: COLOR_RED,
    PHASE_UNDO: COLOR_ORANGE,
    PHASE_PREVIEW: COLOR_ORANGE,
    PHASE_ACTIVE: COLOR_GREEN,
    PHASE_SHOWN: COLOR_RED,
}


@dataclass(frozen=True)
class ReviewStatus:
    """What the scheduler needs to know about review playback."""
    active: bool = False
    window_end: Optional[float] = None  # entries after this time stay hidden


@dataclass(frozen=True)
class Indicator:
    """
    Visual state of one entry's dot. x/y are native video coordinates,
    since is the wall-clock time the current phase began.
    """
    entry_id: str
    phase: str
    x: float
    y: float
    since: float
    opacity: float = 1.0

    @property
    def color(self) -> str:
        return PHASE_COLORS[self.phase]


@dataclass(frozen=True)
class _Mark:
    phase: str
    x: float
    y: float
    since: float


def _fade_out(elapsed: float, total: float, fade: float) -> float:
    """1.0 until the last `fade` seconds of `total`, then linear down to 0."""
    fade = max(0.0, min(fade, total))
    start = total - fade
    if elapsed <= start or fade <= 0:
        return 1.0
    return max(0.0, 1.0 - (elapsed - start) / fade)


class IndicatorScheduler:
    """
    Derives at most one Indicator per entry from two clocks:

      - new-entry marks (waiting / finalized / undo) set explicitly by the
        session and aged by the wall clock
      - review states (preview / active / shown) recomputed from
        (entry time, playback time) while review playback is active

    A new-entry mark always masks the review state of the same entry.
    tick() is idempotent: for an unchanged (entry, now) it yields the same
    indicators and keeps each phase's start time.
    """

    def __init__(self, ctx: SessionContext, review_status: Callable[[], ReviewStatus]):
        self._ctx = ctx
        self._review_status = review_status
        self._creation: Dict[str, _Mark] = {}
        self._review: Dict[str, _Mark] = {}
        self._current: Dict[str, Indicator] = {}

    # ---------------- New-entry marks ----------------

    def mark_waiting(self, entry_id: str, x: float, y: float) -> None:
        self._set_creation(entry_id, PHASE_WAITING, x, y)

    def mark_finalized(self, entry: Entry) -> None:
        self._set_creation(entry.entry_id, PHASE_FINALIZED, entry.click_x, entry.click_y)

    def mark_undo(self, entry: Entry) -> None:
        self._set_creation(entry.entry_id, PHASE_UNDO, entry.click_x, entry.click_y)

    def _set_creation(self, entry_id: str, phase: str, x: float, y: float) -> None:
        self._creation[entry_id] = _Mark(phase=phase, x=float(x), y=float(y), since=self._ctx.wall_clock())
        self._review.pop(entry_id, None)
        self._current.pop(entry_id, None)

    def discard(self, entry_id: str) -> None:
        self._creation.pop(entry_id, None)
        self._review.pop(entry_id, None)
        self._current.pop(entry_id, None)

    def clear_undo(self) -> int:
        ids = [eid for eid, m in self._creation.items() if m.phase == PHASE_UNDO]
        for eid in ids:
            self.discard(eid)
        return len(ids)

    def clear_review(self) -> int:
        n = len(self._review)
        for eid in list(self._review):
            self._review.pop(eid, None)
            if eid not in self._creation:
                self._current.pop(eid, None)
        if n:
            logger.debug("Cleared %d review indicator(s)", n)
        return n

    def clear_all(self) -> None:
        self._creation.clear()
        self._review.clear()
        self._current.clear()

    # ---------------- Queries ----------------

    def indicators(self) -> List[Indicator]:
        """Indicators as of the last tick (plus marks set since)."""
        return list(self._current.values())

    def state_of(self, entry_id: str) -> Optional[Indicator]:
        return self._current.get(entry_id)

    def creation_phase(self, entry_id: str) -> Optional[str]:
        mark = self._creation.get(entry_id)
        return mark.phase if mark else None

    # ---------------- Tick ----------------

    def tick(self, playback_time: float) -> List[Indicator]:
        now = self._ctx.wall_clock()
        s = self._ctx.settings
        out: Dict[str, Indicator] = {}

        for eid, mark in list(self._creation.items()):
            opacity = 1.0
            if mark.phase == PHASE_FINALIZED:
                elapsed = now - mark.since
                if elapsed >= s.finalized_duration_seconds:
                    del self._creation[eid]
                    continue
                opacity = _fade_out(elapsed, s.finalized_duration_seconds, s.finalized_fade_seconds)
            out[eid] = Indicator(eid, mark.phase, mark.x, mark.y, mark.since, opacity)

        status = self._review_status()
        if not status.active:
            self._review.clear()
        else:
            tracked = set()
            for entry in self._ctx.log.live_entries():
                eid = entry.entry_id
                if eid in out:
                    continue
                t = float(entry.playback_time_seconds)
                if status.window_end is not None and t > status.window_end:
                    continue
                phase, opacity = self.review_phase(float(playback_time) - t)
                if phase is None:
                    continue

                mark = self._review.get(eid)
                if mark is None or mark.phase != phase:
                    mark = _Mark(phase=phase, x=entry.click_x, y=entry.click_y, since=now)
                    self._review[eid] = mark
                out[eid] = Indicator(eid, phase, mark.x, mark.y, mark.since, opacity)
                tracked.add(eid)

            # Entries that left the horizon, the window, or the log
            for eid in list(self._review):
                if eid not in tracked:
                    del self._review[eid]

        self._current = out
        return list(out.values())

    def review_phase(self, delta: float) -> Tuple[Optional[str], float]:
        """
        Review state for an entry `delta` seconds behind the playhead
        (negative: the entry is still ahead). Returns (None, 0.0) when untracked.
        """
        s = self._ctx.settings
        lead = s.preview_lead_seconds
        horizon = max(s.preview_horizon_seconds, lead)

        if delta < -horizon:
            return (None, 0.0)
        if delta < -lead:
            span = horizon - lead
            ahead = -delta - lead
            opacity = 1.0 - (ahead / span) * (1.0 - s.preview_min_opacity) if span > 0 else 1.0
            return (PHASE_PREVIEW, max(s.preview_min_opacity, opacity))
        if delta < 0:
            return (PHASE_PREVIEW, 1.0)
        if delta < s.flash_window_seconds:
            return (PHASE_ACTIVE, 1.0)

        shown = delta - s.flash_window_seconds
        if shown >= s.review_decay_seconds:
            return (None, 0.0)
        return (PHASE_SHOWN, _fade_out(shown, s.review_decay_seconds, s.review_fade_seconds))
