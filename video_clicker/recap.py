# video_clicker/recap.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .context import SessionContext
from .indicators import IndicatorScheduler, ReviewStatus
from .timeutils import format_time

logger = logging.getLogger(__name__)


RECAP_INACTIVE = "inactive"
RECAP_REWINDING = "rewinding"
RECAP_COMPLETED = "completed"

# A completion farther than this from the rewind target belongs to another seek
SEEK_MATCH_TOLERANCE_SECONDS = 0.5


@dataclass(frozen=True)
class RecapWindow:
    """Read-only view of the recap state (for UI and tests)."""
    state: str
    end_time: Optional[float] = None
    seek_pending: bool = False
    degenerate: bool = False

    @property
    def active(self) -> bool:
        return self.state == RECAP_REWINDING

    @property
    def completed(self) -> bool:
        return self.state == RECAP_COMPLETED


class RecapController:
    """
    Rewind a fixed offset, then let playback run only up to the latest entry.

    start() seeks back and arms the window; once the seek lands playback is
    paused so the operator resumes the review explicitly. While the window is
    armed, on_tick() follows entries committed during the review (end_time
    never decreases) and completes the recap when playback gets within
    recap_pause_lead_seconds of the end.

    Ticks received while a rewind seek is still in flight are ignored: the
    reported position is stale until the seek has landed.
    """

    def __init__(self, ctx: SessionContext, indicators: IndicatorScheduler):
        self._ctx = ctx
        self._indicators = indicators

        self._state = RECAP_INACTIVE
        self._end_time: Optional[float] = None
        self._degenerate = False

        # Target of the rewind seek in flight; completions elsewhere are not ours
        self._pending_target: Optional[float] = None
        self._pending_since: Optional[float] = None

    # ---------------- Queries ----------------

    @property
    def state(self) -> str:
        return self._state

    @property
    def end_time(self) -> Optional[float]:
        return self._end_time

    @property
    def rewinding(self) -> bool:
        return self._state == RECAP_REWINDING

    @property
    def completed(self) -> bool:
        return self._state == RECAP_COMPLETED

    @property
    def seek_pending(self) -> bool:
        return self._pending_target is not None

    def window(self) -> RecapWindow:
        return RecapWindow(
            state=self._state,
            end_time=self._end_time,
            seek_pending=self.seek_pending,
            degenerate=self._degenerate,
        )

    def window_armed(self) -> bool:
        """True while a non-degenerate window bounds playback."""
        return self.rewinding and not self._degenerate and self._end_time is not None

    def review_status(self) -> ReviewStatus:
        active = self.window_armed() or self._ctx.audit_mode
        return ReviewStatus(active=active, window_end=self._end_time if self.window_armed() else None)

    def should_continue(self, current_time: float) -> bool:
        if not self.window_armed():
            return False
        return float(current_time) < self._end_time - self._ctx.settings.recap_pause_lead_seconds

    # ---------------- Transitions ----------------

    def start(self, current_time: float) -> None:
        s = self._ctx.settings
        latest = self._ctx.log.latest_time()

        if latest is None:
            target = max(0.0, float(current_time) - s.degenerate_rewind_seconds)
            self._state = RECAP_REWINDING
            self._end_time = target
            self._degenerate = True
            logger.info("Recap: no entries, rewinding %.0fs to %s", s.degenerate_rewind_seconds, format_time(target))
            self._request_seek(target)
            return

        end = latest
        if self.window_armed():
            end = max(self._end_time, latest)

        target = max(0.0, float(current_time) - s.rewind_offset_seconds)
        self._state = RECAP_REWINDING
        self._end_time = end
        self._degenerate = False
        logger.info(
            "Recap: rewinding to %s, reviewing until latest entry at %.2fs",
            format_time(target), end,
        )
        self._request_seek(target)

    def on_seek_completed(self, position: float, force: bool = False) -> bool:
        """
        Handles the landing of the rewind seek. Returns False for seeks recap
        did not request: nothing pending, or a landing away from the target.
        force accepts the current position (seek timeout).
        """
        target = self._pending_target
        if target is None:
            logger.debug("Recap: ignoring seek completion at %.2fs", position)
            return False
        if not force and abs(float(position) - target) > SEEK_MATCH_TOLERANCE_SECONDS:
            logger.debug("Recap: seek landed at %.2fs, waiting for %.2fs", position, target)
            return False

        self._pending_target = None
        self._pending_since = None
        self._ctx.clock.pause()

        if self._degenerate:
            self._state = RECAP_COMPLETED
            self._end_time = None
            logger.info("Recap: rewound to %s (no entries to review)", format_time(position))
        else:
            logger.info(
                "Recap: at %s, press SPACE to review until %.2fs",
                format_time(position), self._end_time,
            )
        return True

    def on_tick(self, current_time: float) -> None:
        if not self.rewinding:
            return

        if self.seek_pending:
            self._check_seek_timeout()
            return
        if self._degenerate:
            return

        latest = self._ctx.log.latest_time()
        if latest is not None and latest > self._end_time:
            self._end_time = latest
            logger.info("Recap extended: new latest entry at %.2fs", latest)

        if float(current_time) >= self._end_time - self._ctx.settings.recap_pause_lead_seconds:
            self.complete(current_time)

    def extend_if_needed(self, entry_time: float) -> bool:
        if not self.window_armed():
            return False
        if float(entry_time) > self._end_time:
            self._end_time = float(entry_time)
            logger.info("Recap extended: entry added at %.2fs during review", entry_time)
            return True
        return False

    def complete(self, current_time: float) -> None:
        end = self._end_time
        self._state = RECAP_COMPLETED
        self._end_time = None
        self._degenerate = False
        self._pending_target = None
        self._pending_since = None
        self._ctx.clock.pause()
        self._indicators.clear_review()
        logger.info(
            "Recap completed at %s (latest entry %s); press SPACE to continue",
            format_time(current_time), "n/a" if end is None else f"{end:.2f}s",
        )

    def exit(self) -> bool:
        """
        Leaves recap. From Completed the caller resumes normal playback; from
        Rewinding the window is abandoned. Returns False when there was no recap.
        """
        if self._state == RECAP_INACTIVE:
            return False
        was = self._state
        self._reset()
        self._indicators.clear_review()
        if was == RECAP_COMPLETED:
            logger.info("Recap exited, continuing normal playback")
        else:
            logger.info("Recap window abandoned")
        return True

    def reset(self) -> None:
        self._reset()

    # ---------------- Playback helpers ----------------

    def toggle_playback(self, current_time: float) -> None:
        """SPACE while the window is armed: pause, or play on toward the end."""
        clock = self._ctx.clock
        if clock.is_playing():
            clock.pause()
            return
        if self.seek_pending:
            return
        if self.should_continue(current_time):
            self._ctx.resume_playback()
            logger.info(
                "Recap: continuing from %s until %.2fs",
                format_time(current_time), self._end_time,
            )
        else:
            logger.info("Recap: already at latest entry time")
            self.complete(current_time)

    def resume_after_draft(self, current_time: float) -> None:
        """Playback after a commit or cancel: bounded by the window when one is armed."""
        if self.window_armed():
            if self.should_continue(current_time):
                self._ctx.resume_playback()
            else:
                self.complete(current_time)
            return
        self._ctx.resume_playback()

    # ---------------- Internals ----------------

    def _request_seek(self, target: float) -> None:
        self._pending_target = float(target)
        self._pending_since = self._ctx.wall_clock()
        self._ctx.clock.seek(target)

    def _check_seek_timeout(self) -> None:
        if self._pending_since is None:
            return
        waited_ms = (self._ctx.wall_clock() - self._pending_since) * 1000.0
        if waited_ms >= self._ctx.settings.seek_timeout_ms:
            logger.warning("Recap: seek not confirmed after %.0f ms, continuing", waited_ms)
            self.on_seek_completed(self._ctx.clock.position(), force=True)

    def _reset(self) -> None:
        self._state = RECAP_INACTIVE
        self._end_time = None
        self._degenerate = False
        self._pending_target = None
        self._pending_since = None
