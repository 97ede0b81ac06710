# video_clicker/entry_session.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from .context import SessionContext
from .domain import ORIGIN_NEW, STEP_KIND_CHOICE, Entry, Step, normalize_value
from .history import HistoryStack
from .indicators import IndicatorScheduler
from .recap import RecapController
from .timeutils import derive_timestamp, format_time
from .workflow import ConfigWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Draft:
    """An entry being answered. values only holds steps answered so far."""
    entry_id: str
    playback_time_seconds: float
    click_x: float
    click_y: float
    step_index: int = 0
    values: Dict[str, str] = field(default_factory=dict)


class EntrySession:
    """
    Draft state machine: Idle -> Drafting(step) -> ... -> commit -> Idle.

    At most one draft is open at a time. Cancelling (going back from the first
    qualifying step) deregisters the click completely. Commit and cancel both
    hand playback back to the recap controller, which resumes it (bounded by
    an armed recap window).
    """

    def __init__(
        self,
        ctx: SessionContext,
        workflow: ConfigWorkflow,
        history: HistoryStack,
        indicators: IndicatorScheduler,
        recap: RecapController,
    ):
        self._ctx = ctx
        self._workflow = workflow
        self._history = history
        self._indicators = indicators
        self._recap = recap
        self._draft: Optional[Draft] = None

    # ---------------- Queries ----------------

    @property
    def draft(self) -> Optional[Draft]:
        return self._draft

    @property
    def drafting(self) -> bool:
        return self._draft is not None

    @property
    def current_step(self) -> Optional[Step]:
        if self._draft is None:
            return None
        return self._workflow.step_at(self._draft.step_index)

    # ---------------- Operations ----------------

    def start_draft(self, playback_time: float, x: float, y: float) -> Optional[str]:
        """Opens a draft for a click. Returns the new entry id, or None if a draft is already open."""
        if self._draft is not None:
            logger.debug("Click ignored: entry %s is still open", self._draft.entry_id)
            return None

        self._ctx.clock.pause()
        entry_id = self._ctx.next_entry_id()
        self._draft = Draft(
            entry_id=entry_id,
            playback_time_seconds=float(playback_time),
            click_x=float(x),
            click_y=float(y),
        )
        self._indicators.mark_waiting(entry_id, x, y)
        logger.info("Draft %s opened at %s", entry_id, format_time(playback_time))

        first = self._workflow.next_valid_step(0, self._draft.values)
        if first is None:
            self._commit()
            return entry_id
        self._draft.step_index = first
        return entry_id

    def answer(self, step_id: str, value) -> bool:
        draft = self._draft
        if draft is None:
            self._ctx.notify("warning", "No entry in progress")
            return False

        step = self._workflow.step_at(draft.step_index)
        if step.step_id != step_id:
            self._ctx.notify("warning", f"Step '{step_id}' is not the current step ({step.step_id})")
            return False

        value = normalize_value(value)
        if step.kind == STEP_KIND_CHOICE and value not in step.choice_values():
            self._ctx.notify("warning", f"'{value}' is not a choice of step '{step_id}'")
            return False

        draft.values[step_id] = value
        nxt = self._workflow.next_valid_step(draft.step_index + 1, draft.values)
        if nxt is None:
            self._commit()
        else:
            draft.step_index = nxt
        return True

    def go_back(self) -> bool:
        draft = self._draft
        if draft is None:
            self._ctx.notify("warning", "No entry in progress")
            return False

        prev = self._workflow.prev_valid_step(draft.step_index, draft.values)
        if prev is None:
            return self.cancel()

        draft.values = self._workflow.rolled_back_values(draft.step_index, prev, draft.values)
        draft.step_index = prev
        return True

    def cancel(self) -> bool:
        draft = self._draft
        if draft is None:
            self._ctx.notify("warning", "No entry in progress")
            return False

        self._draft = None
        self._indicators.discard(draft.entry_id)
        logger.info("Entry %s cancelled, click deregistered", draft.entry_id)
        self._recap.resume_after_draft(self._ctx.clock.position())
        return True

    def commit(self) -> Optional[Entry]:
        if self._draft is None:
            self._ctx.notify("warning", "No entry in progress")
            return None
        return self._commit()

    def discard(self) -> None:
        """Drops the open draft without touching playback (session reset)."""
        if self._draft is not None:
            self._indicators.discard(self._draft.entry_id)
            self._draft = None

    # ---------------- Internals ----------------

    def _commit(self) -> Optional[Entry]:
        draft = self._draft
        self._draft = None

        ctx = self._ctx
        if draft.entry_id in ctx.log:
            self._indicators.discard(draft.entry_id)
            ctx.notify("warning", f"Entry {draft.entry_id} already exists")
            return None

        entry = Entry(
            entry_id=draft.entry_id,
            playback_time_seconds=draft.playback_time_seconds,
            click_x=draft.click_x,
            click_y=draft.click_y,
            derived_timestamp=derive_timestamp(draft.playback_time_seconds, ctx.setup.video_start_seconds),
            step_values=dict(draft.values),
            origin=ORIGIN_NEW,
        )

        self._history.snapshot()
        ctx.log.append(entry)
        self._indicators.mark_finalized(entry)
        self._recap.extend_if_needed(entry.playback_time_seconds)
        logger.info(
            "Entry %s committed at %s (%s), %d in log",
            entry.entry_id, format_time(entry.playback_time_seconds), entry.derived_timestamp, len(ctx.log),
        )

        self._recap.resume_after_draft(ctx.clock.position())
        return entry
