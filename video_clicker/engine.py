# video_clicker/engine.py
from __future__ import annotations

import functools
import logging
import math
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .audit import AuditReconciler
from .config import load_workflow_config, parse_workflow_config
from .context import SessionContext
from .domain import (
    MODE_AUDIT,
    MODE_ENTRY,
    ORIGIN_NEW,
    ORIGIN_PRE_EXISTING,
    Entry,
    Notice,
    SetupMetadata,
    WorkflowConfig,
)
from .entry_session import EntrySession
from .errors import ConcurrentDownloadConflict, CoordinateError, StateInvariantViolation
from .geometry import to_native_coordinates
from .history import HistoryStack
from .indicators import Indicator, IndicatorScheduler, ReviewStatus
from .persistence import build_export_rows, export_csv_text, export_json_payload
from .playback import PlaybackClock, Teardown
from .recap import RecapController
from .settings import EngineSettings
from .stats import compute_statistics
from .timeutils import format_time
from .workflow import ConfigWorkflow

logger = logging.getLogger(__name__)


SNAPSHOT_VERSION = 1

# Key names understood by handle_key (see qt_playback.ShortcutFilter)
KEY_SPACE = "space"
KEY_MINUS = "minus"
KEY_LEFT = "left"
KEY_RIGHT = "right"
KEY_UP = "up"
KEY_DOWN = "down"
KEY_Z = "z"


def _guarded(default: Any = None):
    """Turns a StateInvariantViolation into a warning notice and a falsy return."""
    def wrap(fn):
        @functools.wraps(fn)
        def inner(self, *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except StateInvariantViolation as exc:
                self.ctx.notify("warning", str(exc))
                return default
        return inner
    return wrap


def _saved_time(value: Any) -> float:
    t = float(value or 0.0)
    if not math.isfinite(t):
        raise ValueError(f"non-finite time {value!r}")
    return max(0.0, t)


def _parse_snapshot(data: Dict):
    """
    Validates a saved session. Returns (mode, entries, original entries,
    setup, entry counter, playback rate, position); raises on malformed input.
    Negative playback times are clamped to 0 and duplicate ids are skipped.
    """
    mode = str(data.get("mode") or MODE_ENTRY)
    new_ids = set(data.get("newEntryIds") or [])
    deleted_ids = set(data.get("deletedEntryIds") or [])

    entries: List[Entry] = []
    seen = set()
    for raw in data.get("log") or []:
        entry = Entry.from_dict(raw)
        if entry.entry_id in seen:
            logger.warning("Skipping duplicate entry id %s in saved session", entry.entry_id)
            continue
        seen.add(entry.entry_id)
        if mode == MODE_AUDIT:
            origin = ORIGIN_NEW if entry.entry_id in new_ids else ORIGIN_PRE_EXISTING
        else:
            origin = ORIGIN_NEW
        deleted = entry.deleted or entry.entry_id in deleted_ids
        entries.append(replace(
            entry,
            playback_time_seconds=_saved_time(entry.playback_time_seconds),
            step_values=dict(entry.step_values),
            origin=origin,
            deleted=deleted and origin == ORIGIN_PRE_EXISTING,
        ))

    originals = [
        replace(e, playback_time_seconds=_saved_time(e.playback_time_seconds))
        for e in (Entry.from_dict(d) for d in (data.get("originalEntries") or []))
    ]
    setup = SetupMetadata.from_dict(data.get("setupMetadata") or {})
    counter = int(data.get("entryCounter") or 0)
    rate = float(data.get("playbackRate") or 1.0)
    if not math.isfinite(rate) or rate <= 0:
        raise ValueError(f"invalid playback rate {rate!r}")
    position = _saved_time(data.get("playbackPositionSeconds"))
    return (mode, entries, originals, setup, counter, rate, position)


class AnnotationEngine:
    """
    One annotation session over one playback clock.

    Owns the SessionContext and every component, installs the clock listeners
    it needs and removes them (plus anything registered through
    register_teardown) on close(). All handlers run synchronously.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        clock: PlaybackClock,
        settings: Optional[EngineSettings] = None,
        setup: Optional[SetupMetadata] = None,
        mode: str = MODE_ENTRY,
        wall_clock: Optional[Callable[[], float]] = None,
        notice_listener: Optional[Callable[[Notice], None]] = None,
    ):
        ctx = SessionContext(
            config=config,
            clock=clock,
            settings=settings or EngineSettings(),
            setup=setup or SetupMetadata(),
            mode=mode,
            notice_listener=notice_listener,
        )
        if wall_clock is not None:
            ctx.wall_clock = wall_clock
        self.ctx = ctx

        self.workflow = ConfigWorkflow(config)
        self.history = HistoryStack(ctx)
        self.indicators = IndicatorScheduler(ctx, self._review_status)
        self.recap = RecapController(ctx, self.indicators)
        self.session = EntrySession(ctx, self.workflow, self.history, self.indicators, self.recap)
        self.audit = AuditReconciler(ctx, self.history, self.indicators)

        self._teardown = Teardown()
        self._started = False
        self._closed = False
        self._source: Optional[str] = None
        self._resume_after_source_seek = False

        self._install_clock_listeners()
        logger.info("Engine ready: %d step(s), mode=%s", len(self.workflow), mode)

    @classmethod
    def from_config_file(cls, path: str, clock: PlaybackClock, **kwargs) -> "AnnotationEngine":
        """Loads and validates the workflow config first (ConfigError blocks the session)."""
        return cls(load_workflow_config(path), clock, **kwargs)

    @classmethod
    def from_session(cls, data: Dict, clock: PlaybackClock, **kwargs) -> "AnnotationEngine":
        """Builds an engine from a saved session snapshot, including its config."""
        config = parse_workflow_config(data.get("config") or {})
        engine = cls(config, clock, mode=str(data.get("mode") or MODE_ENTRY), **kwargs)
        engine.restore_session(data)
        return engine

    # ---------------- State ----------------

    @property
    def config(self) -> WorkflowConfig:
        return self.ctx.config

    @property
    def log(self):
        return self.ctx.log

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def notices(self) -> List[Notice]:
        return list(self.ctx.notices)

    def _review_status(self) -> ReviewStatus:
        return self.recap.review_status()

    def _require_open(self) -> None:
        if self._closed:
            raise StateInvariantViolation("Session is closed")

    def _require_no_draft(self) -> None:
        if self.session.drafting:
            raise StateInvariantViolation("Finish or cancel the current entry first")

    def _require_no_pending_seek(self) -> None:
        if self.recap.seek_pending:
            raise StateInvariantViolation("Wait for the recap rewind to finish")

    # ---------------- Clock wiring ----------------

    def _install_clock_listeners(self) -> None:
        clock = self.ctx.clock
        pos_handle = clock.add_position_listener(self._on_position)
        seek_handle = clock.add_seek_listener(self._on_seek_completed)
        self._teardown.add(lambda: clock.remove_listener(pos_handle))
        self._teardown.add(lambda: clock.remove_listener(seek_handle))

    def register_teardown(self, cb: Callable[[], None]) -> None:
        """Adapters that hook into the session (timers, key filters) register their removal here."""
        if self._closed:
            cb()
            return
        self._teardown.add(cb)

    def _on_position(self, seconds: float) -> None:
        if self._closed:
            return
        self.recap.on_tick(seconds)

    def _on_seek_completed(self, seconds: float) -> None:
        if self._closed:
            return
        if self.recap.on_seek_completed(seconds):
            return
        if self._resume_after_source_seek:
            self._resume_after_source_seek = False
            self.ctx.resume_playback()
            logger.info("Playback resumed at %s after source change", format_time(seconds))

    def tick(self) -> List[Indicator]:
        """Periodic poll: advances recap and recomputes indicators."""
        if self._closed:
            return []
        position = self.ctx.clock.position()
        self.recap.on_tick(position)
        return self.indicators.tick(position)

    # ---------------- Input commands ----------------

    @_guarded(default=False)
    def handle_key(self, key: str, ctrl: bool = False, shift: bool = False) -> bool:
        """Dispatches one key press. Returns True if the key was consumed."""
        self._require_open()
        key = (key or "").lower()

        if ctrl and key == KEY_Z:
            if shift:
                self.redo()
            else:
                self.undo()
            return True
        if key == KEY_SPACE:
            self.toggle_playback()
            return True
        if key == KEY_MINUS:
            if self._started:
                self.start_recap()
            return True
        if key == KEY_LEFT:
            self.slower()
            return True
        if key == KEY_RIGHT:
            self.faster()
            return True
        if key == KEY_UP:
            self.reset_speed()
            return True
        if key == KEY_DOWN:
            self.ctx.clock.pause()
            self.reset_speed()
            return True
        return False

    @_guarded(default=False)
    def toggle_playback(self) -> bool:
        self._require_open()
        self._require_no_draft()
        clock = self.ctx.clock

        if not self._started:
            self._started = True
            if not self.ctx.audit_mode:
                self.recap.reset()
            self.ctx.resume_playback()
            logger.info("Session started at %s", format_time(clock.position()))
            return True

        if self.recap.completed:
            self.recap.exit()
            self.ctx.resume_playback()
            return True

        if self.recap.window_armed():
            self.recap.toggle_playback(clock.position())
            return True

        if self.recap.rewinding:
            # Degenerate rewind still in flight
            self.recap.exit()

        if clock.is_playing():
            clock.pause()
        else:
            self.ctx.resume_playback()
        return True

    @_guarded(default=None)
    def handle_click(
        self,
        click_x: float,
        click_y: float,
        display_width: float,
        display_height: float,
        native_width: float,
        native_height: float,
    ) -> Optional[str]:
        """
        A click on the displayed video. Coordinates are relative to the video
        rect. Returns the id of the draft opened, or None.
        """
        self._require_open()
        if not (self._started or self.recap.window_armed()):
            logger.debug("Click ignored: session not started")
            return None

        try:
            x, y = to_native_coordinates(click_x, click_y, display_width, display_height, native_width, native_height)
        except CoordinateError as exc:
            self.ctx.notify("error", f"Click discarded: {exc}")
            return None

        self.indicators.clear_undo()
        if self.session.drafting:
            logger.debug("Click ignored: an entry is already open")
            return None

        clock = self.ctx.clock
        clock.pause()
        return self.session.start_draft(clock.position(), x, y)

    @_guarded(default=False)
    def answer(self, step_id: str, value) -> bool:
        self._require_open()
        return self.session.answer(step_id, value)

    @_guarded(default=False)
    def go_back(self) -> bool:
        self._require_open()
        return self.session.go_back()

    @_guarded(default=False)
    def cancel_entry(self) -> bool:
        self._require_open()
        return self.session.cancel()

    # ---------------- Recap ----------------

    @_guarded(default=False)
    def start_recap(self) -> bool:
        self._require_open()
        self._require_no_draft()
        self.recap.start(self.ctx.clock.position())
        return True

    @_guarded(default=False)
    def exit_recap(self) -> bool:
        """Leaves recap; from Completed, normal playback resumes."""
        self._require_open()
        was_completed = self.recap.completed
        if not self.recap.exit():
            return False
        if was_completed:
            self.ctx.resume_playback()
        return True

    # ---------------- Undo / redo / delete ----------------

    @_guarded(default=False)
    def undo(self) -> bool:
        self._require_open()
        self._require_no_draft()
        self._require_no_pending_seek()
        ok, removed = self.history.undo()
        if not ok:
            return False

        clock = self.ctx.clock
        if removed is not None:
            clock.seek(max(0.0, removed.playback_time_seconds))
            clock.pause()
            self.indicators.mark_undo(removed)
        else:
            self.indicators.clear_all()
        self.ctx.notify("success", "Undone")
        return True

    @_guarded(default=False)
    def redo(self) -> bool:
        self._require_open()
        self._require_no_draft()
        self._require_no_pending_seek()
        ok, restored = self.history.redo()
        if not ok:
            return False

        self.indicators.clear_all()
        if restored is not None:
            clock = self.ctx.clock
            clock.seek(max(0.0, restored.playback_time_seconds))
            clock.pause()
        self.ctx.notify("success", "Redone")
        return True

    @_guarded(default=False)
    def delete_entry(self, entry_id: str) -> bool:
        self._require_open()
        return self.audit.delete_entry(entry_id)

    @_guarded(default=False)
    def toggle_entry_deleted(self, entry_id: str) -> bool:
        self._require_open()
        return self.audit.toggle_deleted(entry_id)

    # ---------------- Speed ----------------

    def _apply_rate(self, rate: float) -> float:
        self.ctx.playback_rate = float(rate)
        if self.ctx.clock.is_playing():
            self.ctx.clock.set_rate(self.ctx.playback_rate)
        logger.info("Speed: %sx", self.ctx.playback_rate)
        return self.ctx.playback_rate

    def slower(self) -> float:
        seq = sorted(float(s) for s in self.ctx.settings.speed_sequence)
        current = self.ctx.playback_rate
        lower = [s for s in seq if s < current]
        return self._apply_rate(lower[-1] if lower else seq[0])

    def faster(self) -> float:
        seq = sorted(float(s) for s in self.ctx.settings.speed_sequence)
        current = self.ctx.playback_rate
        higher = [s for s in seq if s > current]
        return self._apply_rate(higher[0] if higher else seq[-1])

    def reset_speed(self) -> float:
        return self._apply_rate(1.0)

    # ---------------- Session lifecycle ----------------

    @_guarded(default=False)
    def restart_counting(self) -> bool:
        """Clears all work (audit mode: back to the imported entries) and parks playback at the origin."""
        self._require_open()
        self.session.discard()
        self.indicators.clear_all()
        self.recap.reset()
        self.history.clear()
        if self.ctx.audit_mode:
            self.audit.restore_original()
        else:
            self.ctx.log.clear()
        self.ctx.entry_counter = 0

        clock = self.ctx.clock
        clock.seek(self.ctx.settings.restart_position_seconds)
        clock.pause()
        self.ctx.notify("success", "Counting restarted from 0")
        return True

    @_guarded(default=0)
    def load_audit_entries(self, entries: Iterable[Entry], setup: Optional[SetupMetadata] = None) -> int:
        """Switches to audit mode over previously exported entries."""
        self._require_open()
        self._require_no_draft()
        self.ctx.mode = MODE_AUDIT
        if setup is not None:
            self.ctx.setup = setup
        self.recap.reset()
        return self.audit.load_original(entries)

    def session_snapshot(self) -> Dict:
        ctx = self.ctx
        return {
            "version": SNAPSHOT_VERSION,
            "config": ctx.config.to_dict(),
            "setupMetadata": ctx.setup.to_dict(),
            "mode": ctx.mode,
            "log": [e.to_dict() for e in ctx.log],
            "newEntryIds": ctx.log.new_entry_ids(),
            "deletedEntryIds": ctx.log.deleted_entry_ids(),
            "originalEntries": [e.to_dict() for e in self.audit.original_entries],
            "playbackPositionSeconds": float(ctx.clock.position()),
            "playbackRate": float(ctx.playback_rate),
            "entryCounter": int(ctx.entry_counter),
        }

    @_guarded(default=False)
    def restore_session(self, data: Dict) -> bool:
        """
        Re-installs a snapshot produced by session_snapshot(). The config of
        the running engine is kept; a differing saved config is only logged.

        Everything is parsed before the session is touched: a malformed
        snapshot is reported as an error notice and leaves the session as it was.
        """
        self._require_open()
        ctx = self.ctx

        try:
            mode, entries, originals, setup, counter, rate, position = _parse_snapshot(data)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Saved session rejected: %r", exc)
            ctx.notify("error", "Saved session could not be read")
            return False

        saved_config = data.get("config")
        if saved_config and saved_config != ctx.config.to_dict():
            logger.warning("Saved session used a different workflow config; keeping the current one")

        self.session.discard()
        self.indicators.clear_all()
        self.recap.reset()
        self.history.clear()

        ctx.mode = mode
        ctx.setup = setup
        ctx.log.restore(entries)
        self.audit.set_original(originals)
        ctx.entry_counter = counter
        ctx.playback_rate = rate

        ctx.clock.seek(position)
        ctx.clock.pause()
        logger.info("Session restored: %d entries, mode=%s, at %s", len(entries), mode, format_time(position))
        return True

    def replace_source(self, source: str) -> bool:
        """
        Switches the playback source keeping position and play state.
        Repeated announcements of the current source are ignored.
        """
        if self._closed:
            return False
        try:
            self._claim_source(source)
        except ConcurrentDownloadConflict as exc:
            logger.debug("%s", exc)
            return False

        clock = self.ctx.clock
        first = self._source is None
        position = clock.position()
        was_playing = clock.is_playing()

        clock.pause()
        clock.load_source(source)
        self._source = source
        if first:
            logger.info("Playback source: %s", source)
            return True

        self._resume_after_source_seek = was_playing
        clock.seek(position)
        logger.info("Playback source replaced at %s: %s", format_time(position), source)
        return True

    def _claim_source(self, source: str) -> None:
        if source == self._source:
            raise ConcurrentDownloadConflict(f"Source already active: {source}")

    # ---------------- Export ----------------

    def export_entries(self) -> List[Entry]:
        return self.audit.export_entries()

    def export_rows(self, export_date: Optional[str] = None) -> List[Dict[str, str]]:
        return build_export_rows(self.ctx.config, self.ctx.setup, self.export_entries(), export_date)

    def export_csv(self, export_date: Optional[str] = None) -> str:
        return export_csv_text(self.ctx.config, self.ctx.setup, self.export_entries(), export_date)

    def export_json(self, exported_at: Optional[str] = None) -> Dict:
        return export_json_payload(self.ctx.setup, self.export_entries(), self.ctx.mode, exported_at)

    def statistics(self) -> Dict:
        return compute_statistics(self.export_entries(), self.ctx.config)

    # ---------------- Teardown ----------------

    def close(self) -> None:
        """Removes every listener the session installed. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.session.discard()
        n = self._teardown.run()
        logger.info("Session closed (%d hook(s) removed)", n)
