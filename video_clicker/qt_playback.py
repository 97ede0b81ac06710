# video_clicker/qt_playback.py
from __future__ import annotations

import logging
import os
from typing import Callable, List, Optional

from PyQt5.QtCore import QEvent, QObject, Qt, QTimer, QUrl
from PyQt5.QtMultimedia import QMediaContent, QMediaPlayer
from PyQt5.QtWidgets import QLineEdit, QPlainTextEdit, QTextEdit

from .engine import (
    KEY_DOWN,
    KEY_LEFT,
    KEY_MINUS,
    KEY_RIGHT,
    KEY_SPACE,
    KEY_UP,
    KEY_Z,
    AnnotationEngine,
)
from .indicators import Indicator
from .playback import PlaybackClock

logger = logging.getLogger(__name__)


# A position report within this distance of the requested target completes a seek
SEEK_TOLERANCE_MS = 250

_KEY_NAMES = {
    Qt.Key_Space: KEY_SPACE,
    Qt.Key_Minus: KEY_MINUS,
    Qt.Key_Left: KEY_LEFT,
    Qt.Key_Right: KEY_RIGHT,
    Qt.Key_Up: KEY_UP,
    Qt.Key_Down: KEY_DOWN,
    Qt.Key_Z: KEY_Z,
}


def _media_url(source: str) -> QUrl:
    if "://" in source and not os.path.exists(source):
        return QUrl(source)
    return QUrl.fromLocalFile(source)


class QtPlaybackClock(PlaybackClock):
    """
    PlaybackClock over a QMediaPlayer (milliseconds on the Qt side).

    QMediaPlayer has no "seeked" signal: a seek completes at the first
    position report close to the target, or when the fallback timer
    expires, whichever happens first.
    """

    def __init__(self, player: QMediaPlayer, notify_interval_ms: int = 50, seek_timeout_ms: int = 1500):
        super().__init__()
        self._player = player
        self._pending_seek_ms: Optional[int] = None
        self._connected = False

        self._seek_timer = QTimer()
        self._seek_timer.setSingleShot(True)
        self._seek_timer.setInterval(int(seek_timeout_ms))
        self._seek_timer.timeout.connect(self._on_seek_timeout)

        player.setNotifyInterval(int(notify_interval_ms))
        player.positionChanged.connect(self._on_position_changed)
        self._connected = True

    @property
    def player(self) -> QMediaPlayer:
        return self._player

    # ---------------- Player API ----------------

    def position(self) -> float:
        return int(self._player.position() or 0) / 1000.0

    def duration(self) -> float:
        return int(self._player.duration() or 0) / 1000.0

    def is_playing(self) -> bool:
        return self._player.state() == QMediaPlayer.PlayingState

    def seek(self, seconds: float) -> None:
        target = int(round(max(0.0, float(seconds)) * 1000.0))
        self._pending_seek_ms = target
        self._seek_timer.start()
        self._player.setPosition(target)

    def play(self) -> None:
        self._player.play()

    def pause(self) -> None:
        self._player.pause()

    def set_rate(self, rate: float) -> None:
        self._player.setPlaybackRate(float(rate))

    def load_source(self, source: str) -> None:
        self._pending_seek_ms = None
        self._seek_timer.stop()
        self._player.setMedia(QMediaContent(_media_url(source)))

    # ---------------- Signals ----------------

    def _on_position_changed(self, position_ms: int) -> None:
        position_ms = int(position_ms or 0)
        self._emit_position(position_ms / 1000.0)

        target = self._pending_seek_ms
        if target is not None and abs(position_ms - target) <= SEEK_TOLERANCE_MS:
            self._finish_seek(position_ms)

    def _on_seek_timeout(self) -> None:
        if self._pending_seek_ms is None:
            return
        logger.debug("Seek to %d ms not reported, completing at %d ms", self._pending_seek_ms, self._player.position())
        self._finish_seek(int(self._player.position() or 0))

    def _finish_seek(self, position_ms: int) -> None:
        self._pending_seek_ms = None
        self._seek_timer.stop()
        self._emit_seek_completed(position_ms / 1000.0)

    def detach(self) -> None:
        """Disconnects from the player. Safe to call twice."""
        self._seek_timer.stop()
        self._pending_seek_ms = None
        if self._connected:
            self._player.positionChanged.disconnect(self._on_position_changed)
            self._connected = False

    def attach(self, engine: AnnotationEngine) -> None:
        engine.register_teardown(self.detach)


class TickDriver:
    """Polls engine.tick() on a QTimer and hands the indicators to a renderer callback."""

    def __init__(
        self,
        engine: AnnotationEngine,
        on_tick: Optional[Callable[[List[Indicator]], None]] = None,
        interval_ms: Optional[int] = None,
    ):
        self._engine = engine
        self._on_tick = on_tick
        self._timer = QTimer()
        self._timer.setInterval(int(interval_ms or engine.ctx.settings.tick_interval_ms))
        self._timer.timeout.connect(self.tick)
        engine.register_teardown(self.stop)

    @property
    def active(self) -> bool:
        return self._timer.isActive()

    def start(self) -> None:
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    def tick(self) -> List[Indicator]:
        indicators = self._engine.tick()
        if self._on_tick is not None:
            self._on_tick(indicators)
        return indicators


class ShortcutFilter(QObject):
    """
    Application-wide key handling. Keys typed into text inputs (the
    questionnaire's free-text steps) are left alone.
    """

    def __init__(self, engine: AnnotationEngine, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._engine = engine
        self._target: Optional[QObject] = None

    def install(self, target: QObject) -> None:
        """Installs on target (usually the QApplication) and registers its removal with the engine."""
        target.installEventFilter(self)
        self._target = target
        self._engine.register_teardown(self.uninstall)

    def uninstall(self) -> None:
        if self._target is not None:
            self._target.removeEventFilter(self)
            self._target = None

    def eventFilter(self, obj, event) -> bool:
        if event.type() != QEvent.KeyPress:
            return False
        if isinstance(obj, (QLineEdit, QTextEdit, QPlainTextEdit)):
            return False

        name = _KEY_NAMES.get(event.key())
        if name is None:
            return False

        mods = event.modifiers()
        ctrl = bool(mods & (Qt.ControlModifier | Qt.MetaModifier))
        shift = bool(mods & Qt.ShiftModifier)
        if name == KEY_Z and not ctrl:
            return False
        return bool(self._engine.handle_key(name, ctrl=ctrl, shift=shift))
