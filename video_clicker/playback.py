# video_clicker/playback.py
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

PositionListener = Callable[[float], None]
SeekListener = Callable[[float], None]


POSITION = "position"
SEEK_COMPLETED = "seek_completed"


class ListenerRegistry:
    """
    Handle-based callbacks grouped by event kind. add() returns an int handle
    unique across kinds; remove() is idempotent so teardown code can call it
    unconditionally.
    """

    def __init__(self) -> None:
        self._next = 1
        self._callbacks: Dict[int, Tuple[str, Callable]] = {}

    def add(self, kind: str, cb: Callable) -> int:
        handle = self._next
        self._next += 1
        self._callbacks[handle] = (kind, cb)
        return handle

    def remove(self, handle: int) -> bool:
        return self._callbacks.pop(handle, None) is not None

    def clear(self) -> None:
        self._callbacks.clear()

    def count(self, kind: Optional[str] = None) -> int:
        return sum(1 for k, _cb in self._callbacks.values() if kind is None or k == kind)

    def emit(self, kind: str, *args) -> None:
        # Copy first: a callback may unregister itself
        for k, cb in list(self._callbacks.values()):
            if k == kind:
                cb(*args)


class PlaybackClock:
    """
    The external video player as seen by the engine. Positions in seconds.

    Implementations call _emit_position() for every position sample and
    _emit_seek_completed() once a seek has landed.
    """

    def __init__(self) -> None:
        self._listeners = ListenerRegistry()

    # ---------------- Player API ----------------

    def position(self) -> float:
        raise NotImplementedError

    def duration(self) -> float:
        raise NotImplementedError

    def is_playing(self) -> bool:
        raise NotImplementedError

    def seek(self, seconds: float) -> None:
        raise NotImplementedError

    def play(self) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def set_rate(self, rate: float) -> None:
        raise NotImplementedError

    def load_source(self, source: str) -> None:
        raise NotImplementedError

    # ---------------- Notifications ----------------

    def add_position_listener(self, cb: PositionListener) -> int:
        return self._listeners.add(POSITION, cb)

    def add_seek_listener(self, cb: SeekListener) -> int:
        return self._listeners.add(SEEK_COMPLETED, cb)

    def remove_listener(self, handle: int) -> None:
        self._listeners.remove(handle)

    def listener_count(self) -> int:
        return self._listeners.count()

    def _emit_position(self, seconds: float) -> None:
        self._listeners.emit(POSITION, float(seconds))

    def _emit_seek_completed(self, seconds: float) -> None:
        self._listeners.emit(SEEK_COMPLETED, float(seconds))


class Teardown:
    """Collects undo-callbacks for everything a session installed."""

    def __init__(self) -> None:
        self._callbacks: List[Callable[[], None]] = []

    def add(self, cb: Callable[[], None]) -> None:
        self._callbacks.append(cb)

    def run(self) -> int:
        """Runs callbacks newest-first. A failing callback is logged and the rest still run."""
        callbacks, self._callbacks = self._callbacks, []
        for cb in reversed(callbacks):
            try:
                cb()
            except Exception:
                logger.exception("Teardown callback failed")
        return len(callbacks)
