# tests/conftest.py
from __future__ import annotations

from typing import List, Optional

import pytest

from video_clicker.config import parse_workflow_config
from video_clicker.context import SessionContext
from video_clicker.domain import Entry, WorkflowConfig
from video_clicker.engine import AnnotationEngine
from video_clicker.playback import PlaybackClock
from video_clicker.settings import EngineSettings


class FakeClock(PlaybackClock):
    """
    Scriptable player. Seeks move the position at once but only report
    completion when complete_seek() is called (or immediately with
    auto_complete_seeks=True).
    """

    def __init__(self, position: float = 0.0, duration: float = 3600.0, auto_complete_seeks: bool = False):
        super().__init__()
        self._position = float(position)
        self._duration = float(duration)
        self._playing = False
        self.rate = 1.0
        self.auto_complete_seeks = auto_complete_seeks
        self.seeks: List[float] = []
        self.sources: List[str] = []
        self.pending_seek: Optional[float] = None

    def position(self) -> float:
        return self._position

    def duration(self) -> float:
        return self._duration

    def is_playing(self) -> bool:
        return self._playing

    def seek(self, seconds: float) -> None:
        self._position = max(0.0, float(seconds))
        self.seeks.append(self._position)
        self.pending_seek = self._position
        if self.auto_complete_seeks:
            self.complete_seek()

    def complete_seek(self) -> None:
        self.pending_seek = None
        self._emit_seek_completed(self._position)

    def play(self) -> None:
        self._playing = True

    def pause(self) -> None:
        self._playing = False

    def set_rate(self, rate: float) -> None:
        self.rate = float(rate)

    def load_source(self, source: str) -> None:
        self.sources.append(source)

    # Test helpers

    def set_position(self, seconds: float) -> None:
        self._position = float(seconds)
        self._emit_position(self._position)

    def advance(self, seconds: float) -> None:
        if self._playing:
            self.set_position(self._position + seconds * self.rate)


class FakeWallClock:
    def __init__(self, start: float = 1000.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


VEHICLE_CONFIG = {
    "steps": [
        {
            "step_id": "VehicleType",
            "question": "Vehicle type?",
            "type": "choice",
            "choices": ["car", "truck"],
        },
        {
            "step_id": "LicensePlate",
            "question": "License plate",
            "type": "text",
            "condition": {"step_id": "VehicleType", "operator": "==", "value": "truck"},
        },
    ]
}

DIRECTION_CONFIG = {
    "steps": [
        {"step_id": "mode", "question": "Mode?", "choices": ["car", "bike", "walk"]},
        {
            "step_id": "lane",
            "question": "Lane?",
            "choices": ["left", "right"],
            "condition": {"step_id": "mode", "operator": "in", "values": ["car", "bike"]},
        },
        {
            "step_id": "turn",
            "question": "Turn?",
            "choices": ["yes", "no"],
            "condition": {"step_id": "lane", "value": "left"},
        },
        {"step_id": "note", "question": "Note", "type": "text"},
    ]
}


@pytest.fixture
def vehicle_config() -> WorkflowConfig:
    return parse_workflow_config(VEHICLE_CONFIG)


@pytest.fixture
def direction_config() -> WorkflowConfig:
    return parse_workflow_config(DIRECTION_CONFIG)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(position=1.0)


@pytest.fixture
def wall() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def ctx(vehicle_config, clock, wall) -> SessionContext:
    c = SessionContext(config=vehicle_config, clock=clock, settings=EngineSettings())
    c.wall_clock = wall
    return c


@pytest.fixture
def engine(vehicle_config, clock, wall):
    eng = AnnotationEngine(vehicle_config, clock, wall_clock=wall)
    yield eng
    eng.close()


def make_entry(entry_id: str, t: float, x: float = 10.0, y: float = 20.0, **values) -> Entry:
    return Entry(entry_id=entry_id, playback_time_seconds=t, click_x=x, click_y=y, step_values=dict(values))


def click_at(engine: AnnotationEngine, clock: FakeClock, t: float, x: float = 100.0, y: float = 50.0):
    """Moves playback to t and clicks on a 1:1 surface (640x360)."""
    clock._position = float(t)
    return engine.handle_click(x, y, 640, 360, 640, 360)
