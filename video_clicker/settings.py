# video_clicker/settings.py
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Dict, List, Optional


SETTINGS_FILENAME = "engine_settings.json"


@dataclass
class EngineSettings:
    """
    Timing and sizing knobs for the session engine. All durations in seconds
    unless the name says otherwise.
    """
    # Recap
    rewind_offset_seconds: float = 60.0
    degenerate_rewind_seconds: float = 10.0   # used when the log is empty
    recap_pause_lead_seconds: float = 0.5

    # Review-axis indicators (playback time relative to the entry)
    preview_lead_seconds: float = 0.75
    preview_horizon_seconds: float = 2.0
    flash_window_seconds: float = 0.1
    review_decay_seconds: float = 1.75
    review_fade_seconds: float = 0.3
    preview_min_opacity: float = 0.2

    # New-entry indicators (wall clock since commit)
    finalized_duration_seconds: float = 1.75
    finalized_fade_seconds: float = 0.3

    # History
    max_undo_depth: int = 50

    # Playback
    speed_sequence: List[float] = field(default_factory=lambda: [8.0, 6.0, 4.0, 2.0, 1.0, 0.75, 0.5, 0.25])
    restart_position_seconds: float = 1.0

    # Qt drivers
    tick_interval_ms: int = 50
    seek_timeout_ms: int = 1500

    def to_dict(self) -> Dict:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict) -> "EngineSettings":
        known = {f.name for f in fields(EngineSettings)}
        kwargs = {k: v for k, v in (d or {}).items() if k in known}
        if "speed_sequence" in kwargs:
            kwargs["speed_sequence"] = [float(x) for x in kwargs["speed_sequence"]]
        cfg = EngineSettings(**kwargs)
        cfg.max_undo_depth = max(1, int(cfg.max_undo_depth))
        if not cfg.speed_sequence:
            cfg.speed_sequence = [1.0]
        return cfg


def load_engine_settings(path: Optional[str]) -> EngineSettings:
    """
    Loads settings from a JSON file. A missing path or file yields defaults;
    a malformed file raises (it is read once at startup).
    """
    if not path or not os.path.exists(path):
        return EngineSettings()
    with open(path, "r", encoding="utf-8") as f:
        return EngineSettings.from_dict(json.load(f))
