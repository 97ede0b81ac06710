# video_clicker/timeutils.py
from __future__ import annotations

import math
import re
from typing import Optional


# The operator-entered start time is what the footage shows at playback
# position 00:00:01 (the player parks there before the session starts), so
# derived timestamps are corrected by this amount.
PLAYBACK_ORIGIN_OFFSET_SECONDS = 1.0

SECONDS_PER_DAY = 24 * 3600

_RE_12H = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)
_RE_24H = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})$")


# -----------------------------
# Formatting
# -----------------------------

def format_time(seconds: float) -> str:
    """Playback clock display: MM:SS (minutes are not wrapped)."""
    if seconds is None or not math.isfinite(seconds):
        seconds = 0.0
    s = max(0, int(seconds))
    return f"{s // 60:02d}:{s % 60:02d}"


def format_timestamp(seconds: float) -> str:
    """Time of day as 24-hour HH:MM:SS. Returns "N/A" for negative/invalid input."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "N/A"
    s = int(seconds)
    hours = (s // 3600) % 24
    mins = (s % 3600) // 60
    secs = s % 60
    return f"{hours:02d}:{mins:02d}:{secs:02d}"


# -----------------------------
# Parsing
# -----------------------------

def parse_timestamp(text: str) -> Optional[int]:
    """
    Parses "7:00:00 AM" / "07:00:00 pm" or 24-hour "07:00:00" into seconds
    since midnight. Returns None if the text matches neither form.
    """
    if not text or not isinstance(text, str):
        return None
    s = text.strip()

    m = _RE_12H.match(s)
    if m:
        hours, mins, secs = int(m.group(1)), int(m.group(2)), int(m.group(3))
        period = m.group(4).upper()
        if not (1 <= hours <= 12 and mins < 60 and secs < 60):
            return None
        if period == "PM" and hours != 12:
            hours += 12
        if period == "AM" and hours == 12:
            hours = 0
        return hours * 3600 + mins * 60 + secs

    m = _RE_24H.match(s)
    if m:
        hours, mins, secs = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if hours < 24 and mins < 60 and secs < 60:
            return hours * 3600 + mins * 60 + secs

    return None


# -----------------------------
# Derived timestamps
# -----------------------------

def derive_footage_seconds(playback_time: float, video_start_seconds: Optional[float]) -> float:
    start = float(video_start_seconds or 0.0)
    return start + (float(playback_time) - PLAYBACK_ORIGIN_OFFSET_SECONDS)


def derive_timestamp(playback_time: Optional[float], video_start_seconds: Optional[float]) -> str:
    """Human timestamp for an entry at the given playback position."""
    if playback_time is None:
        return "N/A"
    return format_timestamp(derive_footage_seconds(playback_time, video_start_seconds))


def infer_video_start(timestamp: str, playback_time: float) -> Optional[float]:
    """Recovers the start-of-day time from an exported (timestamp, playback time) pair."""
    secs = parse_timestamp(timestamp)
    if secs is None:
        return None
    return float(secs) - float(playback_time) + PLAYBACK_ORIGIN_OFFSET_SECONDS
