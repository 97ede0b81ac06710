# video_clicker/errors.py
from __future__ import annotations

from typing import Iterable, List


class VideoClickerError(Exception):
    """Base class for engine errors."""


class ConfigError(VideoClickerError):
    """Workflow config failed validation. Raised at load time only."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("Invalid workflow config:\n" + "\n".join(f"  - {e}" for e in self.errors))


class CoordinateError(VideoClickerError):
    """The playback surface reported degenerate dimensions for a click."""


class StateInvariantViolation(VideoClickerError):
    """
    An operation was requested in a state that does not allow it
    (commit without a draft, undo on an empty stack, ...).

    The engine reports these as warnings and never lets them reach the caller.
    """


class ConcurrentDownloadConflict(VideoClickerError):
    """A playback source was announced twice."""
