# video_clicker/geometry.py
from __future__ import annotations

import math
from typing import Tuple

from .errors import CoordinateError


def to_native_coordinates(
    click_x: float,
    click_y: float,
    display_width: float,
    display_height: float,
    native_width: float,
    native_height: float,
) -> Tuple[float, float]:
    """
    Maps a click on the displayed video rect (origin at its top-left corner)
    into native video pixels.

    Raises CoordinateError when either size is degenerate or the result is not finite.
    """
    for v in (display_width, display_height, native_width, native_height):
        if v is None or not math.isfinite(float(v)) or float(v) <= 0:
            raise CoordinateError("Video dimensions not available")

    scale_x = float(native_width) / float(display_width)
    scale_y = float(native_height) / float(display_height)

    x = float(click_x) * scale_x
    y = float(click_y) * scale_y
    if not (math.isfinite(x) and math.isfinite(y)):
        raise CoordinateError("Invalid native coordinates calculated")
    return (x, y)
