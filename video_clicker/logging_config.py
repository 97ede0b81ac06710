# video_clicker/logging_config.py
from __future__ import annotations

import logging
from typing import Union

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: Union[str, int] = "INFO") -> None:
    """Configure process-wide logging once at startup."""

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=DEFAULT_LOG_FORMAT,
        force=True,
    )
