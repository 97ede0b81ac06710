# video_clicker/context.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .annotation_log import AnnotationLog
from .domain import MODE_AUDIT, MODE_ENTRY, Notice, SetupMetadata, WorkflowConfig
from .playback import PlaybackClock
from .settings import EngineSettings

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class SessionContext:
    """
    Shared state of one annotation session.

    Every component receives the context explicitly; nothing reaches for a
    module-level session. Handlers run to completion one at a time, so the
    context needs no locking.
    """
    config: WorkflowConfig
    clock: PlaybackClock
    settings: EngineSettings = field(default_factory=EngineSettings)
    setup: SetupMetadata = field(default_factory=SetupMetadata)
    mode: str = MODE_ENTRY
    log: AnnotationLog = field(default_factory=AnnotationLog)

    entry_counter: int = 0
    playback_rate: float = 1.0

    # Wall clock used by fades; injectable for tests
    wall_clock: Callable[[], float] = time.monotonic

    notices: List[Notice] = field(default_factory=list)
    notice_listener: Optional[Callable[[Notice], None]] = None

    @property
    def audit_mode(self) -> bool:
        return self.mode == MODE_AUDIT

    def next_entry_id(self) -> str:
        entry_id = f"entry_{int(time.time() * 1000)}_{self.entry_counter}"
        self.entry_counter += 1
        return entry_id

    def notify(self, level: str, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "%s", message)
        self.notices.append(notice)
        if self.notice_listener is not None:
            self.notice_listener(notice)
        return notice

    def resume_playback(self) -> None:
        self.clock.play()
        self.clock.set_rate(self.playback_rate)
