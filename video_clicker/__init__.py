# video_clicker/__init__.py
'''
video_clicker/
    __init__.py

    domain.py              # dataclasses: Step, WorkflowConfig, SetupMetadata, Entry, Notice
    errors.py              # ConfigError, CoordinateError, StateInvariantViolation, ...
    settings.py            # EngineSettings: timing constants, undo depth, speed sequence
    config.py              # workflow config validation + loading
    timeutils.py           # MM:SS / HH:MM:SS helpers, derived timestamps
    geometry.py            # click -> native video pixel coordinates

    annotation_log.py      # ordered committed entries
    context.py             # SessionContext shared by every component
    playback.py            # PlaybackClock interface, listener handles, teardown
    workflow.py            # conditional questionnaire navigation
    history.py             # undo/redo snapshots
    entry_session.py       # click -> draft -> answers -> commit
    recap.py               # rewind and review up to the latest entry
    indicators.py          # per-entry dot states (creation + review)
    audit.py               # pre-existing vs new entries, deletion, export set
    engine.py              # AnnotationEngine: wiring, key commands, session resume

    persistence.py         # session files, CSV/JSON export, CSV import
    stats.py               # export statistics
    qt_playback.py         # QMediaPlayer clock, QTimer tick driver, key event filter
    logging_config.py      # process-wide logging setup

The core never imports Qt. A PyQt5 window drives a session through
qt_playback (imported explicitly):

    clock = QtPlaybackClock(player)
    engine = AnnotationEngine(load_workflow_config(path), clock)
    clock.attach(engine)
    TickDriver(engine, on_tick=overlay.set_indicators).start()
    ShortcutFilter(engine).install(app)
'''

from __future__ import annotations

__all__ = [
    "__version__",
    "AnnotationEngine",
    "ConfigError",
    "EngineSettings",
    "Entry",
    "SetupMetadata",
    "WorkflowConfig",
    "configure_logging",
    "load_workflow_config",
]

__version__ = "0.1.0"

from .config import load_workflow_config
from .domain import Entry, SetupMetadata, WorkflowConfig
from .engine import AnnotationEngine
from .errors import ConfigError
from .logging_config import configure_logging
from .settings import EngineSettings
