# video_clicker/persistence.py
from __future__ import annotations

import csv
import io
import json
import logging
import os
import re
import tempfile
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .domain import ORIGIN_PRE_EXISTING, Entry, SetupMetadata, WorkflowConfig, normalize_value
from .timeutils import derive_timestamp, format_timestamp, infer_video_start, parse_timestamp

logger = logging.getLogger(__name__)


SESSION_FILENAME_INFIX = "_session_"
EXPORT_FILENAME = "traffic-data-export.csv"
AUDIT_EXPORT_FILENAME = "traffic-data-auditor-export.csv"

METADATA_COLUMNS = ["Street Name", "GUID", "Site Description", "Export Date", "Video File"]
ENTRY_COLUMNS = ["playback_time_seconds", "derived_timestamp", "click_x", "click_y"]

# Older exports named the derived timestamp column after the OCR feature
LEGACY_TIMESTAMP_COLUMN = "ocr_timestamp"
VIDEO_START_COLUMN = "Video Start Time"

_KNOWN_COLUMNS = set(METADATA_COLUMNS + ENTRY_COLUMNS + [LEGACY_TIMESTAMP_COLUMN, VIDEO_START_COLUMN])

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


# -----------------------------
# Atomic file helpers
# -----------------------------

def _atomic_write_text(path: str, text: str, encoding: str = "utf-8") -> None:
    d = os.path.dirname(path) or "."
    os.makedirs(d, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", dir=d)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def _atomic_write_json(path: str, payload: Dict) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    _atomic_write_text(path, text + "\n")


def _read_json(path: str) -> Dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# -----------------------------
# Naming
# -----------------------------

def video_base_name(video_file: str) -> str:
    """File name without directories or extension ("unknown" if empty)."""
    name = os.path.basename((video_file or "").replace("\\", "/"))
    stem, _ext = os.path.splitext(name)
    return stem or "unknown"


def safe_name(name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", name or "")


def video_output_dir(base_dir: str, video_file: str) -> str:
    """Per-video folder under base_dir holding sessions and exports."""
    return os.path.join(base_dir, safe_name(video_base_name(video_file)))


def session_filename(video_file: str, entries: Iterable[Entry], video_start_seconds: Optional[float]) -> str:
    """
    <video>_session_<HH-MM-SS>.json, named after the derived timestamp of the
    latest entry (00-00-00 when there are none).
    """
    latest: Optional[Entry] = None
    for e in entries:
        if latest is None or e.playback_time_seconds > latest.playback_time_seconds:
            latest = e

    stamp = "00:00:00"
    if latest is not None:
        stamp = latest.derived_timestamp or derive_timestamp(latest.playback_time_seconds, video_start_seconds)
    if parse_timestamp(stamp) is None:
        stamp = "00:00:00"
    return f"{safe_name(video_base_name(video_file))}{SESSION_FILENAME_INFIX}{stamp.replace(':', '-')}.json"


# -----------------------------
# Session files
# -----------------------------

def save_session_file(directory: str, snapshot: Dict, filename: Optional[str] = None) -> str:
    """
    Writes a session snapshot atomically. Returns the written path.
    A savedAt stamp is added to the stored copy.
    """
    if not directory:
        raise ValueError("A target directory is required to save a session")
    if filename is None:
        setup = SetupMetadata.from_dict(snapshot.get("setupMetadata") or {})
        entries = [Entry.from_dict(d) for d in (snapshot.get("log") or [])]
        filename = session_filename(setup.video_file, entries, setup.video_start_seconds)

    payload = dict(snapshot)
    payload["savedAt"] = datetime.now().isoformat(timespec="seconds")
    path = os.path.join(directory, filename)
    _atomic_write_json(path, payload)
    logger.info("Session saved: %s (%d entries)", path, len(snapshot.get("log") or []))
    return path


def load_session_file(path: str) -> Optional[Dict]:
    """
    Loads a saved session snapshot.

    Returns None if the file is missing or not a JSON object (logged).
    """
    if not path or not os.path.exists(path):
        return None
    try:
        data = _read_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read session file %s: %s", path, exc)
        return None
    if not isinstance(data, dict) or not isinstance(data.get("log", []), list):
        logger.warning("Session file %s has an unexpected shape", path)
        return None
    return data


def list_session_files(directory: str) -> List[str]:
    """Session file names in a directory, oldest first by name."""
    if not directory or not os.path.isdir(directory):
        return []
    return sorted(
        name for name in os.listdir(directory)
        if SESSION_FILENAME_INFIX in name and name.lower().endswith(".json") and not name.startswith(".")
    )


# -----------------------------
# Export
# -----------------------------

def _number(v: float) -> str:
    s = repr(float(v))
    return s[:-2] if s.endswith(".0") else s


def _to_float(text: Optional[str], default: float = 0.0) -> float:
    try:
        return float(text) if text not in (None, "") else default
    except ValueError:
        return default


def export_header(config: WorkflowConfig) -> List[str]:
    return METADATA_COLUMNS + ENTRY_COLUMNS + config.step_ids()


def build_export_rows(
    config: WorkflowConfig,
    setup: SetupMetadata,
    entries: Iterable[Entry],
    export_date: Optional[str] = None,
) -> List[Dict[str, str]]:
    """One row per entry: metadata columns, entry columns, then one column per step id."""
    export_date = export_date or date.today().isoformat()
    video = os.path.basename((setup.video_file or "").replace("\\", "/")) or "unknown"
    step_ids = config.step_ids()

    rows: List[Dict[str, str]] = []
    for e in entries:
        row = {
            "Street Name": setup.street_name,
            "GUID": setup.guid,
            "Site Description": setup.site_description,
            "Export Date": export_date,
            "Video File": video,
            "playback_time_seconds": _number(e.playback_time_seconds),
            "derived_timestamp": e.derived_timestamp or derive_timestamp(e.playback_time_seconds, setup.video_start_seconds),
            "click_x": _number(e.click_x),
            "click_y": _number(e.click_y),
        }
        for sid in step_ids:
            row[sid] = e.value_for(sid)
        rows.append(row)
    return rows


def export_csv_text(
    config: WorkflowConfig,
    setup: SetupMetadata,
    entries: Iterable[Entry],
    export_date: Optional[str] = None,
) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=export_header(config), lineterminator="\n")
    writer.writeheader()
    for row in build_export_rows(config, setup, entries, export_date):
        writer.writerow(row)
    return buf.getvalue()


def save_export_csv(directory: str, text: str, audit: bool = False) -> str:
    path = os.path.join(directory, AUDIT_EXPORT_FILENAME if audit else EXPORT_FILENAME)
    _atomic_write_text(path, text)
    logger.info("Export written: %s", path)
    return path


def export_json_payload(
    setup: SetupMetadata,
    entries: Iterable[Entry],
    mode: str,
    exported_at: Optional[str] = None,
) -> Dict:
    entries = list(entries)
    meta = setup.to_dict()
    meta["videoFile"] = os.path.basename((setup.video_file or "").replace("\\", "/")) or "unknown"
    meta["exportDate"] = exported_at or datetime.now().isoformat(timespec="seconds")
    meta["exportMode"] = mode
    meta["totalEntries"] = len(entries)

    out = []
    for e in entries:
        d = e.to_dict()
        if not d["derived_timestamp"]:
            d["derived_timestamp"] = derive_timestamp(e.playback_time_seconds, setup.video_start_seconds)
        out.append(d)
    return {"metadata": meta, "entries": out}


# -----------------------------
# Import (audit mode)
# -----------------------------

def parse_export_csv(text: str, config: Optional[WorkflowConfig] = None) -> Tuple[List[Entry], SetupMetadata]:
    """
    Reads a CSV produced by export_csv_text (or an older export) back into
    pre-existing entries plus the setup metadata of its first row.

    Step columns are the config's step ids when a config is given, otherwise
    every column that is not a metadata or entry column. Rows without a
    parseable playback time are skipped.
    """
    reader = csv.DictReader(io.StringIO(text or ""))
    header = [h.strip() for h in (reader.fieldnames or [])]
    reader.fieldnames = header

    if config is not None:
        step_columns = [sid for sid in config.step_ids() if sid in header]
    else:
        step_columns = [h for h in header if h and h not in _KNOWN_COLUMNS]

    ts_column = "derived_timestamp" if "derived_timestamp" in header else LEGACY_TIMESTAMP_COLUMN

    entries: List[Entry] = []
    setup = SetupMetadata()
    first = True
    for i, row in enumerate(reader, start=1):
        if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
            continue
        raw_time = (row.get("playback_time_seconds") or "").strip()
        try:
            playback = float(raw_time)
        except ValueError:
            logger.warning("Row %d: invalid playback time %r, skipped", i, raw_time)
            continue

        timestamp = (row.get(ts_column) or "").strip()
        secs = parse_timestamp(timestamp)
        if secs is not None:
            timestamp = format_timestamp(secs)

        if first:
            first = False
            setup = SetupMetadata(
                street_name=(row.get("Street Name") or "").strip(),
                guid=(row.get("GUID") or "").strip(),
                site_description=(row.get("Site Description") or "").strip(),
                video_file=(row.get("Video File") or "").strip(),
            )
            start = parse_timestamp((row.get(VIDEO_START_COLUMN) or "").strip())
            if start is not None:
                setup.video_start_seconds = float(start)
            elif timestamp:
                setup.video_start_seconds = infer_video_start(timestamp, playback)

        entries.append(Entry(
            entry_id=f"csv_entry_{i}",
            playback_time_seconds=max(0.0, playback),
            click_x=_to_float(row.get("click_x")),
            click_y=_to_float(row.get("click_y")),
            derived_timestamp=timestamp,
            step_values={sid: normalize_value(row.get(sid)) for sid in step_columns},
            origin=ORIGIN_PRE_EXISTING,
        ))

    logger.info("Parsed %d entries from export CSV", len(entries))
    return (entries, setup)


def load_export_csv(path: str, config: Optional[WorkflowConfig] = None) -> Tuple[List[Entry], SetupMetadata]:
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        text = f.read()
    return parse_export_csv(text, config)
