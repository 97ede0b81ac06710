# tests/test_persistence.py
from __future__ import annotations

import csv
import io
import json
import os

from conftest import make_entry

from video_clicker.domain import ORIGIN_PRE_EXISTING, Entry, SetupMetadata
from video_clicker.persistence import (
    METADATA_COLUMNS,
    build_export_rows,
    export_csv_text,
    export_json_payload,
    list_session_files,
    load_export_csv,
    load_session_file,
    parse_export_csv,
    save_export_csv,
    save_session_file,
    session_filename,
    video_output_dir,
)


SETUP = SetupMetadata(
    street_name="Main St, North",
    guid="g-1",
    site_description='Corner "A"',
    video_start_seconds=7 * 3600,
    video_file="/videos/cam 1.mp4",
)


def test_export_header_and_rows(vehicle_config):
    entries = [
        make_entry("a", 31.0, 12.5, 40.0, VehicleType="truck", LicensePlate="X1"),
        Entry(entry_id="b", playback_time_seconds=61.0, click_x=3.0, click_y=4.0,
              derived_timestamp="07:01:00", step_values={"VehicleType": "car"}),
    ]
    text = export_csv_text(vehicle_config, SETUP, entries, export_date="2024-05-01")
    rows = list(csv.reader(io.StringIO(text)))

    assert rows[0] == METADATA_COLUMNS + [
        "playback_time_seconds", "derived_timestamp", "click_x", "click_y", "VehicleType", "LicensePlate",
    ]
    assert rows[1] == [
        "Main St, North", "g-1", 'Corner "A"', "2024-05-01", "cam 1.mp4",
        "31", "07:00:30", "12.5", "40", "truck", "X1",
    ]
    assert rows[2][-2:] == ["car", ""]
    # quoting for commas and quotes
    assert '"Main St, North"' in text
    assert '"Corner ""A"""' in text


def test_import_round_trip(vehicle_config):
    entries = [make_entry("a", 31.0, 12.5, 40.0, VehicleType="truck", LicensePlate="X1")]
    text = export_csv_text(vehicle_config, SETUP, entries, export_date="2024-05-01")

    parsed, setup = parse_export_csv(text, vehicle_config)
    assert setup.street_name == "Main St, North"
    assert setup.video_file == "cam 1.mp4"
    assert setup.video_start_seconds == 7 * 3600

    (e,) = parsed
    assert e.entry_id == "csv_entry_1"
    assert e.origin == ORIGIN_PRE_EXISTING
    assert e.playback_time_seconds == 31.0
    assert (e.click_x, e.click_y) == (12.5, 40.0)
    assert e.derived_timestamp == "07:00:30"
    assert e.step_values == {"VehicleType": "truck", "LicensePlate": "X1"}


def test_import_accepts_legacy_timestamp_column():
    text = (
        "Street Name,GUID,Site Description,Export Date,Video File,"
        "playback_time_seconds,ocr_timestamp,click_x,click_y,VehicleType\n"
        "Elm,,,2023-01-01,v.mp4,11,7:00:10 AM,1,2,car\n"
        "Elm,,,2023-01-01,v.mp4,oops,7:00:12 AM,1,2,car\n"
        "Elm,,,2023-01-01,v.mp4,21,7:00:20 AM,5,6,bus\n"
    )
    parsed, setup = parse_export_csv(text)
    assert [e.entry_id for e in parsed] == ["csv_entry_1", "csv_entry_3"]
    assert parsed[0].derived_timestamp == "07:00:10"
    assert parsed[1].step_values == {"VehicleType": "bus"}
    assert setup.video_start_seconds == 7 * 3600


def test_build_rows_fills_missing_timestamp(vehicle_config):
    rows = build_export_rows(vehicle_config, SETUP, [make_entry("a", 2.0)], export_date="d")
    assert rows[0]["derived_timestamp"] == "07:00:01"
    assert rows[0]["VehicleType"] == ""


def test_json_payload(vehicle_config):
    payload = export_json_payload(SETUP, [make_entry("a", 2.0)], "entry", exported_at="2024-05-01T10:00:00")
    assert payload["metadata"]["totalEntries"] == 1
    assert payload["metadata"]["videoFile"] == "cam 1.mp4"
    assert payload["metadata"]["exportMode"] == "entry"
    assert payload["entries"][0]["entryId"] == "a"
    assert payload["entries"][0]["derived_timestamp"] == "07:00:01"


def test_session_filename_uses_latest_entry():
    entries = [make_entry("a", 31.0), make_entry("b", 3661.0)]
    assert session_filename("/x/cam 1.mp4", entries, 7 * 3600) == "cam_1_session_08-01-00.json"
    assert session_filename("", [], None) == "unknown_session_00-00-00.json"


def test_save_and_load_session_file(tmp_path):
    snapshot = {
        "config": {"steps": []},
        "setupMetadata": SETUP.to_dict(),
        "log": [make_entry("a", 31.0).to_dict()],
        "playbackPositionSeconds": 40.0,
    }
    directory = video_output_dir(str(tmp_path), SETUP.video_file)
    path = save_session_file(directory, snapshot)

    assert os.path.basename(path) == "cam_1_session_07-00-30.json"
    assert list_session_files(directory) == ["cam_1_session_07-00-30.json"]
    assert not [n for n in os.listdir(directory) if n.startswith(".tmp_")]

    loaded = load_session_file(path)
    assert loaded["log"] == snapshot["log"]
    assert "savedAt" in loaded


def test_load_session_file_rejects_garbage(tmp_path):
    p = tmp_path / "bad_session_00-00-00.json"
    p.write_text("[1, 2", encoding="utf-8")
    assert load_session_file(str(p)) is None
    p.write_text(json.dumps([1, 2]), encoding="utf-8")
    assert load_session_file(str(p)) is None
    assert load_session_file(str(tmp_path / "missing.json")) is None


def test_export_file_names_and_reload(tmp_path, vehicle_config):
    entries = [make_entry("a", 31.0, VehicleType="car")]
    text = export_csv_text(vehicle_config, SETUP, entries, export_date="2024-05-01")

    path = save_export_csv(str(tmp_path), text)
    assert os.path.basename(path) == "traffic-data-export.csv"
    audit_path = save_export_csv(str(tmp_path), text, audit=True)
    assert os.path.basename(audit_path) == "traffic-data-auditor-export.csv"

    parsed, setup = load_export_csv(path, vehicle_config)
    assert [e.value_for("VehicleType") for e in parsed] == ["car"]
    assert setup.guid == "g-1"
