# tests/test_engine.py
from __future__ import annotations

import json

import pytest
from conftest import VEHICLE_CONFIG, FakeClock, click_at, make_entry

from video_clicker.domain import MODE_AUDIT, SetupMetadata
from video_clicker.engine import (
    KEY_DOWN,
    KEY_LEFT,
    KEY_MINUS,
    KEY_RIGHT,
    KEY_SPACE,
    KEY_UP,
    KEY_Z,
    AnnotationEngine,
)
from video_clicker.errors import ConfigError
from video_clicker.indicators import PHASE_UNDO


def _commit(engine, clock, t, *answers):
    entry_id = click_at(engine, clock, t)
    for step_id, value in answers:
        engine.answer(step_id, value)
    return entry_id


def test_clicks_are_gated_until_started(engine, clock):
    assert click_at(engine, clock, 5.0) is None
    assert not engine.session.drafting

    engine.handle_key(KEY_SPACE)
    assert engine.started
    assert clock.is_playing()
    assert click_at(engine, clock, 5.0) is not None
    assert not clock.is_playing()


def test_click_coordinates_are_native(engine, clock):
    engine.toggle_playback()
    clock._position = 5.0
    entry_id = engine.handle_click(320, 180, 640, 360, 1920, 1080)
    engine.answer("VehicleType", "car")
    e = engine.log.get(entry_id)
    assert (e.click_x, e.click_y) == (960.0, 540.0)


def test_degenerate_surface_discards_click(engine, clock):
    engine.toggle_playback()
    b = _commit(engine, clock, 9.0, ("VehicleType", "car"))
    engine.undo()
    engine.toggle_playback()
    assert clock.is_playing()

    assert engine.handle_click(10, 10, 0, 0, 1920, 1080) is None
    assert not engine.session.drafting
    assert len(engine.log) == 0
    assert engine.ctx.notices[-1].level == "error"
    assert engine.indicators.creation_phase(b) == PHASE_UNDO
    assert clock.is_playing()


def test_undo_redo_scenario(engine, clock):
    engine.toggle_playback()
    a = _commit(engine, clock, 5.0, ("VehicleType", "car"))
    b = _commit(engine, clock, 9.0, ("VehicleType", "car"))

    assert engine.handle_key(KEY_Z, ctrl=True)
    assert engine.log.ids() == [a]
    assert engine.history.redo_depth() == 1
    assert clock.seeks[-1] == 9.0
    assert not clock.is_playing()
    assert engine.indicators.creation_phase(b) == PHASE_UNDO

    assert engine.handle_key(KEY_Z, ctrl=True, shift=True)
    assert engine.log.ids() == [a, b]
    assert engine.indicators.creation_phase(b) is None


def test_undo_is_rejected_while_drafting(engine, clock):
    engine.toggle_playback()
    _commit(engine, clock, 5.0, ("VehicleType", "car"))
    click_at(engine, clock, 6.0)
    assert not engine.undo()
    assert len(engine.log) == 1
    assert engine.ctx.notices[-1].message == "Finish or cancel the current entry first"


def test_minus_starts_recap_and_space_drives_it(engine, clock):
    engine.toggle_playback()
    _commit(engine, clock, 30.0, ("VehicleType", "car"))
    clock._position = 40.0

    engine.handle_key(KEY_MINUS)
    assert engine.recap.rewinding
    clock.complete_seek()
    assert not clock.is_playing()

    engine.handle_key(KEY_SPACE)
    assert clock.is_playing()
    clock.set_position(29.6)
    assert engine.recap.completed
    assert not clock.is_playing()

    engine.handle_key(KEY_SPACE)
    assert engine.recap.state == "inactive"
    assert clock.is_playing()


def test_click_allowed_inside_recap_window_before_start(engine, clock):
    engine.log.append(make_entry("seed", 30.0))
    clock._position = 40.0
    engine.start_recap()
    clock.complete_seek()
    assert click_at(engine, clock, 12.0) is not None


def test_speed_controls(engine, clock):
    engine.toggle_playback()
    assert engine.handle_key(KEY_LEFT)
    assert engine.ctx.playback_rate == 0.75
    assert clock.rate == 0.75
    engine.handle_key(KEY_RIGHT)
    engine.handle_key(KEY_RIGHT)
    assert engine.ctx.playback_rate == 2.0
    engine.handle_key(KEY_UP)
    assert engine.ctx.playback_rate == 1.0

    for _ in range(10):
        engine.slower()
    assert engine.ctx.playback_rate == 0.25
    for _ in range(10):
        engine.faster()
    assert engine.ctx.playback_rate == 8.0

    engine.handle_key(KEY_DOWN)
    assert not clock.is_playing()
    assert engine.ctx.playback_rate == 1.0


def test_resume_applies_selected_rate(engine, clock):
    engine.slower()
    engine.toggle_playback()
    assert clock.is_playing()
    assert clock.rate == 0.75


def test_restart_counting(engine, clock):
    engine.toggle_playback()
    _commit(engine, clock, 5.0, ("VehicleType", "car"))
    click_at(engine, clock, 6.0)

    assert engine.restart_counting()
    assert len(engine.log) == 0
    assert not engine.session.drafting
    assert not engine.history.can_undo()
    assert engine.ctx.entry_counter == 0
    assert clock.position() == 1.0
    assert not clock.is_playing()


def test_restart_counting_in_audit_restores_imported(engine, clock):
    engine.load_audit_entries([make_entry("X", 3.0), make_entry("Y", 4.0)])
    engine.toggle_playback()
    engine.delete_entry("X")
    _commit(engine, clock, 8.0, ("VehicleType", "car"))

    engine.restart_counting()
    assert engine.log.ids() == ["X", "Y"]
    assert engine.log.deleted_entry_ids() == []


def test_session_snapshot_round_trip(vehicle_config, clock, wall):
    setup = SetupMetadata(street_name="Elm", video_start_seconds=3600, video_file="v.mp4")
    engine = AnnotationEngine(vehicle_config, clock, setup=setup, wall_clock=wall)
    engine.load_audit_entries([make_entry("X", 3.0), make_entry("Y", 4.0)])
    engine.toggle_playback()
    engine.delete_entry("X")
    new_id = _commit(engine, clock, 8.0, ("VehicleType", "truck"), ("LicensePlate", "P"))
    clock._position = 9.5
    snap = engine.session_snapshot()
    engine.close()

    assert snap["newEntryIds"] == [new_id]
    assert snap["deletedEntryIds"] == ["X"]
    assert snap["playbackPositionSeconds"] == 9.5
    for key in ("config", "setupMetadata", "log", "playbackRate", "entryCounter"):
        assert key in snap

    other_clock = FakeClock()
    restored = AnnotationEngine.from_session(snap, other_clock, wall_clock=wall)
    assert restored.ctx.mode == MODE_AUDIT
    assert restored.log.ids() == ["X", "Y", new_id]
    assert restored.log.deleted_entry_ids() == ["X"]
    assert restored.log.new_entry_ids() == [new_id]
    assert [e.entry_id for e in restored.export_entries()] == ["Y", new_id]
    assert restored.ctx.setup.street_name == "Elm"
    assert restored.ctx.entry_counter == snap["entryCounter"]
    assert other_clock.position() == 9.5
    assert [e.entry_id for e in restored.audit.original_entries] == ["X", "Y"]
    restored.close()


def test_from_session_validates_config(clock):
    with pytest.raises(ConfigError):
        AnnotationEngine.from_session({"config": {"steps": []}}, clock)


def test_replace_source_keeps_position_and_ignores_duplicates(engine, clock):
    assert engine.replace_source("http://example/stream.m3u8")
    engine.toggle_playback()
    clock._position = 42.0

    assert engine.replace_source("/tmp/download.mp4")
    assert clock.sources == ["http://example/stream.m3u8", "/tmp/download.mp4"]
    assert clock.seeks[-1] == 42.0
    assert not clock.is_playing()
    clock.complete_seek()
    assert clock.is_playing()

    assert not engine.replace_source("/tmp/download.mp4")
    assert len(clock.sources) == 2


def test_close_removes_every_listener(vehicle_config, clock, wall):
    engine = AnnotationEngine(vehicle_config, clock, wall_clock=wall)
    removed = []
    engine.register_teardown(lambda: removed.append("timer"))
    assert clock.listener_count() == 2

    engine.close()
    assert clock.listener_count() == 0
    assert removed == ["timer"]

    engine.close()
    assert removed == ["timer"]
    assert engine.tick() == []
    assert not engine.handle_key(KEY_SPACE)
    assert engine.ctx.notices[-1].message == "Session is closed"


def test_two_sessions_on_one_clock_do_not_interfere(vehicle_config, clock, wall):
    first = AnnotationEngine(vehicle_config, clock, wall_clock=wall)
    first.close()
    second = AnnotationEngine(vehicle_config, clock, wall_clock=wall)
    second.log.append(make_entry("a", 30.0))
    clock._position = 40.0
    second.start_recap()
    clock.complete_seek()
    assert second.recap.window_armed()
    assert clock.listener_count() == 2
    second.close()


def test_export_and_statistics(engine, clock):
    engine.ctx.setup = SetupMetadata(street_name="Elm", video_start_seconds=0, video_file="v.mp4")
    engine.toggle_playback()
    _commit(engine, clock, 61.0, ("VehicleType", "car"))
    _commit(engine, clock, 121.0, ("VehicleType", "truck"), ("LicensePlate", "Z"))

    rows = engine.export_rows(export_date="2024-01-01")
    assert [r["VehicleType"] for r in rows] == ["car", "truck"]
    assert rows[0]["derived_timestamp"] == "00:01:00"
    assert engine.export_csv(export_date="2024-01-01").count("\n") == 3
    assert engine.export_json()["metadata"]["totalEntries"] == 2
    assert engine.statistics()["total_entries"] == 2


def test_from_config_file(tmp_path, clock, wall):
    p = tmp_path / "workflow.json"
    p.write_text(json.dumps(VEHICLE_CONFIG), encoding="utf-8")
    engine = AnnotationEngine.from_config_file(str(p), clock, wall_clock=wall)
    assert engine.config.step_ids() == ["VehicleType", "LicensePlate"]
    engine.close()

    p.write_text(json.dumps({"steps": [{"step_id": "a", "condition": {"step_id": "a", "value": "x"}}]}), encoding="utf-8")
    with pytest.raises(ConfigError):
        AnnotationEngine.from_config_file(str(p), clock)


def test_cancel_entry_resumes_playback(engine, clock):
    engine.toggle_playback()
    entry_id = click_at(engine, clock, 7.0)
    assert not clock.is_playing()

    assert engine.cancel_entry()
    assert not engine.session.drafting
    assert entry_id not in engine.log
    assert engine.indicators.creation_phase(entry_id) is None
    assert clock.is_playing()
    assert not engine.cancel_entry()


def test_go_back_from_first_step_cancels(engine, clock):
    engine.toggle_playback()
    click_at(engine, clock, 7.0)
    assert engine.go_back()
    assert not engine.session.drafting
    assert len(engine.log) == 0


def test_exit_recap(engine, clock):
    engine.toggle_playback()
    _commit(engine, clock, 30.0, ("VehicleType", "car"))
    clock._position = 40.0
    engine.start_recap()
    clock.complete_seek()

    assert engine.exit_recap()
    assert engine.recap.state == "inactive"
    assert not clock.is_playing()
    assert not engine.exit_recap()

    engine.start_recap()
    clock.complete_seek()
    engine.recap.complete(clock.position())
    assert engine.exit_recap()
    assert clock.is_playing()


def test_undo_waits_for_recap_rewind(engine, clock):
    engine.toggle_playback()
    a = _commit(engine, clock, 5.0, ("VehicleType", "car"))
    b = _commit(engine, clock, 30.0, ("VehicleType", "car"))
    clock._position = 40.0
    engine.start_recap()
    assert engine.recap.seek_pending

    assert not engine.undo()
    assert not engine.redo()
    assert engine.log.ids() == [a, b]
    assert engine.ctx.notices[-1].message == "Wait for the recap rewind to finish"

    clock.complete_seek()
    assert not engine.recap.seek_pending
    assert clock.position() == 0.0
    assert engine.undo()
    assert engine.log.ids() == [a]


def test_restore_clamps_negative_times(engine, clock):
    snap = engine.session_snapshot()
    snap["log"] = [
        {"entryId": "n", "playback_time_seconds": -5.0, "click_x": 1, "click_y": 2},
        {"entryId": "m", "playback_time_seconds": 12.0},
    ]
    snap["playbackPositionSeconds"] = -3.0

    assert engine.restore_session(snap)
    assert [e.playback_time_seconds for e in engine.log] == [0.0, 12.0]
    assert clock.position() == 0.0


@pytest.mark.parametrize("bad_log", [
    [{"playback_time_seconds": 5.0}],
    [{"entryId": "x", "playback_time_seconds": "soon"}],
    [{"entryId": "x", "playback_time_seconds": float("nan")}],
    ["not an entry"],
])
def test_malformed_session_leaves_state_untouched(engine, clock, bad_log):
    engine.toggle_playback()
    a = _commit(engine, clock, 5.0, ("VehicleType", "car"))
    seeks_before = list(clock.seeks)
    snap = engine.session_snapshot()
    snap["log"] = bad_log

    assert engine.restore_session(snap) is False
    assert engine.log.ids() == [a]
    assert engine.history.can_undo()
    assert clock.seeks == seeks_before
    assert engine.ctx.notices[-1].level == "error"
