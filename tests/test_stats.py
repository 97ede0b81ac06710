# tests/test_stats.py
from __future__ import annotations

from conftest import make_entry

from video_clicker.stats import compute_statistics


def test_statistics_summary(vehicle_config):
    entries = [
        make_entry("a", 60.0, VehicleType="car"),
        make_entry("b", 400.0, VehicleType="truck", LicensePlate="Q"),
        make_entry("c", 700.0, VehicleType="car"),
        make_entry("d", 2000.0, VehicleType="car"),
        make_entry("e", 1260.0),
    ]
    stats = compute_statistics(entries, vehicle_config)

    assert stats["total_entries"] == 5
    assert stats["duration_minutes"] == round((2000.0 - 60.0) / 60.0, 1)
    assert stats["entries_per_minute"] == round(5 / ((2000.0 - 60.0) / 60.0), 2)
    assert stats["time_distribution"] == {
        "0-5 min": 1, "5-10 min": 1, "10-15 min": 1, "15-30 min": 1, "30+ min": 1,
    }
    assert stats["value_counts"]["VehicleType"] == [("car", 3), ("truck", 1), ("N/A", 1)]
    assert stats["value_counts"]["LicensePlate"][0] == ("N/A", 4)


def test_statistics_without_duration():
    stats = compute_statistics([make_entry("a", 5.0)])
    assert stats["entries_per_minute"] is None
    assert stats["duration_minutes"] == 0.0
    assert stats["value_counts"] == {}
