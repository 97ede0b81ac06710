# video_clicker/stats.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from .domain import Entry, WorkflowConfig

MISSING_VALUE = "N/A"

# (label, lower bound in minutes); the last bucket is open-ended
TIME_BUCKETS: List[Tuple[str, float]] = [
    ("0-5 min", 0.0),
    ("5-10 min", 5.0),
    ("10-15 min", 10.0),
    ("15-30 min", 15.0),
    ("30+ min", 30.0),
]


def _bucket_for(minutes: float) -> str:
    label = TIME_BUCKETS[0][0]
    for name, lower in TIME_BUCKETS:
        if minutes >= lower:
            label = name
    return label


def value_counts(entries: Iterable[Entry], step_id: str) -> List[Tuple[str, int]]:
    """(value, count) pairs, most frequent first. Unanswered steps count as N/A."""
    counts: Dict[str, int] = {}
    for e in entries:
        v = e.value_for(step_id) or MISSING_VALUE
        counts[v] = counts.get(v, 0) + 1
    return sorted(counts.items(), key=lambda kv: kv[1], reverse=True)


def compute_statistics(entries: Iterable[Entry], config: Optional[WorkflowConfig] = None) -> Dict:
    """
    Summary shown after an export:
      - total entries, covered duration (minutes between earliest and latest
        entry) and entries per minute (None when the duration is zero)
      - counts per playback-time bucket
      - value counts per step
    """
    entries = list(entries)
    total = len(entries)

    times = [float(e.playback_time_seconds) for e in entries]
    duration_min = (max(times) - min(times)) / 60.0 if times else 0.0
    rate = round(total / duration_min, 2) if duration_min > 0 else None

    buckets = {name: 0 for name, _lower in TIME_BUCKETS}
    for t in times:
        buckets[_bucket_for(t / 60.0)] += 1

    per_step: Dict[str, List[Tuple[str, int]]] = {}
    if config is not None:
        for sid in config.step_ids():
            per_step[sid] = value_counts(entries, sid)

    return {
        "total_entries": total,
        "duration_minutes": round(duration_min, 1),
        "entries_per_minute": rate,
        "time_distribution": buckets,
        "value_counts": per_step,
    }
