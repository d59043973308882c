"""Prometheus metrics helpers for the legacy sync."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_rows_counter = Counter(
    "legacy_sync_rows_total",
    "Rows handled by the legacy sync, by phase and outcome.",
    ["phase", "outcome"],
)
_runs_counter = Counter(
    "legacy_sync_runs_total",
    "Legacy sync runs by terminal status.",
    ["status"],
)
_phase_duration = Histogram(
    "legacy_sync_phase_duration_seconds",
    "Duration of each legacy sync phase in seconds.",
    ["phase"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, 900),
)


def record_phase(
    phase: str,
    *,
    inserted: int,
    updated: int,
    skipped: int,
    duration_seconds: float,
) -> None:
    """Capture row outcomes and timing for one completed phase."""

    for outcome, count in (("inserted", inserted), ("updated", updated), ("skipped", skipped)):
        if count:
            _rows_counter.labels(phase=phase, outcome=outcome).inc(count)
    _phase_duration.labels(phase=phase).observe(max(duration_seconds, 0.0))


def record_run(status: Literal["succeeded", "failed"]) -> None:
    _runs_counter.labels(status=status).inc()
