"""
Service helpers for querying and serializing persisted sync runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from analytics_app.models import SyncRun, SyncRunStatus, db

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def coerce_limit(value: int | str | None, *, fallback: int = DEFAULT_LIMIT) -> int:
    """Clamp user input to ``1..MAX_LIMIT``; invalid input raises ``ValueError``."""

    if value in (None, ""):
        return fallback
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid limit '{value}'.") from exc
    if number < 1:
        raise ValueError("limit must be a positive integer.")
    return min(number, MAX_LIMIT)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class SyncRunService:
    """Facade over ``SyncRun`` history."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def list_recent(self, limit: int = DEFAULT_LIMIT) -> list[SyncRun]:
        stmt = select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit)
        return list(self.session.scalars(stmt))

    def latest_completed(self) -> SyncRun | None:
        stmt = (
            select(SyncRun)
            .where(SyncRun.status == SyncRunStatus.SUCCEEDED)
            .where(SyncRun.finished_at.is_not(None))
            .order_by(SyncRun.finished_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    @staticmethod
    def serialize(run: SyncRun) -> dict[str, Any]:
        status = run.status.value if hasattr(run.status, "value") else str(run.status)
        return {
            "id": run.id,
            "status": status,
            "trigger": run.trigger,
            "started_at": _isoformat(run.started_at),
            "finished_at": _isoformat(run.finished_at),
            "duration_seconds": run.duration_seconds,
            "current_phase": run.current_phase,
            "counts": run.counts_json or {},
            "error_summary": run.error_summary,
        }
