"""
SQLAlchemy model recording the history of legacy sync runs.

The in-memory ``SyncStatus`` only knows about the current process; this table
keeps every run so the last successful sync survives restarts.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db


class SyncRunStatus(str, enum.Enum):
    """Lifecycle states for a persisted sync run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SyncTrigger(str, enum.Enum):
    """What asked for the run."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    CLI = "cli"


class SyncRun(BaseModel):
    """Metadata describing a single legacy sync execution."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    status: Mapped[SyncRunStatus] = mapped_column(
        Enum(SyncRunStatus, name="sync_run_status_enum"),
        nullable=False,
        default=SyncRunStatus.RUNNING,
        index=True,
    )
    trigger: Mapped[str] = mapped_column(db.String(50), nullable=False, default=SyncTrigger.MANUAL.value)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    current_phase: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    __table_args__ = (Index("idx_sync_runs_status_finished", "status", "finished_at"),)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
