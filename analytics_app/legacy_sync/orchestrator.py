"""
Pipeline driver for the legacy synchronization.

The orchestrator owns the run lifecycle: single-flight admission through
``SyncStatus``, the ``SyncRun`` history row, per-phase progress, and the one
top-level failure handler. Phases commit as they go; a failure leaves the
rows of earlier phases and batches in place.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from analytics_app.models import SyncRun, SyncRunStatus, SyncTrigger, db

from . import phases
from .destination import DestinationStore
from .errors import PhaseFailure
from .metrics import record_phase, record_run
from .phases import DEFAULT_BATCH_SIZE, PhaseSummary
from .source import LegacySourceStore
from .status import SyncStatus

PhaseHandler = Callable[..., PhaseSummary]


@dataclass(frozen=True)
class PhaseSpec:
    name: str
    percent: int
    message: str
    handler: PhaseHandler


CORE_PHASES: tuple[PhaseSpec, ...] = (
    PhaseSpec(phases.CUSTOMERS, 10, "Syncing customers...", phases.sync_customers),
    PhaseSpec(phases.STUDENTS, 25, "Syncing students...", phases.sync_students),
    PhaseSpec(phases.LOCATIONS_AND_ROOMS, 45, "Syncing locations and rooms...", phases.sync_locations_and_rooms),
    PhaseSpec(phases.TRANSACTIONS, 65, "Syncing transactions...", phases.sync_transactions),
)
DIAGNOSTICS_PHASE = PhaseSpec(phases.DIAGNOSTICS, 85, "Syncing diagnostics...", phases.sync_diagnostics)

SETUP_PHASE = "setup"
FINALIZE_PHASE = "finalize"
RUN_INTERRUPTED_MESSAGE = "Synchronization interrupted"


@dataclass
class SyncRunOutcome:
    run_id: int | None
    succeeded: bool
    summaries: list[PhaseSummary] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "succeeded": self.succeeded,
            "error": self.error,
            "phases": {summary.phase: summary.to_dict() for summary in self.summaries},
        }


class SyncOrchestrator:
    """Runs the fixed phase list once per call to ``run``."""

    def __init__(
        self,
        status: SyncStatus,
        source: LegacySourceStore,
        store: DestinationStore | None = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        diagnostics_enabled: bool = False,
    ):
        self.status = status
        self.source = source
        self.store = store or DestinationStore()
        self.batch_size = max(1, int(batch_size))
        self.diagnostics_enabled = diagnostics_enabled

    @property
    def phases(self) -> tuple[PhaseSpec, ...]:
        if self.diagnostics_enabled:
            return CORE_PHASES + (DIAGNOSTICS_PHASE,)
        return CORE_PHASES

    def run(self, trigger: str = SyncTrigger.MANUAL.value, *, admitted: bool = False) -> SyncRunOutcome | None:
        """
        Execute every phase in order.

        Returns ``None`` without side effects when another run is active.
        Pass ``admitted=True`` when the caller already won ``start_sync()``.
        Raises ``PhaseFailure`` (chained to the original error) after the
        failure has been recorded in ``SyncStatus`` and ``SyncRun``. Any
        other interruption still leaves the status released.
        """
        if not admitted and not self.status.start_sync():
            current_app.logger.info("Legacy sync already in progress; %s trigger rejected.", trigger)
            return None

        run_id: int | None = None
        current_phase = SETUP_PHASE
        summaries: list[PhaseSummary] = []
        started = time.perf_counter()
        current_app.logger.info("Legacy sync started", extra={"sync_trigger": trigger})
        try:
            run_id = self._open_run(trigger)
            for spec in self.phases:
                current_phase = spec.name
                self.status.update_progress(spec.name, spec.percent, spec.message)
                self._checkpoint(run_id, spec.name, summaries)
                phase_started = time.perf_counter()
                summary = spec.handler(self.source, self.store, batch_size=self.batch_size)
                record_phase(
                    spec.name,
                    inserted=summary.rows_inserted,
                    updated=summary.rows_updated,
                    skipped=summary.rows_skipped,
                    duration_seconds=time.perf_counter() - phase_started,
                )
                summaries.append(summary)
            current_phase = FINALIZE_PHASE
            self._close_run(run_id, SyncRunStatus.SUCCEEDED, summaries)
            self.status.complete_sync(True)
            record_run("succeeded")
        except Exception as exc:
            failure = PhaseFailure(current_phase, exc, run_id=run_id)
            self._record_failure(run_id, failure, summaries)
            current_app.logger.exception(
                "Legacy sync failed during %s: %s",
                current_phase,
                failure.root_message,
                extra={
                    "sync_run_id": run_id,
                    "sync_phase": current_phase,
                    "sync_error": failure.root_message,
                },
            )
            raise failure from exc
        finally:
            if self.status.is_running:
                self.status.complete_sync(False, RUN_INTERRUPTED_MESSAGE)
                current_app.logger.error(
                    "Legacy sync interrupted during %s",
                    current_phase,
                    extra={"sync_run_id": run_id, "sync_phase": current_phase},
                )

        duration = time.perf_counter() - started
        outcome = SyncRunOutcome(run_id=run_id, succeeded=True, summaries=summaries)
        current_app.logger.info(
            "Legacy sync completed in %.2f seconds",
            duration,
            extra={
                "sync_run_id": run_id,
                "sync_trigger": trigger,
                "sync_duration_seconds": round(duration, 3),
                "sync_rows_inserted": sum(s.rows_inserted for s in summaries),
                "sync_rows_updated": sum(s.rows_updated for s in summaries),
                "sync_rows_skipped": sum(s.rows_skipped for s in summaries),
            },
        )
        return outcome

    # ------------------------------------------------------------------
    # SyncRun bookkeeping
    # ------------------------------------------------------------------

    def _open_run(self, trigger: str) -> int:
        run = SyncRun(
            status=SyncRunStatus.RUNNING,
            trigger=trigger,
            started_at=datetime.now(timezone.utc),
            counts_json={},
        )
        db.session.add(run)
        db.session.commit()
        return run.id

    def _checkpoint(self, run_id: int, phase: str, summaries: list[PhaseSummary]) -> None:
        run = db.session.get(SyncRun, run_id)
        if run is None:
            return
        run.current_phase = phase
        run.counts_json = _counts_payload(summaries)
        db.session.commit()

    def _close_run(self, run_id: int, status: SyncRunStatus, summaries: list[PhaseSummary]) -> None:
        run = db.session.get(SyncRun, run_id)
        if run is None:
            return
        run.status = status
        run.current_phase = None
        run.finished_at = datetime.now(timezone.utc)
        run.counts_json = _counts_payload(summaries)
        db.session.commit()

    def _record_failure(self, run_id: int | None, failure: PhaseFailure, summaries: list[PhaseSummary]) -> None:
        self.store.rollback()
        self.status.complete_sync(False, failure.root_message)
        record_run("failed")
        if run_id is None:
            return
        try:
            recovery_run = db.session.get(SyncRun, run_id)
            if recovery_run is None:
                return
            recovery_run.status = SyncRunStatus.FAILED
            recovery_run.current_phase = failure.phase
            recovery_run.error_summary = failure.root_message
            recovery_run.finished_at = datetime.now(timezone.utc)
            recovery_run.counts_json = _counts_payload(summaries)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception(
                "Could not record failure on sync run %s",
                run_id,
                extra={"sync_run_id": run_id},
            )


def _counts_payload(summaries: list[PhaseSummary]) -> dict[str, dict[str, object]]:
    return {summary.phase: summary.to_dict() for summary in summaries}
