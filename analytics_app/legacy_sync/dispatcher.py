"""
Fire-and-forget execution of legacy sync runs.

HTTP triggers hand the run to a single background worker thread and return
immediately; the shared ``SyncStatus`` is the only channel for observing the
run afterwards. CLI and Celery callers use ``run_inline`` instead.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from flask import Flask

from analytics_app.models import SyncTrigger

from .errors import PhaseFailure, TriggerResult
from .orchestrator import SyncOrchestrator, SyncRunOutcome
from .status import SyncStatus

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[Flask], SyncOrchestrator]


class SyncDispatcher:
    def __init__(self, app: Flask, status: SyncStatus, orchestrator_factory: OrchestratorFactory):
        self.app = app
        self.status = status
        self._factory = orchestrator_factory
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._last_future: Future | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="legacy-sync")
            return self._executor

    def trigger(self, trigger: str = SyncTrigger.MANUAL.value) -> TriggerResult:
        """
        Start a run in the background unless one is already active.

        Admission happens here, before the run is queued, so the status
        reports ``isRunning`` as soon as the trigger is accepted and a second
        trigger is rejected even if the worker thread has not started yet.
        """
        if not self.status.start_sync():
            logger.info("Legacy sync trigger rejected; a run is in progress.", extra={"sync_trigger": trigger})
            return TriggerResult.REJECTED
        try:
            self._last_future = self._get_executor().submit(self._run_in_context, trigger)
        except RuntimeError as exc:
            self.status.complete_sync(False, str(exc))
            raise
        return TriggerResult.ACCEPTED

    def run_inline(self, trigger: str = SyncTrigger.CLI.value, *, admitted: bool = False) -> SyncRunOutcome | None:
        """Run synchronously in the caller's thread; ``None`` means rejected."""

        with self.app.app_context():
            return self._factory(self.app).run(trigger=trigger, admitted=admitted)

    def wait(self, timeout: float | None = None) -> SyncRunOutcome | None:
        """Block until the most recent background run finishes."""

        future = self._last_future
        if future is None:
            return None
        return future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _run_in_context(self, trigger: str) -> SyncRunOutcome | None:
        try:
            return self.run_inline(trigger, admitted=True)
        except PhaseFailure as failure:
            # Already logged and recorded by the orchestrator.
            return SyncRunOutcome(run_id=failure.run_id, succeeded=False, error=failure.root_message)
        finally:
            # Admission was taken in trigger(); release it if the run never got going.
            if self.status.is_running:
                self.status.complete_sync(False, "Synchronization could not be started")
