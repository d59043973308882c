"""
Shared, lock-protected descriptor of the current (or most recent) sync run.

Exactly one ``SyncStatus`` is created per application by ``init_legacy_sync``
and handed to every component that reads or mutates it. All field access
happens under ``self._lock``; the lock is never held while talking to a
database.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

START_MESSAGE = "Starting synchronization..."
SUCCESS_MESSAGE = "Synchronization completed successfully"
FAILURE_MESSAGE = "Synchronization failed"


class SyncState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class SyncStatusSnapshot:
    """Immutable copy of every ``SyncStatus`` field taken under the lock."""

    is_running: bool
    started_at: datetime | None
    last_completed_at: datetime | None
    current_phase: str
    progress: int
    message: str
    has_error: bool
    error_message: str | None
    state: SyncState

    def as_dict(self) -> dict[str, Any]:
        """Serialize using the keys the dashboard polls for."""

        return {
            "isRunning": self.is_running,
            "lastSyncDate": _isoformat(self.last_completed_at),
            "currentSyncStarted": _isoformat(self.started_at),
            "currentStep": self.current_phase,
            "progress": self.progress,
            "message": self.message,
            "hasError": self.has_error,
            "errorMessage": self.error_message,
        }


class SyncStatus:
    """Mutable run descriptor; see module docstring for the locking rules."""

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._is_running = False
        self._started_at: datetime | None = None
        self._last_completed_at: datetime | None = None
        self._current_phase = ""
        self._progress = 0
        self._message = ""
        self._has_error = False
        self._error_message: str | None = None
        self._finished_once = False

    def start_sync(self) -> bool:
        """
        Move to the running state.

        Returns ``False`` without touching any field when a run is already
        active, so the single-flight check and the transition are one atomic
        step.
        """
        now = self._clock()
        with self._lock:
            if self._is_running:
                return False
            self._is_running = True
            self._started_at = now
            self._current_phase = ""
            self._progress = 0
            self._has_error = False
            self._error_message = None
            self._message = START_MESSAGE
            return True

    def update_progress(self, phase: str, percent: int, message: str) -> None:
        with self._lock:
            self._current_phase = phase
            self._progress = int(percent)
            self._message = message

    def complete_sync(self, success: bool, error_message: str | None = None) -> None:
        now = self._clock()
        with self._lock:
            self._is_running = False
            self._started_at = None
            self._finished_once = True
            if success:
                self._progress = 100
                self._last_completed_at = now
                self._has_error = False
                self._error_message = None
                self._message = SUCCESS_MESSAGE
            else:
                self._has_error = True
                self._error_message = error_message
                self._message = FAILURE_MESSAGE

    def restore_last_completed(self, completed_at: datetime | None) -> None:
        """Seed ``last_completed_at`` from persisted history if still unset."""

        if completed_at is None:
            return
        with self._lock:
            if self._last_completed_at is None:
                self._last_completed_at = completed_at

    def snapshot(self) -> SyncStatusSnapshot:
        with self._lock:
            if self._is_running:
                state = SyncState.RUNNING
            elif not self._finished_once:
                state = SyncState.IDLE
            elif self._has_error:
                state = SyncState.FAILED
            else:
                state = SyncState.COMPLETED
            return SyncStatusSnapshot(
                is_running=self._is_running,
                started_at=self._started_at,
                last_completed_at=self._last_completed_at,
                current_phase=self._current_phase,
                progress=self._progress,
                message=self._message,
                has_error=self._has_error,
                error_message=self._error_message,
                state=state,
            )

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._is_running
