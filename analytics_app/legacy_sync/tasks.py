"""
Legacy sync Celery tasks.

The scheduled task runs the pipeline inline inside the worker process; it is
admitted or rejected by that process's ``SyncStatus`` exactly like a manual
trigger.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from analytics_app.models import SyncTrigger

from .celery_app import HEALTHCHECK_TASK_NAME, SCHEDULED_TASK_NAME
from .errors import TriggerResult


@shared_task(name=HEALTHCHECK_TASK_NAME, bind=True)
def legacy_sync_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by worker health checks."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name=SCHEDULED_TASK_NAME, bind=True)
def scheduled_sync(self) -> dict[str, Any]:
    """
    Daily tick: attempt a full sync.

    A ``PhaseFailure`` propagates so the worker marks the task failed; there
    is no automatic retry, the next tick simply tries again.
    """
    from analytics_app.legacy_sync import get_dispatcher

    dispatcher = get_dispatcher(current_app)
    outcome = dispatcher.run_inline(SyncTrigger.SCHEDULED.value)
    if outcome is None:
        current_app.logger.info(
            "Scheduled legacy sync skipped; a run is already in progress.",
            extra={"sync_trigger": SyncTrigger.SCHEDULED.value},
        )
        return {"status": TriggerResult.REJECTED.value}

    payload = {"status": TriggerResult.ACCEPTED.value}
    payload.update(outcome.to_dict())
    return payload
