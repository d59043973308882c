"""
Legacy sync blueprint: trigger, status polling, run history and health.
"""

from __future__ import annotations

import time
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request

from config.monitoring import SyncMonitoring

from .errors import TriggerResult
from .run_service import SyncRunService, coerce_limit

legacy_sync_blueprint = Blueprint("legacy_sync", __name__, url_prefix="/api/sync")

TRIGGER_ACCEPTED_MESSAGE = "Sync started"
TRIGGER_REJECTED_MESSAGE = "A sync is already in progress"


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


def _state() -> dict:
    return current_app.extensions.get("legacy_sync", {})


@legacy_sync_blueprint.post("/trigger")
def trigger_sync():
    """Start a background sync; 409 when one is already running."""
    dispatcher = _state().get("dispatcher")
    if dispatcher is None:
        return _json_error("Legacy sync is not configured.", HTTPStatus.SERVICE_UNAVAILABLE)

    result = dispatcher.trigger()
    SyncMonitoring.record_trigger(status=result.value)
    if result is TriggerResult.REJECTED:
        return (
            jsonify({"message": TRIGGER_REJECTED_MESSAGE, "status": result.value}),
            HTTPStatus.CONFLICT,
        )

    current_app.logger.info(
        "Legacy sync triggered via API",
        extra={"sync_trigger": "manual", "remote_addr": request.remote_addr},
    )
    return jsonify({"message": TRIGGER_ACCEPTED_MESSAGE, "status": result.value}), HTTPStatus.ACCEPTED


@legacy_sync_blueprint.get("/status")
def sync_status():
    status = _state().get("status")
    if status is None:
        return _json_error("Legacy sync is not configured.", HTTPStatus.SERVICE_UNAVAILABLE)
    return jsonify(status.snapshot().as_dict()), HTTPStatus.OK


@legacy_sync_blueprint.get("/runs")
def sync_runs():
    try:
        limit = coerce_limit(request.args.get("limit"))
    except ValueError as exc:
        SyncMonitoring.record_runs_list(duration_seconds=0.0, status="invalid_request")
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    start_time = time.perf_counter()
    service = SyncRunService()
    runs = service.list_recent(limit)
    SyncMonitoring.record_runs_list(duration_seconds=time.perf_counter() - start_time, status="success")
    return jsonify({"runs": [service.serialize(run) for run in runs], "limit": limit}), HTTPStatus.OK


@legacy_sync_blueprint.get("/health")
def sync_health():
    state = _state()
    status = state.get("status")
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": state.get("enabled", False),
                "worker_enabled": state.get("worker_enabled", False),
                "diagnostics_enabled": state.get("diagnostics_enabled", False),
                "state": status.snapshot().state.value if status else None,
            }
        ),
        HTTPStatus.OK,
    )
