"""
Legacy sync feature package.

``init_legacy_sync`` creates the per-application ``SyncStatus`` and
``SyncDispatcher``, mounts the blueprint and CLI, and configures the Celery
worker that owns the daily schedule. Everything is stored under
``app.extensions['legacy_sync']`` and handed to consumers from there.
"""

from __future__ import annotations

from typing import Any

from flask import Flask
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from analytics_app.utils.legacy_sync import get_batch_size, is_diagnostics_phase_enabled, is_legacy_sync_enabled

from .celery_app import ensure_celery_app
from .cli import get_disabled_legacy_sync_group, legacy_sync_cli
from .destination import DestinationStore
from .dispatcher import SyncDispatcher
from .errors import LegacySyncError, PhaseFailure, SkippedRow, TriggerResult
from .orchestrator import SyncOrchestrator, SyncRunOutcome
from .run_service import SyncRunService
from .source import LegacySourceStore, create_legacy_engine
from .status import SyncState, SyncStatus, SyncStatusSnapshot
from .views import legacy_sync_blueprint

LEGACY_SYNC_EXTENSION_KEY = "legacy_sync"

__all__ = [
    "init_legacy_sync",
    "LEGACY_SYNC_EXTENSION_KEY",
    "build_orchestrator",
    "get_dispatcher",
    "get_legacy_engine",
    "get_status",
    "restore_from_history",
    "LegacySyncError",
    "PhaseFailure",
    "SkippedRow",
    "TriggerResult",
    "SyncOrchestrator",
    "SyncRunOutcome",
    "SyncRunService",
    "SyncState",
    "SyncStatus",
    "SyncStatusSnapshot",
]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        LEGACY_SYNC_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "diagnostics_enabled": False,
            "status": None,
            "dispatcher": None,
            "celery_app": None,
            "legacy_engine": None,
            "legacy_engine_uri": None,
        },
    )


def get_legacy_engine(app: Flask) -> Engine:
    """Return the cached legacy engine, rebuilding it if the URI changed."""
    state = _ensure_extension_state(app)
    uri = app.config.get("LEGACY_DATABASE_URI")
    engine: Engine | None = state.get("legacy_engine")
    if engine is None or state.get("legacy_engine_uri") != uri:
        if engine is not None:
            engine.dispose()
        options = dict(app.config.get("LEGACY_ENGINE_OPTIONS") or {})
        engine = create_legacy_engine(uri, **options)
        state["legacy_engine"] = engine
        state["legacy_engine_uri"] = uri
    return engine


def get_status(app: Flask) -> SyncStatus:
    state = _ensure_extension_state(app)
    if state["status"] is None:
        state["status"] = SyncStatus()
    return state["status"]


def build_orchestrator(app: Flask) -> SyncOrchestrator:
    """Assemble an orchestrator from current configuration (needs an app context)."""
    return SyncOrchestrator(
        status=get_status(app),
        source=LegacySourceStore(get_legacy_engine(app)),
        store=DestinationStore(),
        batch_size=get_batch_size(app),
        diagnostics_enabled=is_diagnostics_phase_enabled(app),
    )


def get_dispatcher(app: Flask) -> SyncDispatcher:
    state = _ensure_extension_state(app)
    if state["dispatcher"] is None:
        real_app = app._get_current_object() if hasattr(app, "_get_current_object") else app
        state["dispatcher"] = SyncDispatcher(real_app, get_status(app), build_orchestrator)
    return state["dispatcher"]


def restore_from_history(app: Flask) -> None:
    """Seed ``last_completed_at`` from the newest succeeded ``SyncRun``."""
    status = get_status(app)
    with app.app_context():
        try:
            latest = SyncRunService().latest_completed()
        except SQLAlchemyError:
            # Tables are created after extensions initialise on a fresh database.
            app.logger.debug("Sync run history unavailable; last sync date not restored.", exc_info=True)
            return
        if latest is not None:
            status.restore_last_completed(latest.finished_at)


def _set_cli(app: Flask, enabled: bool) -> None:
    command_name = legacy_sync_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(legacy_sync_cli)
    else:
        app.cli.add_command(get_disabled_legacy_sync_group())


def init_legacy_sync(app: Flask) -> None:
    """
    Conditionally mount the legacy sync blueprint, CLI and worker.

    Safe to call more than once; the status object and dispatcher are created
    only on the first call.
    """
    enabled = is_legacy_sync_enabled(app)
    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "worker_enabled": bool(app.config.get("LEGACY_SYNC_WORKER_ENABLED", False)),
            "diagnostics_enabled": is_diagnostics_phase_enabled(app),
        }
    )
    get_dispatcher(app)

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Legacy sync disabled via LEGACY_SYNC_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)
    restore_from_history(app)

    if legacy_sync_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(legacy_sync_blueprint)
    elif legacy_sync_blueprint.name not in app.blueprints:
        app.logger.warning(
            "Legacy sync blueprint registration skipped because the app has already handled its first request."
        )
    _set_cli(app, enabled=True)

    app.logger.info(
        "Legacy sync enabled",
        extra={
            "sync_batch_size": get_batch_size(app),
            "sync_diagnostics_enabled": state["diagnostics_enabled"],
            "sync_worker_enabled": state["worker_enabled"],
        },
    )
