"""
Utility helpers for legacy sync feature flag checks.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_legacy_sync_enabled(app=None) -> bool:
    """Return True when the legacy sync feature flag is enabled."""
    return bool(_get_config(app).get("LEGACY_SYNC_ENABLED", True))


def is_diagnostics_phase_enabled(app=None) -> bool:
    return bool(_get_config(app).get("LEGACY_SYNC_DIAGNOSTICS_ENABLED", False))


def get_batch_size(app=None) -> int:
    """Configured write batch size, never below 1."""
    raw = _get_config(app).get("LEGACY_SYNC_BATCH_SIZE", 1000)
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return 1000
