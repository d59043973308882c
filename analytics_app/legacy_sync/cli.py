"""
Operator commands for the legacy sync (``flask legacy-sync ...``).
"""

from __future__ import annotations

import json
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from analytics_app.models import SyncTrigger
from analytics_app.utils.legacy_sync import is_legacy_sync_enabled

from .celery_app import DEFAULT_QUEUE_NAME, HEALTHCHECK_TASK_NAME
from .errors import PhaseFailure
from .orchestrator import SyncRunOutcome
from .run_service import MAX_LIMIT, SyncRunService


def _load_app(ctx):
    info = ctx.ensure_object(ScriptInfo)
    return info.load_app()


def _state(app) -> dict:
    state = app.extensions.get("legacy_sync")
    if not state:
        raise click.ClickException("Legacy sync extension is not initialised.")
    return state


@click.group(name="legacy-sync")
@click.pass_context
def legacy_sync_cli(ctx):
    """Legacy database synchronization commands."""
    app = _load_app(ctx)
    if not is_legacy_sync_enabled(app):
        raise click.ClickException("Legacy sync is disabled via LEGACY_SYNC_ENABLED=false.")


def get_disabled_legacy_sync_group() -> click.Group:
    @click.group(name="legacy-sync", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Legacy sync commands are unavailable because LEGACY_SYNC_ENABLED=false.")

    return disabled_group


def _format_outcome(outcome: SyncRunOutcome) -> str:
    lines = [f"Sync run {outcome.run_id} succeeded."]
    for summary in outcome.summaries:
        lines.append(
            f"  {summary.phase:<20}: read={summary.rows_read} inserted={summary.rows_inserted} "
            f"updated={summary.rows_updated} skipped={summary.rows_skipped} batches={summary.batches}"
        )
    return "\n".join(lines)


@legacy_sync_cli.command("run")
@click.option("--summary-json", is_flag=True, help="Emit the run summary as JSON.")
@click.pass_context
def legacy_sync_run(ctx, summary_json: bool):
    """Run the full sync synchronously in this process."""
    app = _load_app(ctx)
    dispatcher = _state(app)["dispatcher"]
    try:
        outcome = dispatcher.run_inline(SyncTrigger.CLI.value)
    except PhaseFailure as failure:
        raise click.ClickException(
            f"Sync run {failure.run_id} failed in {failure.phase}: {failure.root_message}"
        ) from failure

    if outcome is None:
        raise click.ClickException("A sync is already in progress.")
    if summary_json:
        click.echo(json.dumps(outcome.to_dict(), indent=2, sort_keys=True))
    else:
        click.echo(_format_outcome(outcome))


@legacy_sync_cli.command("status")
@click.pass_context
def legacy_sync_status(ctx):
    """Print the in-process status snapshot as JSON."""
    app = _load_app(ctx)
    snapshot = _state(app)["status"].snapshot()
    click.echo(json.dumps(snapshot.as_dict(), indent=2))


@legacy_sync_cli.command("history")
@click.option("--limit", default=10, show_default=True, type=click.IntRange(1, MAX_LIMIT))
@click.pass_context
def legacy_sync_history(ctx, limit: int):
    """List recent sync runs, newest first."""
    app = _load_app(ctx)
    with app.app_context():
        service = SyncRunService()
        runs = [service.serialize(run) for run in service.list_recent(limit)]
    if not runs:
        click.echo("No sync runs recorded.")
        return
    click.echo(json.dumps(runs, indent=2))


def _resolve_celery(app) -> Celery:
    celery_app: Optional[Celery] = _state(app).get("celery_app")
    if celery_app is None:
        raise click.ClickException("Legacy sync Celery app is unavailable.")
    return celery_app


@legacy_sync_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the scheduled sync worker."""
    app = _load_app(ctx)
    if not app.config.get("LEGACY_SYNC_WORKER_ENABLED"):
        click.echo(
            "Warning: LEGACY_SYNC_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--beat/--no-beat", default=True, show_default=True, help="Embed the beat scheduler in the worker.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.pass_context
def worker_run(ctx, loglevel: str, beat: bool, pool: Optional[str]):
    """Start the Celery worker (and by default the daily schedule) in this process."""
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    _state(app)["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", DEFAULT_QUEUE_NAME, "--concurrency", "1"]
    if beat:
        argv.append("--beat")
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting legacy sync worker (queue: {DEFAULT_QUEUE_NAME}, beat: {beat}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get(HEALTHCHECK_TASK_NAME)
    if task is None:
        raise click.ClickException(f"Heartbeat task '{HEALTHCHECK_TASK_NAME}' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc

    click.echo(json.dumps(payload, indent=2))
