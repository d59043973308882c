import json
from typing import Any, Dict

from sqlalchemy import select

from analytics_app.legacy_sync import LEGACY_SYNC_EXTENSION_KEY
from analytics_app.legacy_sync.celery_app import DEFAULT_QUEUE_NAME, create_celery_app
from analytics_app.legacy_sync.source import LegacySourceStore
from analytics_app.models import SyncRun, SyncRunStatus, db

from legacy_rows import client_row


def test_run_command_prints_phase_summary(runner, legacy_data):
    legacy_data(clients=[client_row(1, "ana@example.com"), client_row(2, "bob@example.com")])

    result = runner.invoke(args=["legacy-sync", "run"])

    assert result.exit_code == 0, result.output
    assert "succeeded" in result.output
    assert "customers" in result.output
    assert "inserted=2" in result.output
    run = db.session.scalars(select(SyncRun)).one()
    assert run.trigger == "cli"
    assert run.status == SyncRunStatus.SUCCEEDED


def test_run_command_summary_json(runner, legacy_data):
    legacy_data(clients=[client_row(1, "ana@example.com")])

    result = runner.invoke(args=["legacy-sync", "run", "--summary-json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["succeeded"] is True
    assert payload["phases"]["customers"]["rows_inserted"] == 1


def test_run_command_reports_failure(runner, monkeypatch):
    def broken(self):
        raise RuntimeError("legacy view missing")

    monkeypatch.setattr(LegacySourceStore, "fetch_clients", broken)

    result = runner.invoke(args=["legacy-sync", "run"])

    assert result.exit_code == 1
    assert "failed in customers" in result.output
    assert "legacy view missing" in result.output


def test_run_command_rejected_while_running(runner, sync_status):
    sync_status.start_sync()

    result = runner.invoke(args=["legacy-sync", "run"])

    assert result.exit_code == 1
    assert "already in progress" in result.output


def test_status_command_outputs_snapshot(runner, sync_status):
    sync_status.start_sync()
    sync_status.update_progress("customers", 10, "Syncing customers...")

    result = runner.invoke(args=["legacy-sync", "status"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["isRunning"] is True
    assert payload["currentStep"] == "customers"
    assert payload["progress"] == 10


def test_history_command(runner):
    empty = runner.invoke(args=["legacy-sync", "history"])
    assert empty.exit_code == 0, empty.output
    assert "No sync runs recorded." in empty.output

    runner.invoke(args=["legacy-sync", "run"])
    result = runner.invoke(args=["legacy-sync", "history", "--limit", "5"])

    assert result.exit_code == 0, result.output
    runs = json.loads(result.output)
    assert len(runs) == 1
    assert runs[0]["status"] == "succeeded"
    assert runs[0]["trigger"] == "cli"


def test_history_rejects_out_of_range_limit(runner):
    result = runner.invoke(args=["legacy-sync", "history", "--limit", "0"])
    assert result.exit_code == 2


def test_commands_refuse_when_disabled(app, runner):
    app.config["LEGACY_SYNC_ENABLED"] = False

    result = runner.invoke(args=["legacy-sync", "status"])

    assert result.exit_code == 1
    assert "disabled" in result.output


def test_worker_run_invokes_celery(app, runner, monkeypatch):
    celery_app = app.extensions[LEGACY_SYNC_EXTENSION_KEY]["celery_app"]
    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    result = runner.invoke(args=["legacy-sync", "worker", "run", "--loglevel", "debug", "--pool", "solo"])

    assert result.exit_code == 0, result.output
    argv = calls["argv"]
    assert argv[:3] == ["worker", "--loglevel", "debug"]
    assert ["-Q", DEFAULT_QUEUE_NAME] == argv[3:5]
    assert "--beat" in argv
    assert argv[-2:] == ["--pool", "solo"]


def test_worker_run_without_beat(app, runner, monkeypatch):
    celery_app = app.extensions[LEGACY_SYNC_EXTENSION_KEY]["celery_app"]
    calls: Dict[str, Any] = {}
    monkeypatch.setattr(celery_app, "worker_main", lambda argv=None: calls.setdefault("argv", argv))

    result = runner.invoke(args=["legacy-sync", "worker", "run", "--no-beat"])

    assert result.exit_code == 0, result.output
    assert "--beat" not in calls["argv"]


def test_worker_ping_cli(app, runner, monkeypatch):
    app.config["CELERY_CONFIG"] = {"task_always_eager": True, "task_eager_propagates": True}
    monkeypatch.setitem(app.extensions[LEGACY_SYNC_EXTENSION_KEY], "celery_app", create_celery_app(app))

    result = runner.invoke(args=["legacy-sync", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output[result.output.index("{") :])
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert "worker_hostname" in payload
