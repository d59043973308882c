# conftest.py

import os
import shutil
import tempfile

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig.
# Both databases are files so the background sync thread shares the test's data.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="analytics-tests-")
os.environ["FLASK_ENV"] = "testing"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'analytics.db')}"
os.environ["TEST_LEGACY_DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'legacy.db')}"

from app import app as flask_app  # noqa: E402
from analytics_app.legacy_sync import LEGACY_SYNC_EXTENSION_KEY, get_dispatcher, get_legacy_engine  # noqa: E402
from analytics_app.legacy_sync.source import (  # noqa: E402
    clients_view,
    course_details_view,
    legacy_metadata,
    sales_view,
    seed_legacy_rows,
    students_view,
)
from analytics_app.models import db  # noqa: E402


def _reset_sync_state(app):
    """Give every test a fresh SyncStatus and dispatcher."""
    state = app.extensions[LEGACY_SYNC_EXTENSION_KEY]
    dispatcher = state.get("dispatcher")
    if dispatcher is not None:
        dispatcher.shutdown(wait=True)
    state["status"] = None
    state["dispatcher"] = None
    get_dispatcher(app)


@pytest.fixture(scope="session", autouse=True)
def _cleanup_test_databases():
    yield
    engine = flask_app.extensions[LEGACY_SYNC_EXTENSION_KEY].get("legacy_engine")
    if engine is not None:
        engine.dispose()
    shutil.rmtree(_TEST_DB_DIR, ignore_errors=True)


@pytest.fixture(scope="function")
def app(tmp_path):
    """Create and configure a test Flask application"""
    original_config = dict(flask_app.config)
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "DEBUG",
            "LEGACY_SYNC_ENABLED": True,
            "LEGACY_SYNC_BATCH_SIZE": 1000,
            "LEGACY_SYNC_DIAGNOSTICS_ENABLED": False,
            "LEGACY_SYNC_WORKER_ENABLED": False,
            "CELERY_SQLITE_PATH": str(tmp_path / "celery.sqlite"),
        }
    )

    from analytics_app.utils.logging_config import setup_logging

    setup_logging(flask_app)
    _reset_sync_state(flask_app)

    legacy_engine = get_legacy_engine(flask_app)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        legacy_metadata.drop_all(legacy_engine)
        legacy_metadata.create_all(legacy_engine)
        yield flask_app
        flask_app.extensions[LEGACY_SYNC_EXTENSION_KEY]["dispatcher"].shutdown(wait=True)
        db.session.remove()
        db.drop_all()
        legacy_metadata.drop_all(legacy_engine)
    flask_app.config.clear()
    flask_app.config.update(original_config)


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def legacy_engine(app):
    return get_legacy_engine(app)


@pytest.fixture
def legacy_data(legacy_engine):
    """Insert rows into the legacy views; keyword per view, lists of column dicts."""

    tables = {
        "clients": clients_view,
        "students": students_view,
        "sales": sales_view,
        "course_details": course_details_view,
    }

    def _seed(**rows_by_view):
        for name, rows in rows_by_view.items():
            table = tables[name] if name in tables else legacy_metadata.tables[name]
            seed_legacy_rows(legacy_engine, table, rows)

    return _seed
