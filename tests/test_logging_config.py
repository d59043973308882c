import json
import logging
import sys

from flask import Flask

from analytics_app.utils.logging_config import PACKAGE_LOGGER_NAME, JSONFormatter, setup_logging


def _make_record(**extra):
    record = logging.LogRecord(
        name="analytics_app.legacy_sync.phases",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="customers: skipped source row %s: %s",
        args=("17", "blank_key"),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_formats_message_and_extra_fields(self):
        record = _make_record(sync_phase="customers", sync_skip_reason="blank_key")

        payload = json.loads(JSONFormatter().format(record))

        assert payload["level"] == "WARNING"
        assert payload["logger"] == "analytics_app.legacy_sync.phases"
        assert payload["message"] == "customers: skipped source row 17: blank_key"
        assert payload["sync_phase"] == "customers"
        assert payload["sync_skip_reason"] == "blank_key"
        assert "timestamp" in payload
        assert "args" not in payload

    def test_includes_exception_text(self):
        try:
            raise ValueError("bad row")
        except ValueError:
            record = _make_record()
            record.exc_info = sys.exc_info()

        payload = json.loads(JSONFormatter().format(record))

        assert "ValueError: bad row" in payload["exception"]

    def test_non_serializable_extra_is_stringified(self):
        record = _make_record(sync_counts={1, 2})

        payload = json.loads(JSONFormatter().format(record))

        assert isinstance(payload["sync_counts"], str)


class TestSetupLogging:
    def _app(self, tmp_path, **config):
        app = Flask("logging_test")
        app.config.update(
            LOG_LEVEL="INFO",
            LOG_FORMAT="json",
            LOG_DIR=str(tmp_path / "logs"),
            ENABLE_CONSOLE_LOGGING=True,
            ENABLE_FILE_LOGGING=True,
        )
        app.config.update(config)
        return app

    def _installed(self, logger):
        return [handler for handler in logger.handlers if getattr(handler, "_analytics_app_handler", False)]

    def test_installs_console_and_file_handlers(self, tmp_path):
        app = self._app(tmp_path)

        setup_logging(app)

        try:
            handlers = self._installed(app.logger)
            assert {type(handler).__name__ for handler in handlers} == {"StreamHandler", "RotatingFileHandler"}
            assert (tmp_path / "logs").is_dir()
            assert logging.getLogger(PACKAGE_LOGGER_NAME).propagate is False
        finally:
            setup_logging(self._app(tmp_path, ENABLE_CONSOLE_LOGGING=False, ENABLE_FILE_LOGGING=False))

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        app = self._app(tmp_path, ENABLE_FILE_LOGGING=False)

        setup_logging(app)
        setup_logging(app)

        try:
            assert len(self._installed(app.logger)) == 1
            assert len(self._installed(logging.getLogger(PACKAGE_LOGGER_NAME))) == 1
        finally:
            setup_logging(self._app(tmp_path, ENABLE_CONSOLE_LOGGING=False, ENABLE_FILE_LOGGING=False))

    def test_disabled_handlers_propagate_to_root(self, tmp_path):
        setup_logging(self._app(tmp_path, ENABLE_CONSOLE_LOGGING=False, ENABLE_FILE_LOGGING=False))

        assert logging.getLogger(PACKAGE_LOGGER_NAME).propagate is True
