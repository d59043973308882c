"""
Application logging setup.

Installs console and rotating-file handlers on the Flask app logger and on the
``analytics_app`` logger hierarchy, formatting records either as single-line
JSON (production) or human-readable text. Calling ``setup_logging`` again
replaces the handlers it installed previously.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, timezone

from flask.logging import default_handler

_HANDLER_MARKER = "_analytics_app_handler"
PACKAGE_LOGGER_NAME = "analytics_app"

# Attributes present on every LogRecord; anything else came in via ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys() | {"message", "asctime"}
)


class JSONFormatter(logging.Formatter):
    """Render a record and its ``extra`` fields as one JSON object."""

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s [%(name)s] %(message)s")


def _build_formatter(log_format):
    if str(log_format).lower() == "json":
        return JSONFormatter()
    return TextFormatter()


def _remove_installed_handlers(logger):
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(app):
    """Configure handlers for ``app.logger`` and the package loggers from app config."""
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(app.config.get("LOG_FORMAT", "json"))

    handlers = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler())
    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)

    # Flask's default stderr handler is replaced by the handlers below.
    app.logger.removeHandler(default_handler)
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    for logger in (app.logger, package_logger):
        _remove_installed_handlers(logger)
        logger.setLevel(level)
        for handler in handlers:
            logger.addHandler(handler)
        # Records must not be emitted twice via the root logger.
        logger.propagate = not handlers

    app.logger.debug(
        "Logging configured",
        extra={"log_level": level_name, "log_handlers": [type(h).__name__ for h in handlers]},
    )
