# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """Parse an integer setting, falling back to ``default`` when invalid or out of range."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return default
    if maximum is not None and number > maximum:
        return default
    return number


def _normalize_database_url(uri):
    if uri and uri.startswith("postgres://"):
        return uri.replace("postgres://", "postgresql://", 1)
    return uri


class Config:
    # SECRET_KEY must be set via environment variable in production.
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Read-only legacy database the sync copies from
    LEGACY_DATABASE_URI = _normalize_database_url(os.environ.get("LEGACY_DATABASE_URL"))
    LEGACY_ENGINE_OPTIONS = {}

    # Legacy sync configuration
    LEGACY_SYNC_ENABLED = _coerce_bool(os.environ.get("LEGACY_SYNC_ENABLED"), default=True)
    LEGACY_SYNC_BATCH_SIZE = _coerce_int(os.environ.get("LEGACY_SYNC_BATCH_SIZE"), 1000, minimum=1)
    # The diagnostics view lacks stable identifiers; keep the phase off unless asked for.
    LEGACY_SYNC_DIAGNOSTICS_ENABLED = _coerce_bool(
        os.environ.get("LEGACY_SYNC_DIAGNOSTICS_ENABLED"),
        default=False,
    )
    LEGACY_SYNC_SCHEDULE_HOUR = _coerce_int(os.environ.get("LEGACY_SYNC_SCHEDULE_HOUR"), 2, minimum=0, maximum=23)
    LEGACY_SYNC_SCHEDULE_MINUTE = _coerce_int(
        os.environ.get("LEGACY_SYNC_SCHEDULE_MINUTE"), 0, minimum=0, maximum=59
    )
    LEGACY_SYNC_TIMEZONE = os.environ.get("LEGACY_SYNC_TIMEZONE", "America/Santiago")
    LEGACY_SYNC_TASK_TIME_LIMIT = _coerce_int(os.environ.get("LEGACY_SYNC_TASK_TIME_LIMIT"), 2 * 60 * 60, minimum=60)

    LEGACY_SYNC_WORKER_ENABLED = _coerce_bool(os.environ.get("LEGACY_SYNC_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes, including on Windows
    db_path_normalized = os.path.join(instance_path, "analytics_dev.db").replace("\\", "/")
    legacy_path_normalized = os.path.join(instance_path, "legacy_dev.db").replace("\\", "/")

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", f"sqlite:///{db_path_normalized}")
    LEGACY_DATABASE_URI = _normalize_database_url(
        os.environ.get("LEGACY_DATABASE_URL", f"sqlite:///{legacy_path_normalized}")
    )
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    # File-backed databases let the background sync thread see the test's data
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    LEGACY_DATABASE_URI = os.environ.get("TEST_LEGACY_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    LEGACY_SYNC_ENABLED = True
    LEGACY_SYNC_WORKER_ENABLED = False
    LEGACY_SYNC_DIAGNOSTICS_ENABLED = False
    LEGACY_SYNC_BATCH_SIZE = 1000


class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(os.environ.get("DATABASE_URL"))
    SQLALCHEMY_ECHO = False
