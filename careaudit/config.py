"""
Care Audit Service
Settings per environment, selected by APP_ENV.

    app.config.from_object(config[os.getenv("APP_ENV", "development")])

ProductionConfig must be instantiated so its required-variable check runs.
"""

import os
import secrets

_ROOT = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
_LOCAL_SQLITE = "sqlite:///" + os.path.join(_ROOT, "instance", "careaudit_dev.db")


def _database_url(default=None):
    """DATABASE_URL with the legacy ``postgres://`` scheme normalised."""
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return default
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def _int_env(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    # Audit engine
    AUDIT_COMPLETED_HISTORY_LIMIT = _int_env("AUDIT_COMPLETED_HISTORY_LIMIT", 10)
    AUDIT_UPCOMING_WINDOW_DAYS = _int_env("AUDIT_UPCOMING_WINDOW_DAYS", 7)
    AUDIT_STALE_DRAFT_DAYS = _int_env("AUDIT_STALE_DRAFT_DAYS", 30)
    ACTION_PLAN_ARCHIVE_AFTER_DAYS = _int_env("ACTION_PLAN_ARCHIVE_AFTER_DAYS", 90)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_LOCAL_SQLITE)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    # no wildcard default outside development
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": _int_env("DB_POOL_SIZE", 5),
        "max_overflow": _int_env("DB_MAX_OVERFLOW", 10),
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name, value in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"Missing required production settings: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
