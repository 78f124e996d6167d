"""
KPI Portal
Configuration classes for the application factory.

Selected by APP_ENV (development | testing | production):

    app.config.from_object(config[os.getenv("APP_ENV", "development")])

State store settings:
    STATE_BACKEND       sql (default) | file | memory
    STATE_KEY           logical key of the persisted document
    STATE_FILE_PATH     JSON document for the file backend
    TASK_DUE_SOON_DAYS  window of the due-date scan
"""

import os
import secrets

INSTANCE_DIR = os.path.join(os.path.abspath(os.path.dirname(os.path.dirname(__file__))), "instance")


def _database_url(env_var: str, fallback: str | None) -> str | None:
    """Read a database URL, normalising the ``postgres://`` scheme some hosts still hand out."""
    url = os.getenv(env_var, "")
    if not url:
        return fallback
    return url.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    STATE_BACKEND = os.getenv("STATE_BACKEND", "sql")
    STATE_KEY = os.getenv("STATE_KEY", "kpi-portal-state-v1")
    STATE_FILE_PATH = os.getenv("STATE_FILE_PATH", os.path.join(INSTANCE_DIR, "kpi_portal_state.json"))
    TASK_DUE_SOON_DAYS = int(os.getenv("TASK_DUE_SOON_DAYS", "2"))

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        "DATABASE_URL", f"sqlite:///{os.path.join(INSTANCE_DIR, 'kpi_portal_dev.db')}"
    )


class TestingConfig(Config):
    """In-memory SQLite; each test recreates the ``state_documents`` table."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL", "sqlite:///:memory:")
    STATE_BACKEND = "sql"
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "readable"


class ProductionConfig(Config):
    """Instantiated (not just referenced) so missing settings fail at startup."""

    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL", None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
    }

    def __init__(self):
        missing = [name for name in ("SECRET_KEY", "DATABASE_URL") if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Required in production: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
