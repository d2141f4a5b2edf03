"""
GRC Compliance Tracker
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'grc_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)

_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,   # recycle connections every 5 min
    "pool_timeout": 20,    # wait max 20s for a connection from pool
}


def _database_url(default=None):
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Flask-Limiter
    RATELIMIT_ENABLED = os.getenv("RATELIMIT_ENABLED", "true").lower() == "true"

    # create_all() at startup; Alembic owns the schema everywhere else
    AUTO_CREATE_SCHEMA = False

    # Compliance engine tunables
    GRC_DEFAULT_WARNING_BUFFER = float(os.getenv("GRC_DEFAULT_WARNING_BUFFER", "0.05"))
    GRC_REVIEW_DUE_DAYS = _env_int("GRC_REVIEW_DUE_DAYS", 5)
    GRC_SUBMISSION_PLAN_DUE_DAYS = _env_int("GRC_SUBMISSION_PLAN_DUE_DAYS", 14)
    GRC_REVIEW_PLAN_DUE_DAYS = _env_int("GRC_REVIEW_PLAN_DUE_DAYS", 7)
    GRC_RISK_PLAN_DUE_DAYS = _env_int("GRC_RISK_PLAN_DUE_DAYS", 14)


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    AUTO_CREATE_SCHEMA = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)
    SQLALCHEMY_ENGINE_OPTIONS = _POOL_OPTIONS if _database_url() else {}


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    RATELIMIT_ENABLED = False
    GRC_DEFAULT_WARNING_BUFFER = 0.05
    GRC_REVIEW_DUE_DAYS = 5
    GRC_SUBMISSION_PLAN_DUE_DAYS = 14
    GRC_REVIEW_PLAN_DUE_DAYS = 7
    GRC_RISK_PLAN_DUE_DAYS = 14


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # PostgreSQL statement timeout on top of the pool options
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")
        if not 0 <= self.GRC_DEFAULT_WARNING_BUFFER <= 0.5:
            raise RuntimeError("GRC_DEFAULT_WARNING_BUFFER must be between 0 and 0.5")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
