"""
GRC Compliance Tracker
Flask Application Factory.

Usage:
    from grc import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from grc.config import config
from grc.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from grc.middleware.logging_config import configure_logging
from grc.middleware.rate_limiter import init_rate_limits, tenant_rate_limit_key
from grc.middleware.tenant_context import init_tenant_context
from grc.middleware.timing import init_request_timing
from grc.models import db
from grc.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=tenant_rate_limit_key,
    default_limits=[],                     # no global limit: apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _import_models():
    """Register every table on db.metadata (create_all / Alembic autogenerate)."""
    from grc.models import action_plan, audit, auth, compliance, risk  # noqa: F401


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    _import_models()
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing → tenant context → route ──────────────────────────
    init_request_timing(app)
    init_tenant_context(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Blueprints ───────────────────────────────────────────────────────
    from grc.blueprints.action_plan_bp import action_plan_bp
    from grc.blueprints.compliance_bp import compliance_bp
    from grc.blueprints.risk_bp import risk_bp

    app.register_blueprint(compliance_bp)
    app.register_blueprint(risk_bp)
    app.register_blueprint(action_plan_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("init-db")
    def init_db_cmd():
        """Create all tables and indexes (idempotent)."""
        db.create_all()
        click.echo("Database schema is up to date.")

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "GRC Compliance Tracker"}

    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    if app.config.get("AUTO_CREATE_SCHEMA"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    return app


def _register_error_handlers(app):
    """Map service exceptions to JSON responses; every handler rolls back first."""

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc):
        db.session.rollback()
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(ValidationError)
    def handle_validation(exc):
        db.session.rollback()
        code = E.VALIDATION_REQUIRED if "required" in exc.details.values() else E.VALIDATION_INVALID
        return api_error(code, str(exc), details=exc.details)

    @app.errorhandler(InvalidTransitionError)
    def handle_invalid_transition(exc):
        db.session.rollback()
        return api_error(E.INVALID_TRANSITION, str(exc), details={
            "current_status": exc.current_status,
            "target_status": exc.target_status,
        })

    @app.errorhandler(InvariantViolationError)
    def handle_invariant(exc):
        db.session.rollback()
        logger.warning("Invariant violation: %s", exc)
        return api_error(E.INVARIANT, str(exc), details={
            "origin_type": exc.origin_type,
            "origin_id": exc.origin_id,
            "open_plan_id": exc.open_plan_id,
        })

    @app.errorhandler(ConflictError)
    def handle_conflict(exc):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={exc.field: exc.value})

    @app.errorhandler(IntegrityError)
    def handle_integrity(exc):
        db.session.rollback()
        logger.warning("Integrity error: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Conflicts with existing data")

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(exc):
        db.session.rollback()
        logger.error("Database error", exc_info=True)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
