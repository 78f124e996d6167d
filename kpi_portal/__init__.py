"""
KPI Portal
Flask Application Factory.

Usage:
    from kpi_portal import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError

from kpi_portal.auth import init_auth
from kpi_portal.config import config
from kpi_portal.middleware.logging_config import configure_logging
from kpi_portal.middleware.timing import init_request_timing
from kpi_portal.models import db
from kpi_portal.services.portal import get_portal, init_portal
from kpi_portal.utils.errors import HANDLED_EXCEPTIONS, E, api_error, exception_response

logger = logging.getLogger(__name__)


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
    config_obj = config[config_name]
    app.config.from_object(config_obj() if config_name == "production" else config_obj)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Portal service (state store + aggregate owner) ───────────────────
    init_portal(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_auth(app)

    # ── Import models so create_all sees every table ─────────────────────
    from kpi_portal.models import state_document as _state_document_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config.get("STATE_BACKEND", "sql") == "sql":
        uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
        if uri.startswith("sqlite:///") and ":memory:" not in uri:
            os.makedirs(os.path.dirname(uri[len("sqlite:///"):]), exist_ok=True)
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from kpi_portal.blueprints.directory_bp import directory_bp
    from kpi_portal.blueprints.health_bp import health_bp
    from kpi_portal.blueprints.kpi_bp import kpi_bp
    from kpi_portal.blueprints.notification_bp import notification_bp
    from kpi_portal.blueprints.state_bp import state_bp
    from kpi_portal.blueprints.task_bp import task_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(state_bp)
    app.register_blueprint(kpi_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(directory_bp)
    app.register_blueprint(notification_bp)

    _register_error_handlers(app)
    _register_cli(app)

    return app


def _register_error_handlers(app):
    """Map service and storage exceptions to the standard JSON error body."""
    for exc_type in HANDLED_EXCEPTIONS:
        app.register_error_handler(exc_type, exception_response)

    @app.errorhandler(SQLAlchemyError)
    @app.errorhandler(OSError)
    def _storage_failure(exc):
        logger.exception("State store failure on %s %s", request.method, request.path)
        db.session.rollback()
        get_portal().invalidate()
        return api_error(E.STORAGE, "The portal state could not be persisted")

    @app.errorhandler(404)
    def _route_not_found(e):
        return api_error(E.NOT_FOUND, f"No route for {request.path}")

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, f"{request.method} not allowed on {request.path}")

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def _register_cli(app):

    @app.cli.command("seed-state")
    def seed_state_cmd():
        """Overwrite the persisted aggregate with the demo seed."""
        state = get_portal().reset_to_seed()
        logger.info("Seeded portal state at v%d.", state.version)

    @app.cli.command("scan-due-tasks")
    def scan_due_tasks_cmd():
        """Create due-soon / overdue notifications for open tasks."""
        summary = get_portal().scan_due_tasks()
        click.echo(summary)

    @app.cli.command("set-user-password")
    @click.argument("username")
    @click.password_option()
    def set_user_password_cmd(username, password):
        """Set a user's password (clears requirePasswordChange)."""
        from kpi_portal.services.repository import find_user_by_username

        portal = get_portal()
        user = find_user_by_username(portal.state, username)
        if user is None:
            raise click.ClickException(f"Unknown user: {username}")
        portal.set_password(user.id, password)
        click.echo(f"Password updated for {user.username}.")

    @app.cli.command("purge-orphans")
    def purge_orphans_cmd():
        """Drop notifications/activities that reference deleted tasks or KPIs."""
        state = get_portal().purge_orphaned_references()
        click.echo(f"State at v{state.version}.")
