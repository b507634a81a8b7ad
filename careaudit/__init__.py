"""
Care Audit Service
Flask Application Factory.

Usage:
    from careaudit import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from careaudit.config import config
from careaudit.models import db
from careaudit.middleware.logging_config import configure_logging
from careaudit.middleware.rate_limiter import init_rate_limits
from careaudit.middleware.timing import init_request_timing

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
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
)


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
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from careaudit.models import audit as _audit_models                  # noqa: F401
    from careaudit.models import action_plan as _action_plan_models      # noqa: F401
    from careaudit.models import notification as _notification_models    # noqa: F401
    from careaudit.models import resident_audit_item as _resident_item_models  # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from careaudit.blueprints.template_bp import template_bp
    from careaudit.blueprints.run_bp import run_bp
    from careaudit.blueprints.action_plan_bp import action_plan_bp
    from careaudit.blueprints.dashboard_bp import dashboard_bp
    from careaudit.blueprints.notification_bp import notification_bp

    app.register_blueprint(template_bp)
    app.register_blueprint(run_bp)
    app.register_blueprint(action_plan_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(notification_bp)

    # ── CLI commands (external triggers; the service runs no scheduler) ──
    @app.cli.command("notify-overdue-action-plans")
    def notify_overdue_action_plans_cmd():
        """Send overdue notifications for action plans past their due date."""
        from careaudit.services.action_plan_service import notify_overdue_plans
        count = notify_overdue_plans()
        db.session.commit()
        logger.info("Notified %s overdue action plans.", count)
        click.echo(f"Notified {count} overdue action plan(s).")

    @app.cli.command("archive-completed-action-plans")
    @click.option("--older-than-days", type=int, default=None,
                  help="Defaults to ACTION_PLAN_ARCHIVE_AFTER_DAYS.")
    def archive_completed_action_plans_cmd(older_than_days):
        """Delete completed action plans older than the retention window."""
        from careaudit.services.action_plan_service import archive_completed_plans
        days = older_than_days if older_than_days is not None else app.config["ACTION_PLAN_ARCHIVE_AFTER_DAYS"]
        count = archive_completed_plans(older_than_days=days)
        db.session.commit()
        logger.info("Archived %s completed action plans.", count)
        click.echo(f"Archived {count} completed action plan(s).")

    @app.cli.command("cleanup-stale-drafts")
    @click.option("--older-than-days", type=int, default=None,
                  help="Defaults to AUDIT_STALE_DRAFT_DAYS.")
    def cleanup_stale_drafts_cmd(older_than_days):
        """Delete empty draft / in-progress runs left behind by abandoned audits."""
        from careaudit.services.audit_run_service import cleanup_stale_drafts
        days = older_than_days if older_than_days is not None else app.config["AUDIT_STALE_DRAFT_DAYS"]
        count = cleanup_stale_drafts(older_than_days=days)
        db.session.commit()
        click.echo(f"Deleted {count} stale draft run(s).")

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Care Audit Service"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
