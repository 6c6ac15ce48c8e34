"""
Boardflow
Flask Application Factory.

Usage:
    from boardflow import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from boardflow.config import config
from boardflow.middleware.logging_config import configure_logging
from boardflow.middleware.rate_limiter import init_rate_limits
from boardflow.middleware.timing import init_request_timing
from boardflow.models import db
from boardflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Storage comes from RATELIMIT_STORAGE_URI in the app config
limiter = Limiter(key_func=get_remote_address, default_limits=[])


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
    app.config.from_object(config[config_name]())

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

    # ── Import all models so create_all / Alembic see them ───────────────
    from boardflow.models import approval as _approval_models          # noqa: F401
    from boardflow.models import automation as _automation_models      # noqa: F401
    from boardflow.models import board as _board_models                # noqa: F401
    from boardflow.models import notification as _notification_models  # noqa: F401
    from boardflow.models import scheduling as _scheduling_models      # noqa: F401

    # ── Tables (CREATE IF NOT EXISTS) ────────────────────────────────────
    if app.config.get("AUTO_CREATE_TABLES", True):
        with app.app_context():
            try:
                db.create_all()
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from boardflow.blueprints.approval_bp import approval_bp
    from boardflow.blueprints.automation_bp import automation_bp
    from boardflow.blueprints.health_bp import health_bp
    from boardflow.blueprints.item_bp import item_bp
    from boardflow.blueprints.notification_bp import notification_bp

    app.register_blueprint(approval_bp)
    app.register_blueprint(automation_bp)
    app.register_blueprint(item_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    # ── App-level errors (outside any blueprint) ─────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, f"No route for {request.path}")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, f"{request.method} not allowed on {request.path}",
                         status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"limit": str(e.description)})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("boardflow.services.scheduled_jobs")  # registers @register_job handlers
    from boardflow.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    if app.config.get("AUTOMATION_SCHEDULER_ENABLED"):
        from boardflow.services import automation_scheduler
        automation_scheduler.start(app)

    return app
