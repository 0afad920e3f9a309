"""
Compliance Desk
Flask Application Factory.

Usage:
    from compliance_desk import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, send_from_directory
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from compliance_desk.config import config
from compliance_desk.integrations.document_store import init_document_store
from compliance_desk.middleware.actor_context import init_actor_context
from compliance_desk.middleware.logging_config import configure_logging
from compliance_desk.middleware.rate_limiter import init_rate_limits
from compliance_desk.middleware.timing import init_request_timing
from compliance_desk.models import db

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
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
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
    # Instantiate so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Collaborators & request middleware ───────────────────────────────
    init_document_store(app)
    init_request_timing(app)
    init_actor_context(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from compliance_desk.models import audit as _audit_models              # noqa: F401
    from compliance_desk.models import compliance as _compliance_models    # noqa: F401
    from compliance_desk.models import directory as _directory_models      # noqa: F401
    from compliance_desk.models import notification as _notification_models  # noqa: F401
    from compliance_desk.models import scheduling as _scheduling_models    # noqa: F401
    from compliance_desk.models import task as _task_models                # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from compliance_desk.blueprints.change_feed_bp import change_feed_bp
    from compliance_desk.blueprints.compliance_bp import compliance_bp
    from compliance_desk.blueprints.directory_bp import directory_bp
    from compliance_desk.blueprints.escalation_bp import escalation_bp
    from compliance_desk.blueprints.health_bp import health_bp
    from compliance_desk.blueprints.notification_bp import notification_bp
    from compliance_desk.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(directory_bp)
    app.register_blueprint(compliance_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(escalation_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(change_feed_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-job")
    @click.argument("job_name")
    @click.option("--force", is_flag=True, help="Run even if the job is disabled.")
    def run_job_cmd(job_name, force):
        """Run one scheduled job (for cron)."""
        from compliance_desk.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job(job_name, force=force)
        logger.info("Job %s finished: %s", job_name, result["status"], extra={"job_name": job_name})
        click.echo(result)

    # ── Locally stored evidence documents ────────────────────────────────
    if (app.config.get("DOCUMENT_STORE_BACKEND") or "local").lower() == "local":
        @app.route("/documents/<path:key>")
        def local_document(key):
            return send_from_directory(app.config["UPLOAD_FOLDER"], key)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        if request.path.startswith("/api/"):
            return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404
        return "<h1>404 — Not Found</h1>", 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large", "code": "ERR_VALIDATION_INVALID"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        from flask import request
        logger.error("500 error: %s", e, exc_info=True)
        if request.path.startswith("/api/"):
            return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500
        return "<h1>500 — Internal Server Error</h1><p>An unexpected error occurred.</p>", 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    from compliance_desk.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    return app
