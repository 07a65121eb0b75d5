"""
Issue Workflow Engine
Flask Application Factory.

Usage:
    from issueflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine

from issueflow.config import config
from issueflow.models import db
from issueflow.middleware.jwt_auth import init_jwt_middleware
from issueflow.middleware.logging_config import configure_logging
from issueflow.middleware.rate_limiter import init_rate_limits
from issueflow.middleware.timing import init_request_timing

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
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
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
    # Instantiate so environment checks in a config class __init__ run.
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

    # ── Request timing + caller identity ─────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from issueflow.models import project as _project_models    # noqa: F401
    from issueflow.models import workflow as _workflow_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS; migrations own ALTERs) ──
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from issueflow.blueprints.workflow_bp import workflow_bp
    from issueflow.blueprints.issue_workflow_bp import issue_workflow_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(issue_workflow_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-default-workflow")
    @click.option("--project-id", type=int, required=True, help="Project to seed.")
    def seed_default_workflow_cmd(project_id):
        """Create the standard Open/In Progress/Resolved/Closed workflow for a project."""
        from issueflow.services.workflow_templates import seed_default_workflow
        outcome = seed_default_workflow(project_id)
        if outcome["created"]:
            logger.info("Seeded default workflow %s for project %s.",
                        outcome["workflow"]["id"], project_id)
        else:
            logger.info("Project %s already has default workflow %s.",
                        project_id, outcome["workflow"]["id"])

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Issue Workflow Engine"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
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
