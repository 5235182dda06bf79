"""
SprintDesk
Flask Application Factory.

Usage:
    from sprintdesk import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from sprintdesk.config import config
from sprintdesk.models import db
from sprintdesk.auth import init_auth
from sprintdesk.middleware.logging_config import configure_logging
from sprintdesk.middleware.timing import init_request_timing

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
    default_limits=[],                     # per-endpoint limits only
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
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
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Authentication middleware ────────────────────────────────────────
    init_auth(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from sprintdesk.models import catalog as _catalog_models     # noqa: F401
    from sprintdesk.models import sprint as _sprint_models       # noqa: F401
    from sprintdesk.models import project as _project_models     # noqa: F401
    from sprintdesk.models import settlement as _settlement_models  # noqa: F401
    from sprintdesk.models import audit as _audit_models         # noqa: F401
    from sprintdesk.models import ai as _ai_models               # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ───────────────────────
    if not app.config.get("TESTING"):
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and \
                ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from sprintdesk.blueprints.health_bp import health_bp
    from sprintdesk.blueprints.catalog_bp import catalog_bp
    from sprintdesk.blueprints.sprint_bp import sprint_bp
    from sprintdesk.blueprints.settlement_bp import settlement_bp
    from sprintdesk.blueprints.webhook_bp import webhook_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(sprint_bp)
    app.register_blueprint(settlement_bp)
    app.register_blueprint(webhook_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-catalog")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    def seed_catalog_cmd(path):
        """Load catalog deliverables and packages from a JSON file."""
        from sprintdesk.services.catalog_service import seed_catalog
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        deliverables, packages = seed_catalog(data)
        logger.info("Seeded %s deliverables and %s packages.", deliverables, packages)

    # ── Error handlers ──────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Rate limit exceeded", "detail": str(e.description)}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    return app
