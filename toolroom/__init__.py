"""
Toolroom: diecut catalog, serial ledger, wear report and modification workflow.

    from toolroom import create_app
    app = create_app()            # APP_ENV, else "development"
    app = create_app("testing")
"""

import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from toolroom.config import config
from toolroom.middleware.identity_context import init_identity_context
from toolroom.middleware.logging_config import configure_logging
from toolroom.middleware.rate_limiter import init_rate_limits
from toolroom.middleware.timing import init_request_timing
from toolroom.models import db
from toolroom.utils.errors import init_error_handlers


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
    default_limits=[],                     # no global limit, limits are per blueprint
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
    app.config.from_object(config[config_name])

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)
    init_identity_context(app)
    init_error_handlers(app)

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct and "multipart/form-data" not in ct:
                abort(415, description="Content-Type must be application/json")

    # Register models so create_all / Alembic see every table
    from toolroom.models import diecut as _diecut_models            # noqa: F401
    from toolroom.models import sql_template as _sql_template_models  # noqa: F401

    if not app.config.get("TESTING"):
        with app.app_context():
            try:
                db.create_all()
            except Exception as exc:
                app.logger.warning("Schema bootstrap skipped, run `flask db upgrade`: %s", exc)

    from toolroom.blueprints.diecut_bp import diecut_bp
    from toolroom.blueprints.health_bp import health_bp
    from toolroom.blueprints.modification_bp import modification_bp
    from toolroom.blueprints.status_bp import status_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(status_bp)
    app.register_blueprint(modification_bp)
    app.register_blueprint(diecut_bp)

    init_rate_limits(app, limiter)

    return app
