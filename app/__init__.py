"""
Pathway Progression Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from app.config import config
from app.middleware.jwt_auth import init_jwt_middleware
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.tenant_context import init_tenant_context
from app.middleware.timing import init_request_timing
from app.models import db
from app.utils.errors import init_error_handlers

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
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", os.getenv("REDIS_URL", "memory://")),
)

# Multipart uploads are accepted here; every other mutating API call is JSON
_MULTIPART_PATHS = ("/api/v1/members/import",)


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

    # ── Request middleware: timing → JWT → tenant context ────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_tenant_context(app)

    @app.before_request
    def _guard_request():
        # Content-Type validation for mutating methods
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.path.startswith(_MULTIPART_PATHS) and "multipart/form-data" in ct:
                return None
            if request.get_data(cache=True) and "json" not in ct:
                abort(415, description="Content-Type must be application/json")
        return None

    # ── Error envelopes ──────────────────────────────────────────────────
    init_error_handlers(app)

    # ── Import all models so Alembic and create_all see them ─────────────
    from app.models import auth as _auth_models         # noqa: F401
    from app.models import member as _member_models     # noqa: F401
    from app.models import pathway as _pathway_models   # noqa: F401
    from app.models import task as _task_models         # noqa: F401

    # ── Auto-create tables outside tests (CREATE IF NOT EXISTS) ──────────
    if not app.config.get("TESTING"):
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints import register_blueprints
    register_blueprints(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    _register_cli(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def _register_cli(app):
    @app.cli.command("seed-default-stages")
    @click.option("--tenant", "tenant_slug", required=True, help="Tenant slug to seed.")
    def seed_default_stages_cmd(tenant_slug):
        """Create the default NEWCOMER and NEW_BELIEVER pathways for a tenant."""
        from app.models.auth import Tenant
        from app.services.stage_service import seed_default_stages

        tenant = Tenant.query.filter_by(slug=tenant_slug).first()
        if tenant is None:
            raise click.ClickException(f"Tenant {tenant_slug!r} not found")
        result = seed_default_stages(tenant.id)
        click.echo(f"Seeded {result['stages']} stages and {result['rules']} rules for {tenant_slug}.")

    @app.cli.command("advance-time-in-stage")
    @click.option("--tenant", "tenant_slug", default=None, help="Limit the sweep to one tenant.")
    def advance_time_in_stage_cmd(tenant_slug):
        """Advance members whose TIME_IN_STAGE duration has elapsed."""
        from app.models.auth import Tenant
        from app.services.progression import sweep_time_in_stage

        tenant_id = None
        if tenant_slug:
            tenant = Tenant.query.filter_by(slug=tenant_slug).first()
            if tenant is None:
                raise click.ClickException(f"Tenant {tenant_slug!r} not found")
            tenant_id = tenant.id
        stats = sweep_time_in_stage(tenant_id=tenant_id)
        click.echo(
            f"Examined {stats['examined']}: {stats['advanced']} advanced, "
            f"{stats['integrated']} integrated, {stats['skipped']} skipped."
        )
