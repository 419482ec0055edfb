"""
Health check blueprint.

Endpoints:
    GET /api/v1/health       — liveness plus database round-trip
    GET /api/v1/health/ready — simple 200 for load balancers
"""

import logging
import time

from flask import Blueprint, current_app

from app.models import db
from app.utils.errors import api_ok

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return api_ok({"status": "ok"})


@health_bp.route("", methods=["GET"])
def health():
    """Liveness check with database status; 503 when the database is down."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    checks["app"] = {
        "name": "Pathway Progression Platform",
        "testing": current_app.testing,
    }
    return api_ok({"status": "ok" if overall else "degraded", "checks": checks},
                  status=200 if overall else 503)
