"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category, keyed by tenant
when a JWT is present and by remote address otherwise.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

# ── Plan-based rate limits ───────────────────────────────────────────────

PLAN_RATE_LIMITS = {
    "trial": "100/minute",
    "starter": "300/minute",
    "professional": "600/minute",
    "enterprise": "2000/minute",
}

DEFAULT_PLAN_LIMIT = "100/minute"

# Bulk import is the heaviest write path
IMPORT_LIMIT = "5/minute"


def tenant_rate_limit_key():
    """Dynamic rate limit key: tenant_id if available, else remote IP."""
    tenant_id = getattr(g, "jwt_tenant_id", None)
    if tenant_id:
        return f"tenant:{tenant_id}"
    return flask_request.remote_addr or "unknown"


def tenant_plan_limit():
    """Return the rate limit string for the current tenant's plan."""
    tenant = getattr(g, "tenant", None)
    if tenant:
        plan = getattr(tenant, "plan", "trial") or "trial"
        return PLAN_RATE_LIMITS.get(plan, DEFAULT_PLAN_LIMIT)
    return DEFAULT_PLAN_LIMIT


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Pathway blueprints:  tenant plan limit (trial=100/min ... enterprise=2000/min)
        - Bulk import:         5/minute per tenant
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for bp_name in ("stages", "members", "tasks", "automation_rules"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(tenant_plan_limit, key_func=tenant_rate_limit_key)(bp)

    import_view = app.view_functions.get("members.import_members")
    if import_view:
        limiter.limit(IMPORT_LIMIT, key_func=tenant_rate_limit_key)(import_view)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: plan limits %s, import %s",
                    PLAN_RATE_LIMITS, IMPORT_LIMIT)
