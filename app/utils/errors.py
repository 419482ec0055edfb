"""Standardised API envelopes.

Usage
-----
    from app.utils.errors import api_ok, api_error, E

    return api_ok(stage.to_dict(), status=201)
    return api_error(E.NOT_FOUND, "Member not found")
    return api_error(E.VALIDATION, "Invalid payload", details={"firstName": "required"})

Every response body carries ``meta.timestamp``; errors additionally carry
``meta.requestId`` when the timing middleware assigned one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import g, has_request_context, jsonify, request
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import PlatformError

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error codes produced outside the service layer.

    Service exceptions carry their own domain codes (``STAGE_NOT_FOUND``,
    ``TASK_ALREADY_COMPLETED`` ...); these cover transport-level failures.
    """

    VALIDATION = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL = "INTERNAL_ERROR"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.CONFLICT: 409,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def _meta(**extra) -> dict:
    meta = {"timestamp": datetime.now(timezone.utc).isoformat()}
    meta.update({k: v for k, v in extra.items() if v is not None})
    return meta


def api_ok(data, status: int = 200, **meta):
    """Return a success envelope ``{"data": ..., "meta": {...}}``."""
    return jsonify({"data": data, "meta": _meta(**meta)}), status


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | list | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (``E.*`` or a service exception code).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, row errors).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    error: dict = {"code": code, "message": message}
    if details:
        error["details"] = details

    request_id = getattr(g, "request_id", None) if has_request_context() else None
    return jsonify({"error": error, "meta": _meta(requestId=request_id)}), http_status


def init_error_handlers(app):
    """Register envelope-producing handlers for service exceptions and HTTP errors."""

    @app.errorhandler(PlatformError)
    def _platform_error(exc):
        message = getattr(exc, "public_message", None) or str(exc)
        if exc.status >= 404:
            logger.info("%s: %s", exc.code, exc)
        return api_error(exc.code, message, status=exc.status, details=exc.details or None)

    @app.errorhandler(IntegrityError)
    def _integrity_error(exc):
        from app.models import db
        db.session.rollback()
        logger.warning("Integrity error: %s", exc.orig)
        return api_error(E.CONFLICT, "Duplicate or constraint violation")

    @app.errorhandler(400)
    def _bad_request(e):
        return api_error(E.VALIDATION, getattr(e, "description", None) or "Bad request")

    @app.errorhandler(404)
    def _not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed")

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.VALIDATION, "Request body too large", status=413)

    @app.errorhandler(415)
    def _unsupported(e):
        return api_error(E.VALIDATION, e.description or "Unsupported media type", status=415)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retryAfter": str(e.description)})

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error on %s %s", request.method, request.path, exc_info=True)
        message = "Internal server error"
        if app.config.get("DEBUG"):
            message = str(getattr(e, "original_exception", None) or e)
        return api_error(E.INTERNAL, message)
