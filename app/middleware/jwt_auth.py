"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

  Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_tenant_id, g.jwt_role

A missing or invalid token leaves the context empty; the permission
decorators turn that into a 401 on protected routes. Expired and malformed
tokens are logged at debug level only.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)


# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        # Clear JWT context
        g.jwt_user_id = None
        g.jwt_tenant_id = None
        g.jwt_role = None
        g.jwt_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "Token expired"
            logger.debug("Expired token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            g.jwt_error = "Invalid token"
            logger.debug("Invalid token on %s: %s", path, exc)
            return

        g.jwt_user_id = payload["sub"]
        g.jwt_tenant_id = payload["tenant_id"]
        g.jwt_role = payload.get("role")
