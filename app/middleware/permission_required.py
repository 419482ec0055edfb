"""
Permission Decorators — JWT-aware RBAC decorators for route protection.

Usage:
    @bp.route("/stages", methods=["POST"])
    @require_permission(Permission.STAGE_CREATE)
    def create_stage():
        ...

    @bp.route("/members/<int:member_id>", methods=["GET"])
    @require_permission(Permission.MEMBER_VIEW)
    def get_member(member_id):
        ...

Several codenames mean "any of". Without a JWT user the request is
answered with 401 UNAUTHORIZED; a role lacking every listed permission gets
403 FORBIDDEN.
"""

import functools
import logging

from flask import g

from app.services.permission_service import has_any_permission
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def require_permission(*codenames: str):
    """
    Decorator: require the JWT user's role to grant at least one codename.

    Args:
        codenames: Permission codenames, e.g. "member:update"
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None or getattr(g, "tenant", None) is None:
                message = getattr(g, "jwt_error", None) or "Authentication required"
                return api_error(E.UNAUTHORIZED, message)

            role = getattr(g, "jwt_role", None)
            if not has_any_permission(role, codenames):
                logger.warning(
                    "User %d (%s) denied: missing %s on %s",
                    user_id, role, codenames, f.__name__,
                    extra={"tenant_id": g.jwt_tenant_id},
                )
                return api_error(
                    E.FORBIDDEN,
                    "Permission denied",
                    details={"required": list(codenames)},
                )

            return f(*args, **kwargs)
        return decorated
    return decorator
