"""
Pathway Progression Platform
Blueprint registry and shared request helpers.
"""

from flask import g, request

from app.core.exceptions import PermissionDeniedError, ValidationError
from app.services.permission_service import can_access_member, restricts_to_assigned
from app.utils.helpers import parse_int


def page_args(default_limit=50):
    """page / limit query params (1-based page)."""
    page = parse_int(request.args.get("page"), 1)
    limit = parse_int(request.args.get("limit"), default_limit)
    return page, limit


def json_body():
    """Request JSON as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def current_tenant_id():
    return g.tenant.id


def member_guard():
    """Row-level check for roles limited to their assigned members, or None."""
    role, user_id = g.jwt_role, g.jwt_user_id
    if not restricts_to_assigned(role):
        return None

    def guard(member):
        if not can_access_member(role, user_id, member):
            raise PermissionDeniedError("You can only access members assigned to you")
    return guard


def task_guard():
    """Row-level check for roles limited to their own tasks, or None."""
    role, user_id = g.jwt_role, g.jwt_user_id
    if not restricts_to_assigned(role):
        return None

    def guard(task):
        if task.assigned_to_id != user_id and not can_access_member(role, user_id, task.member):
            raise PermissionDeniedError("You can only access your own tasks")
    return guard


def register_blueprints(app):
    from app.blueprints.automation_rule_bp import automation_rule_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.member_bp import member_bp
    from app.blueprints.stage_bp import stage_bp
    from app.blueprints.task_bp import task_bp

    for bp in (health_bp, stage_bp, automation_rule_bp, member_bp, task_bp):
        app.register_blueprint(bp)
