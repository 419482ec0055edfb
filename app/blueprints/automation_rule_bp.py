"""
Automation Rule Blueprint.

Endpoints:
    GET    /api/v1/automation-rules?stageId=   — list rules
    GET    /api/v1/automation-rules/stats      — totals
    GET    /api/v1/automation-rules/<id>       — rule detail
    POST   /api/v1/automation-rules            — create
    PATCH  /api/v1/automation-rules/<id>       — update
    PATCH  /api/v1/automation-rules/<id>/toggle — enable/disable {enabled}
    DELETE /api/v1/automation-rules/<id>       — delete
"""

from flask import Blueprint, request

from app.blueprints import current_tenant_id, json_body
from app.middleware.permission_required import require_permission
from app.services import automation_rule_service
from app.services.permission_service import Permission
from app.utils.errors import api_ok

automation_rule_bp = Blueprint("automation_rules", __name__, url_prefix="/api/v1/automation-rules")


@automation_rule_bp.route("", methods=["GET"])
@require_permission(Permission.AUTOMATION_VIEW)
def list_rules():
    stage_id = request.args.get("stageId", type=int)
    return api_ok(automation_rule_service.list_rules(current_tenant_id(), stage_id))


@automation_rule_bp.route("/stats", methods=["GET"])
@require_permission(Permission.AUTOMATION_VIEW)
def rule_stats():
    return api_ok(automation_rule_service.get_rule_stats(current_tenant_id()))


@automation_rule_bp.route("/<int:rule_id>", methods=["GET"])
@require_permission(Permission.AUTOMATION_VIEW)
def get_rule(rule_id: int):
    return api_ok(automation_rule_service.get_rule(current_tenant_id(), rule_id))


@automation_rule_bp.route("", methods=["POST"])
@require_permission(Permission.AUTOMATION_CREATE)
def create_rule():
    """Body: stageId, name, taskDescription, daysDue, priority?, enabled?"""
    rule = automation_rule_service.create_rule(current_tenant_id(), json_body())
    return api_ok(rule, status=201)


@automation_rule_bp.route("/<int:rule_id>", methods=["PATCH", "PUT"])
@require_permission(Permission.AUTOMATION_UPDATE)
def update_rule(rule_id: int):
    return api_ok(automation_rule_service.update_rule(current_tenant_id(), rule_id, json_body()))


@automation_rule_bp.route("/<int:rule_id>/toggle", methods=["PATCH"])
@require_permission(Permission.AUTOMATION_UPDATE)
def toggle_rule(rule_id: int):
    enabled = json_body().get("enabled")
    return api_ok(automation_rule_service.toggle_rule(current_tenant_id(), rule_id, enabled))


@automation_rule_bp.route("/<int:rule_id>", methods=["DELETE"])
@require_permission(Permission.AUTOMATION_DELETE)
def delete_rule(rule_id: int):
    automation_rule_service.delete_rule(current_tenant_id(), rule_id)
    return api_ok({"deleted": True, "id": rule_id})
