"""
Task Blueprint — follow-up tasks and the completion trigger.

Endpoints:
    GET    /api/v1/tasks                — list (assignedToId, memberId, completed, overdue, priority)
    GET    /api/v1/tasks/stats          — totals for the tenant (or the caller)
    GET    /api/v1/tasks/<id>           — task detail
    POST   /api/v1/tasks                — create a manual task
    PATCH  /api/v1/tasks/<id>           — update description / dueDate / priority / assignee
    PATCH  /api/v1/tasks/<id>/complete  — complete; may auto-advance the member
    DELETE /api/v1/tasks/<id>           — delete

Roles limited to assigned members list and touch only their own tasks.
"""

from flask import Blueprint, g, request

from app.blueprints import current_tenant_id, json_body, member_guard, page_args, task_guard
from app.core.exceptions import PermissionDeniedError
from app.middleware.permission_required import require_permission
from app.services import task_service
from app.services.permission_service import Permission, has_permission, restricts_to_assigned
from app.utils.errors import api_ok
from app.utils.helpers import parse_bool, parse_int

task_bp = Blueprint("tasks", __name__, url_prefix="/api/v1/tasks")


@task_bp.route("", methods=["GET"])
@require_permission(Permission.TASK_VIEW)
def list_tasks():
    filters = {
        "assignedToId": parse_int(request.args.get("assignedToId")),
        "memberId": parse_int(request.args.get("memberId")),
        "completed": parse_bool(request.args.get("completed")),
        "overdue": parse_bool(request.args.get("overdue")),
        "priority": request.args.get("priority") or None,
    }
    if restricts_to_assigned(g.jwt_role):
        filters["assignedToId"] = g.jwt_user_id
    page, limit = page_args()
    items, pagination = task_service.list_tasks(current_tenant_id(), filters, page, limit)
    return api_ok(items, pagination=pagination)


@task_bp.route("/stats", methods=["GET"])
@require_permission(Permission.TASK_VIEW)
def task_stats():
    user_id = parse_int(request.args.get("assignedToId"))
    if restricts_to_assigned(g.jwt_role):
        user_id = g.jwt_user_id
    return api_ok(task_service.get_task_stats(current_tenant_id(), user_id))


@task_bp.route("/<int:task_id>", methods=["GET"])
@require_permission(Permission.TASK_VIEW)
def get_task(task_id: int):
    return api_ok(task_service.get_task(current_tenant_id(), task_id, task_guard()))


@task_bp.route("", methods=["POST"])
@require_permission(Permission.TASK_CREATE)
def create_task():
    """Body: memberId, description, dueDate (required); priority, assignedToId (optional)."""
    data = json_body()
    if "assignedToId" in data and not has_permission(g.jwt_role, Permission.TASK_ASSIGN):
        raise PermissionDeniedError(
            "Permission denied", details={"required": [Permission.TASK_ASSIGN]},
        )
    task = task_service.create_task(current_tenant_id(), g.jwt_user_id, data, member_guard())
    return api_ok(task, status=201)


@task_bp.route("/<int:task_id>", methods=["PATCH", "PUT"])
@require_permission(Permission.TASK_UPDATE)
def update_task(task_id: int):
    data = json_body()
    if "assignedToId" in data and not has_permission(g.jwt_role, Permission.TASK_ASSIGN):
        raise PermissionDeniedError(
            "Permission denied", details={"required": [Permission.TASK_ASSIGN]},
        )
    return api_ok(task_service.update_task(current_tenant_id(), task_id, data, task_guard()))


@task_bp.route("/<int:task_id>/complete", methods=["PATCH", "POST"])
@require_permission(Permission.TASK_UPDATE)
def complete_task(task_id: int):
    result = task_service.complete_task(task_id, current_tenant_id(), g.jwt_user_id, task_guard())
    return api_ok(result)


@task_bp.route("/<int:task_id>", methods=["DELETE"])
@require_permission(Permission.TASK_DELETE)
def delete_task(task_id: int):
    task_service.delete_task(current_tenant_id(), task_id)
    return api_ok({"deleted": True, "id": task_id})
