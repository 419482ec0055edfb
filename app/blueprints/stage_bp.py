"""
Stage Registry Blueprint.

Endpoints:
    GET    /api/v1/stages?pathway=   — ordered stages with member/rule counts
    GET    /api/v1/stages/stats      — member count per stage
    GET    /api/v1/stages/<id>       — stage detail with enabled rules
    POST   /api/v1/stages            — create (shift-up on order collision)
    PATCH  /api/v1/stages/<id>       — update (order change = minimal shift)
    POST   /api/v1/stages/reorder    — bulk reorder {pathway, reorders:[{stageId,newOrder}]}
    DELETE /api/v1/stages/<id>       — delete an empty stage

Layer contract:
    - No ORM calls here — all DB work delegated to stage_service.
    - tenant_id always comes from the tenant context (g.tenant).
"""

import logging

from flask import Blueprint, request

from app.blueprints import current_tenant_id, json_body
from app.middleware.permission_required import require_permission
from app.services import stage_service
from app.services.permission_service import Permission
from app.utils.errors import api_ok

logger = logging.getLogger(__name__)

stage_bp = Blueprint("stages", __name__, url_prefix="/api/v1")


@stage_bp.route("/stages", methods=["GET"])
@require_permission(Permission.STAGE_VIEW)
def list_stages():
    pathway = request.args.get("pathway") or None
    return api_ok(stage_service.list_stages(current_tenant_id(), pathway))


@stage_bp.route("/stages/stats", methods=["GET"])
@require_permission(Permission.STAGE_VIEW)
def stage_stats():
    pathway = request.args.get("pathway") or None
    return api_ok(stage_service.get_stage_stats(current_tenant_id(), pathway))


@stage_bp.route("/stages/<int:stage_id>", methods=["GET"])
@require_permission(Permission.STAGE_VIEW)
def get_stage(stage_id: int):
    return api_ok(stage_service.get_stage(current_tenant_id(), stage_id))


@stage_bp.route("/stages", methods=["POST"])
@require_permission(Permission.STAGE_CREATE)
def create_stage():
    """Create a stage.

    Body (JSON):
        pathway (str, required): NEWCOMER | NEW_BELIEVER
        name (str, required)
        order (int, optional): omitted → appended at the end
        description, autoAdvanceEnabled, autoAdvanceType, autoAdvanceValue (optional)
    """
    stage = stage_service.create_stage(current_tenant_id(), json_body())
    return api_ok(stage, status=201)


@stage_bp.route("/stages/<int:stage_id>", methods=["PATCH", "PUT"])
@require_permission(Permission.STAGE_UPDATE)
def update_stage(stage_id: int):
    return api_ok(stage_service.update_stage(current_tenant_id(), stage_id, json_body()))


@stage_bp.route("/stages/reorder", methods=["POST"])
@require_permission(Permission.STAGE_UPDATE)
def reorder_stages():
    data = json_body()
    stages = stage_service.reorder_stages(
        current_tenant_id(), data.get("pathway"), data.get("reorders"),
    )
    return api_ok(stages)


@stage_bp.route("/stages/<int:stage_id>", methods=["DELETE"])
@require_permission(Permission.STAGE_DELETE)
def delete_stage(stage_id: int):
    stage_service.delete_stage(current_tenant_id(), stage_id)
    return api_ok({"deleted": True, "id": stage_id})
