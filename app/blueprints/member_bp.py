"""
Member Blueprint — member store, progression, notes, tags and bulk import.

Endpoints:
    GET    /api/v1/members                     — list (pathway, status, stageId, assignedToId, search)
    POST   /api/v1/members                     — create, placed on the first stage
    GET    /api/v1/members/<id>                — detail with notes, open tasks, tags, history
    PATCH  /api/v1/members/<id>                — update demographics / status / assignee
    DELETE /api/v1/members/<id>                — delete
    PATCH  /api/v1/members/<id>/stage          — advance {stageId|toStageId, reason?, expectedVersion?}
    GET    /api/v1/members/<id>/history        — stage history, newest first
    GET    /api/v1/members/<id>/notes          — notes, newest first
    POST   /api/v1/members/<id>/notes          — add a note {content}
    POST   /api/v1/members/<id>/tags           — add a tag {tag}
    DELETE /api/v1/members/<id>/tags/<tag_id>  — remove a tag
    POST   /api/v1/members/import              — bulk import (JSON or CSV upload)
    GET    /api/v1/members/import/template     — CSV template

Row-level access: roles limited to assigned members only see and touch
members assigned to them (app.blueprints.member_guard).
"""

import logging

from flask import Blueprint, Response, g, request

from app.blueprints import current_tenant_id, json_body, member_guard, page_args
from app.core.exceptions import PermissionDeniedError, ValidationError
from app.middleware.permission_required import require_permission
from app.services import bulk_import_service, member_service, progression
from app.services.permission_service import Permission, has_permission, restricts_to_assigned
from app.utils.errors import api_ok
from app.utils.helpers import parse_int

logger = logging.getLogger(__name__)

member_bp = Blueprint("members", __name__, url_prefix="/api/v1")


def _check_assign_permission(data):
    if "assignedToId" in data and not has_permission(g.jwt_role, Permission.MEMBER_ASSIGN):
        raise PermissionDeniedError(
            "Permission denied", details={"required": [Permission.MEMBER_ASSIGN]},
        )


def _int_field(data, *names, required=False):
    """First present field among `names` as an int (bools rejected)."""
    for name in names:
        if data.get(name) is not None:
            value = data[name]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{name} must be an integer", details={name: "must be an integer"})
            return value
    if required:
        raise ValidationError(f"{names[0]} is required", details={names[0]: "required"})
    return None


# ═══════════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════════

@member_bp.route("/members", methods=["GET"])
@require_permission(Permission.MEMBER_VIEW)
def list_members():
    filters = {
        "pathway": request.args.get("pathway") or None,
        "status": request.args.get("status") or None,
        "stageId": parse_int(request.args.get("stageId")),
        "assignedToId": parse_int(request.args.get("assignedToId")),
        "search": request.args.get("search"),
    }
    if restricts_to_assigned(g.jwt_role):
        filters["assignedToId"] = g.jwt_user_id
    page, limit = page_args()
    items, pagination = member_service.list_members(current_tenant_id(), filters, page, limit)
    return api_ok(items, pagination=pagination)


@member_bp.route("/members", methods=["POST"])
@require_permission(Permission.MEMBER_CREATE)
def create_member():
    """Create a member.

    Body (JSON):
        firstName, lastName, pathway (required)
        currentStageId (optional): defaults to the pathway's first stage
        email, phone, dateOfBirth, gender, maritalStatus, address, city,
        state, zip, assignedToId, tags (optional)
    """
    data = json_body()
    if restricts_to_assigned(g.jwt_role):
        data["assignedToId"] = g.jwt_user_id
    else:
        _check_assign_permission(data)
    member = member_service.create_member(current_tenant_id(), g.jwt_user_id, data)
    return api_ok(member, status=201)


@member_bp.route("/members/<int:member_id>", methods=["GET"])
@require_permission(Permission.MEMBER_VIEW)
def get_member(member_id: int):
    return api_ok(member_service.get_member(current_tenant_id(), member_id, member_guard()))


@member_bp.route("/members/<int:member_id>", methods=["PATCH", "PUT"])
@require_permission(Permission.MEMBER_UPDATE)
def update_member(member_id: int):
    data = json_body()
    _check_assign_permission(data)
    member = member_service.update_member(current_tenant_id(), member_id, data, member_guard())
    return api_ok(member)


@member_bp.route("/members/<int:member_id>", methods=["DELETE"])
@require_permission(Permission.MEMBER_DELETE)
def delete_member(member_id: int):
    member_service.delete_member(current_tenant_id(), member_id)
    return api_ok({"deleted": True, "id": member_id})


# ═══════════════════════════════════════════════════════════════
# Progression
# ═══════════════════════════════════════════════════════════════

@member_bp.route("/members/<int:member_id>/stage", methods=["PATCH"])
@require_permission(Permission.MEMBER_UPDATE)
def advance_member(member_id: int):
    """Move a member to another stage of their pathway and fire its automation.

    Body (JSON):
        stageId | toStageId (int, required)
        reason (str, optional)
        expectedVersion (int, optional): 409 CONFLICT when stale
    """
    data = json_body()
    to_stage_id = _int_field(data, "stageId", "toStageId", required=True)
    expected_version = _int_field(data, "expectedVersion")
    reason = data.get("reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string", details={"reason": "must be a string"})

    result = progression.advance_stage(
        member_id, to_stage_id, current_tenant_id(), g.jwt_user_id,
        reason=(reason or "").strip() or None,
        expected_version=expected_version,
        member_guard=member_guard(),
    )
    return api_ok(result)


@member_bp.route("/members/<int:member_id>/history", methods=["GET"])
@require_permission(Permission.MEMBER_VIEW)
def member_history(member_id: int):
    return api_ok(member_service.list_history(current_tenant_id(), member_id, member_guard()))


# ═══════════════════════════════════════════════════════════════
# Notes & tags
# ═══════════════════════════════════════════════════════════════

@member_bp.route("/members/<int:member_id>/notes", methods=["GET"])
@require_permission(Permission.MEMBER_VIEW)
def list_notes(member_id: int):
    return api_ok(member_service.list_notes(current_tenant_id(), member_id, member_guard()))


@member_bp.route("/members/<int:member_id>/notes", methods=["POST"])
@require_permission(Permission.MEMBER_UPDATE)
def add_note(member_id: int):
    note = member_service.add_note(
        current_tenant_id(), member_id, json_body().get("content"), g.jwt_user_id, member_guard(),
    )
    return api_ok(note, status=201)


@member_bp.route("/members/<int:member_id>/tags", methods=["POST"])
@require_permission(Permission.MEMBER_UPDATE)
def add_tag(member_id: int):
    tag = member_service.add_tag(current_tenant_id(), member_id, json_body().get("tag"), member_guard())
    return api_ok(tag, status=201)


@member_bp.route("/members/<int:member_id>/tags/<int:tag_id>", methods=["DELETE"])
@require_permission(Permission.MEMBER_UPDATE)
def remove_tag(member_id: int, tag_id: int):
    member_service.remove_tag(current_tenant_id(), member_id, tag_id, member_guard())
    return api_ok({"deleted": True, "id": tag_id})


# ═══════════════════════════════════════════════════════════════
# Bulk import
# ═══════════════════════════════════════════════════════════════

@member_bp.route("/members/import/template", methods=["GET"])
@require_permission(Permission.MEMBER_CREATE)
def download_import_template():
    """Download a CSV template for bulk member import."""
    return Response(
        bulk_import_service.generate_csv_template(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=member_import_template.csv"},
    )


@member_bp.route("/members/import", methods=["POST"])
@require_permission(Permission.MEMBER_CREATE)
def import_members():
    """Bulk import members into one pathway.

    JSON body:      {pathway, currentStageId?, members: [...]}
    Multipart form: file=<csv>, pathway, currentStageId?
    """
    upload = request.files.get("file")
    if upload is not None:
        pathway = request.form.get("pathway")
        stage_id = parse_int(request.form.get("currentStageId"))
        rows = bulk_import_service.parse_csv(upload.read())
    else:
        data = json_body()
        pathway = data.get("pathway")
        stage_id = _int_field(data, "currentStageId", "stageId")
        rows = data.get("members")

    result = bulk_import_service.bulk_import_members(
        current_tenant_id(), g.jwt_user_id, pathway, rows, stage_id=stage_id,
    )
    return api_ok(result, status=201 if result["created"] else 200)
