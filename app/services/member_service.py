"""
Member service — the member store plus notes, tags and the tenant counter.

Stage changes never happen here: creation hands the new member to
progression.place_member() and every later move goes through
progression.advance_stage() or the task trigger.

adjust_member_count() is the only writer of Tenant.member_count.
"""

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import case, func, or_, select, update

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.auth import Tenant, User
from app.models.member import (
    MEMBER_COLUMN_LIMITS,
    MEMBER_STATUSES,
    Member,
    MemberTag,
    Note,
    StageHistory,
)
from app.models.pathway import Stage
from app.models.task import Task
from app.services.helpers.scoped_queries import get_scoped, paginate_select
from app.services.helpers.transaction import atomic
from app.services.progression import add_system_note, place_member
from app.services.stage_service import get_first_stage, validate_pathway
from app.utils.helpers import parse_date_input, parse_gender, parse_marital_status

logger = logging.getLogger(__name__)

_MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
RECENT_NOTES_LIMIT = 10

# camelCase request key → column, for the plain string fields
_TEXT_FIELDS = {
    "phone": "phone",
    "address": "address",
    "city": "city",
    "state": "state",
    "zip": "zip",
}

_PAYLOAD_KEYS = {"first_name": "firstName", "last_name": "lastName", "email": "email",
                 **{column: key for key, column in _TEXT_FIELDS.items()}}


# ═══════════════════════════════════════════════════════════════
# Counter
# ═══════════════════════════════════════════════════════════════

def adjust_member_count(tenant_id, delta):
    """Add `delta` to the tenant's member counter, never going below zero.

    Runs in the caller's transaction.
    """
    if not delta:
        return
    new_value = Tenant.member_count + delta
    db.session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values(member_count=case((new_value < 0, 0), else_=new_value))
    )


# ═══════════════════════════════════════════════════════════════
# Field normalisation
# ═══════════════════════════════════════════════════════════════

def normalize_email(value):
    """Lower-cased, syntax-checked email, or None for blank input.

    Raises:
        EmailNotValidError
    """
    if value is None or not str(value).strip():
        return None
    result = validate_email(str(value).strip(), check_deliverability=False)
    return result.normalized.lower()


def email_exists(tenant_id, email, exclude_id=None):
    stmt = select(Member.id).where(Member.tenant_id == tenant_id, Member.email == email)
    if exclude_id is not None:
        stmt = stmt.where(Member.id != exclude_id)
    return db.session.execute(stmt.limit(1)).first() is not None


def _required_name(data, field, errors):
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        errors[field] = "required"
        return None
    return value.strip()


def length_errors(fields):
    """Payload key -> message for column values longer than the column allows."""
    errors = {}
    for column, limit in MEMBER_COLUMN_LIMITS.items():
        value = fields.get(column)
        if isinstance(value, str) and len(value) > limit:
            errors[_PAYLOAD_KEYS[column]] = f"max {limit} characters"
    return errors


def _member_fields(data, partial=False):
    """Validate a create/update payload and map it onto column names."""
    errors = {}
    fields = {}

    for key, column in (("firstName", "first_name"), ("lastName", "last_name")):
        if key in data or not partial:
            fields[column] = _required_name(data, key, errors)

    if "email" in data:
        try:
            fields["email"] = normalize_email(data["email"])
        except EmailNotValidError as exc:
            errors["email"] = str(exc)

    if "dateOfBirth" in data:
        try:
            fields["date_of_birth"] = parse_date_input(data["dateOfBirth"])
        except ValueError as exc:
            errors["dateOfBirth"] = str(exc)

    if "gender" in data:
        fields["gender"] = parse_gender(data["gender"])
        if data["gender"] and fields["gender"] is None:
            errors["gender"] = "must be one of MALE, FEMALE, OTHER"

    if "maritalStatus" in data:
        fields["marital_status"] = parse_marital_status(data["maritalStatus"])
        if data["maritalStatus"] and fields["marital_status"] is None:
            errors["maritalStatus"] = "must be one of SINGLE, MARRIED, DIVORCED, WIDOWED, OTHER"

    for key, column in _TEXT_FIELDS.items():
        if key in data:
            value = data[key]
            if value is not None:
                value = str(value).strip() or None
            fields[column] = value

    if data.get("status") is not None:
        if data["status"] not in MEMBER_STATUSES:
            errors["status"] = f"must be one of {', '.join(MEMBER_STATUSES)}"
        else:
            fields["status"] = data["status"]

    for key, message in length_errors(fields).items():
        errors.setdefault(key, message)

    if errors:
        raise ValidationError("Invalid member", details=errors)
    return fields


def _resolve_assignee(tenant_id, user_id):
    if user_id is None:
        return None
    return get_scoped(User, user_id, tenant_id=tenant_id, code="USER_NOT_FOUND").id


def _clean_tag(tag):
    if not isinstance(tag, str) or not tag.strip():
        raise ValidationError("tag is required", details={"tag": "required"})
    tag = tag.strip()
    if len(tag) > 100:
        raise ValidationError("tag is too long", details={"tag": "max 100 characters"})
    return tag


# ═══════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════

def create_member(tenant_id, actor_user_id, data):
    """Create a member and place them on their first stage.

    `currentStageId` is optional; without it the member starts on the
    lowest-order stage of the pathway.

    Raises:
        ValidationError: bad payload or NO_STAGES_CONFIGURED
        NotFoundError: STAGE_NOT_FOUND / USER_NOT_FOUND
        ConflictError: EMAIL_EXISTS
    """
    pathway = data.get("pathway")
    validate_pathway(pathway)
    fields = _member_fields(data)
    fields.pop("status", None)

    with atomic():
        if fields.get("email") and email_exists(tenant_id, fields["email"]):
            raise ConflictError("Member", "email", fields["email"], code="EMAIL_EXISTS",
                                message="A member with this email already exists")

        if data.get("currentStageId") is not None:
            stage = get_scoped(Stage, data["currentStageId"], tenant_id=tenant_id,
                               code="STAGE_NOT_FOUND", pathway=pathway)
        else:
            stage = get_first_stage(tenant_id, pathway)
            if stage is None:
                raise ValidationError(
                    f"No stages configured for pathway {pathway}",
                    code="NO_STAGES_CONFIGURED",
                )

        member = Member(
            tenant_id=tenant_id,
            pathway=pathway,
            assigned_to_id=_resolve_assignee(tenant_id, data.get("assignedToId")),
            created_by_id=actor_user_id,
            **fields,
        )
        place_member(member, stage, actor_user_id)
        db.session.flush()
        add_system_note(member, f"Member added to {pathway} pathway", created_by_id=actor_user_id)

        for tag in dict.fromkeys(_clean_tag(t) for t in data.get("tags") or ()):
            db.session.add(MemberTag(member_id=member.id, tag=tag))

        adjust_member_count(tenant_id, 1)
        db.session.flush()
        member_id = member.id

    logger.info("Member %s created on stage %s (%s)", member_id, stage.id, pathway,
                extra={"tenant_id": tenant_id, "member_id": member_id, "stage_id": stage.id})
    return member.to_dict()


# ═══════════════════════════════════════════════════════════════
# Read
# ═══════════════════════════════════════════════════════════════

def get_member_model(tenant_id, member_id):
    return get_scoped(Member, member_id, tenant_id=tenant_id, code=_MEMBER_NOT_FOUND)


def get_member(tenant_id, member_id, member_guard=None):
    """Member detail with recent notes, open tasks, tags and stage history."""
    member = get_member_model(tenant_id, member_id)
    if member_guard is not None:
        member_guard(member)

    notes = db.session.execute(
        select(Note).where(Note.member_id == member.id)
        .order_by(Note.created_at.desc(), Note.id.desc())
        .limit(RECENT_NOTES_LIMIT)
    ).scalars().all()
    open_tasks = db.session.execute(
        select(Task).where(Task.member_id == member.id, Task.completed.is_(False))
        .order_by(Task.due_date, Task.id)
    ).scalars().all()

    result = member.to_dict()
    result["notes"] = [n.to_dict() for n in notes]
    result["tasks"] = [t.to_dict() for t in open_tasks]
    result["tags"] = [t.to_dict() for t in member.tags]
    result["stageHistory"] = [h.to_dict() for h in reversed(member.history)]
    return result


def list_members(tenant_id, filters=None, page=1, limit=50):
    """Filter by pathway, status, stageId, assignedToId and a free-text search.

    Newest members first.
    """
    filters = filters or {}
    stmt = select(Member).where(Member.tenant_id == tenant_id)
    if filters.get("pathway"):
        validate_pathway(filters["pathway"])
        stmt = stmt.where(Member.pathway == filters["pathway"])
    if filters.get("status"):
        stmt = stmt.where(Member.status == filters["status"])
    if filters.get("stageId") is not None:
        stmt = stmt.where(Member.current_stage_id == filters["stageId"])
    if filters.get("assignedToId") is not None:
        stmt = stmt.where(Member.assigned_to_id == filters["assignedToId"])
    search = (filters.get("search") or "").strip()
    if search:
        q = f"%{search}%"
        stmt = stmt.where(or_(
            Member.first_name.ilike(q),
            Member.last_name.ilike(q),
            Member.email.ilike(q),
            Member.phone.ilike(q),
        ))

    items, pagination = paginate_select(
        stmt.order_by(Member.created_at.desc(), Member.id.desc()), page, limit,
    )
    return [m.to_dict() for m in items], pagination


def list_history(tenant_id, member_id, member_guard=None):
    member = get_member_model(tenant_id, member_id)
    if member_guard is not None:
        member_guard(member)
    rows = db.session.execute(
        select(StageHistory).where(StageHistory.member_id == member.id)
        .order_by(StageHistory.created_at.desc(), StageHistory.id.desc())
    ).scalars().all()
    return [h.to_dict() for h in rows]


def list_notes(tenant_id, member_id, member_guard=None):
    member = get_member_model(tenant_id, member_id)
    if member_guard is not None:
        member_guard(member)
    rows = db.session.execute(
        select(Note).where(Note.member_id == member.id)
        .order_by(Note.created_at.desc(), Note.id.desc())
    ).scalars().all()
    return [n.to_dict() for n in rows]


# ═══════════════════════════════════════════════════════════════
# Update / delete
# ═══════════════════════════════════════════════════════════════

def update_member(tenant_id, member_id, data, member_guard=None):
    """Patch demographics, status or assignee.

    The stage pointer and pathway are not writable here; stage changes go
    through PATCH /members/<id>/stage.
    """
    locked = sorted(k for k in ("currentStageId", "pathway") if k in data)
    if locked:
        raise ValidationError(
            "Stage and pathway cannot be changed by update; use the stage endpoint",
            details={k: "read-only" for k in locked},
        )
    fields = _member_fields(data, partial=True)
    expected_version = data.get("expectedVersion")

    with atomic():
        member = get_member_model(tenant_id, member_id)
        if member_guard is not None:
            member_guard(member)
        if expected_version is not None and expected_version != member.version:
            raise ConflictError(
                "Member", "version", expected_version,
                message=(f"Member {member_id} is at version {member.version}, "
                         f"expected {expected_version}; reload and retry"),
            )
        if fields.get("email") and email_exists(tenant_id, fields["email"], exclude_id=member.id):
            raise ConflictError("Member", "email", fields["email"], code="EMAIL_EXISTS",
                                message="A member with this email already exists")
        if "assignedToId" in data:
            member.assigned_to_id = _resolve_assignee(tenant_id, data["assignedToId"])
        for column, value in fields.items():
            setattr(member, column, value)

    logger.info("Member %s updated", member_id,
                extra={"tenant_id": tenant_id, "member_id": member_id})
    return member.to_dict()


def delete_member(tenant_id, member_id):
    """Delete a member with its history, notes, tags and tasks."""
    with atomic():
        member = get_member_model(tenant_id, member_id)
        db.session.delete(member)
        adjust_member_count(tenant_id, -1)

    logger.info("Member %s deleted", member_id,
                extra={"tenant_id": tenant_id, "member_id": member_id})


# ═══════════════════════════════════════════════════════════════
# Notes & tags
# ═══════════════════════════════════════════════════════════════

def add_note(tenant_id, member_id, content, user_id, member_guard=None):
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("content is required", details={"content": "required"})
    with atomic():
        member = get_member_model(tenant_id, member_id)
        if member_guard is not None:
            member_guard(member)
        note = Note(member_id=member.id, content=content.strip(),
                    is_system=False, created_by_id=user_id)
        db.session.add(note)
    return note.to_dict()


def add_tag(tenant_id, member_id, tag, member_guard=None):
    tag = _clean_tag(tag)
    with atomic():
        member = get_member_model(tenant_id, member_id)
        if member_guard is not None:
            member_guard(member)
        exists = db.session.execute(
            select(func.count(MemberTag.id))
            .where(MemberTag.member_id == member.id, MemberTag.tag == tag)
        ).scalar_one()
        if exists:
            raise ConflictError("MemberTag", "tag", tag, code="TAG_EXISTS",
                                message=f"Member already has tag {tag!r}")
        member_tag = MemberTag(member_id=member.id, tag=tag)
        db.session.add(member_tag)
    return member_tag.to_dict()


def remove_tag(tenant_id, member_id, tag_id, member_guard=None):
    with atomic():
        member = get_member_model(tenant_id, member_id)
        if member_guard is not None:
            member_guard(member)
        member_tag = get_scoped(MemberTag, tag_id, member_id=member.id,
                                resource="Tag", code="TAG_NOT_FOUND")
        db.session.delete(member_tag)
