"""
Stage Registry — ordered stages per (tenant, pathway).

Owns every write to Stage.order. After any function in this module returns,
the stages of each touched (tenant, pathway) carry orders 0..N-1 with no gaps
and no duplicates. Shift updates are issued as single UPDATE statements
inside one transaction.

Transaction policy: every public mutating function commits (or rolls back)
through app.services.helpers.transaction.atomic().
"""

import logging

from sqlalchemy import func, select, update

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.member import Member
from app.models.pathway import (
    AUTO_ADVANCE_TASK_COMPLETED,
    AUTO_ADVANCE_TIME_IN_STAGE,
    AUTO_ADVANCE_TYPES,
    PATHWAYS,
    PRIORITY_RANK,
    AutomationRule,
    Stage,
)
from app.services.helpers.scoped_queries import get_scoped
from app.services.helpers.transaction import atomic
from app.utils.helpers import parse_duration

logger = logging.getLogger(__name__)

_STAGE_NOT_FOUND = "STAGE_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════

def validate_pathway(pathway):
    if pathway not in PATHWAYS:
        raise ValidationError(
            f"Unknown pathway {pathway!r}",
            details={"pathway": f"must be one of {', '.join(PATHWAYS)}"},
        )
    return pathway


def _validate_order(value, field="order"):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            f"{field} must be a non-negative integer",
            details={field: "must be a non-negative integer"},
        )
    return value


def _validate_auto_advance(adv_type, adv_value):
    if adv_type is None:
        return
    if adv_type not in AUTO_ADVANCE_TYPES:
        raise ValidationError(
            f"Unknown autoAdvanceType {adv_type!r}",
            details={"autoAdvanceType": f"must be one of {', '.join(AUTO_ADVANCE_TYPES)}"},
        )
    if adv_type == AUTO_ADVANCE_TIME_IN_STAGE and adv_value and parse_duration(adv_value) is None:
        raise ValidationError(
            "autoAdvanceValue must be a duration such as 7d, 2w or 48h",
            details={"autoAdvanceValue": "invalid duration"},
        )


def _ensure_name_free(tenant_id, pathway, name, exclude_id=None):
    stmt = select(Stage.id).where(
        Stage.tenant_id == tenant_id, Stage.pathway == pathway, Stage.name == name,
    )
    if exclude_id is not None:
        stmt = stmt.where(Stage.id != exclude_id)
    if db.session.execute(stmt).first() is not None:
        raise ConflictError(
            "Stage", "name", name,
            code="DUPLICATE_NAME",
            message=f"Stage name {name!r} already exists in pathway {pathway}",
        )


def _clean_name(name):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required", details={"name": "required"})
    name = name.strip()
    if len(name) > 200:
        raise ValidationError("name is too long", details={"name": "max 200 characters"})
    return name


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════

def _pathway_stages(tenant_id, pathway):
    return db.session.execute(
        select(Stage)
        .where(Stage.tenant_id == tenant_id, Stage.pathway == pathway)
        .order_by(Stage.order, Stage.id)
    ).scalars().all()


def _count_stages(tenant_id, pathway):
    return db.session.execute(
        select(func.count(Stage.id)).where(Stage.tenant_id == tenant_id, Stage.pathway == pathway)
    ).scalar_one()


def _member_counts(tenant_id):
    rows = db.session.execute(
        select(Member.current_stage_id, func.count(Member.id))
        .where(Member.tenant_id == tenant_id)
        .group_by(Member.current_stage_id)
    ).all()
    return dict(rows)


def _rule_counts(tenant_id):
    rows = db.session.execute(
        select(AutomationRule.stage_id, func.count(AutomationRule.id))
        .where(AutomationRule.tenant_id == tenant_id)
        .group_by(AutomationRule.stage_id)
    ).all()
    return dict(rows)


def list_stages(tenant_id, pathway=None):
    """All stages ordered by (pathway, order), each with member and rule counts."""
    stmt = select(Stage).where(Stage.tenant_id == tenant_id)
    if pathway:
        validate_pathway(pathway)
        stmt = stmt.where(Stage.pathway == pathway)
    stages = db.session.execute(stmt.order_by(Stage.pathway, Stage.order)).scalars().all()

    members = _member_counts(tenant_id)
    rules = _rule_counts(tenant_id)
    logger.debug("Retrieved %d stages", len(stages), extra={"tenant_id": tenant_id})
    return [
        s.to_dict(member_count=members.get(s.id, 0), rule_count=rules.get(s.id, 0))
        for s in stages
    ]


def get_stage(tenant_id, stage_id):
    """Stage detail with enabled automation rules, highest priority first."""
    stage = get_scoped(Stage, stage_id, tenant_id=tenant_id, code=_STAGE_NOT_FOUND)
    member_count = db.session.execute(
        select(func.count(Member.id)).where(Member.current_stage_id == stage.id)
    ).scalar_one()
    rules = sorted(
        (r for r in stage.automation_rules if r.enabled),
        key=lambda r: (-PRIORITY_RANK.get(r.priority, 0), r.id),
    )
    d = stage.to_dict(member_count=member_count, rule_count=len(stage.automation_rules))
    d["automationRules"] = [r.to_dict() for r in rules]
    return d


def get_stage_stats(tenant_id, pathway=None):
    """Member count per stage, in pathway order."""
    stmt = select(Stage).where(Stage.tenant_id == tenant_id)
    if pathway:
        validate_pathway(pathway)
        stmt = stmt.where(Stage.pathway == pathway)
    stages = db.session.execute(stmt.order_by(Stage.pathway, Stage.order)).scalars().all()
    members = _member_counts(tenant_id)
    return [
        {
            "id": s.id,
            "name": s.name,
            "pathway": s.pathway,
            "order": s.order,
            "memberCount": members.get(s.id, 0),
        }
        for s in stages
    ]


def get_first_stage(tenant_id, pathway):
    """Lowest-order stage of the pathway, or None when none are configured."""
    return db.session.execute(
        select(Stage)
        .where(Stage.tenant_id == tenant_id, Stage.pathway == pathway)
        .order_by(Stage.order, Stage.id)
        .limit(1)
    ).scalar_one_or_none()


def get_next_stage(stage):
    """Stage with order == stage.order + 1 in the same tenant and pathway."""
    return db.session.execute(
        select(Stage).where(
            Stage.tenant_id == stage.tenant_id,
            Stage.pathway == stage.pathway,
            Stage.order == stage.order + 1,
        )
    ).scalar_one_or_none()


# ═══════════════════════════════════════════════════════════════
# Order maintenance (no commit; callers own the transaction)
# ═══════════════════════════════════════════════════════════════

def _shift_up(tenant_id, pathway, from_order):
    db.session.execute(
        update(Stage)
        .where(Stage.tenant_id == tenant_id, Stage.pathway == pathway, Stage.order >= from_order)
        .values(order=Stage.order + 1)
        .execution_options(synchronize_session="fetch")
    )


def _normalize(tenant_id, pathway):
    for index, stage in enumerate(_pathway_stages(tenant_id, pathway)):
        if stage.order != index:
            stage.order = index
    db.session.flush()


def _reorder_single(stage, new_order):
    n = _count_stages(stage.tenant_id, stage.pathway)
    new_order = min(_validate_order(new_order), max(n - 1, 0))
    old_order = stage.order
    if new_order == old_order:
        return

    base = update(Stage).where(
        Stage.tenant_id == stage.tenant_id,
        Stage.pathway == stage.pathway,
        Stage.id != stage.id,
    )
    if new_order > old_order:
        stmt = base.where(Stage.order > old_order, Stage.order <= new_order).values(order=Stage.order - 1)
    else:
        stmt = base.where(Stage.order >= new_order, Stage.order < old_order).values(order=Stage.order + 1)
    db.session.execute(stmt.execution_options(synchronize_session="fetch"))
    stage.order = new_order
    db.session.flush()


# ═══════════════════════════════════════════════════════════════
# Writes
# ═══════════════════════════════════════════════════════════════

def create_stage(tenant_id, data):
    """Create a stage; an occupied `order` shifts that stage and its successors up.

    `order` omitted → appended at the end. Orders past the end are clamped
    to the end so the pathway stays dense.
    """
    pathway = validate_pathway(data.get("pathway"))
    name = _clean_name(data.get("name"))
    adv_type = data.get("autoAdvanceType")
    adv_value = data.get("autoAdvanceValue")
    _validate_auto_advance(adv_type, adv_value)

    with atomic():
        _ensure_name_free(tenant_id, pathway, name)
        count = _count_stages(tenant_id, pathway)
        order = data.get("order")
        order = count if order is None else min(_validate_order(order), count)

        if order < count:
            _shift_up(tenant_id, pathway, order)

        stage = Stage(
            tenant_id=tenant_id,
            pathway=pathway,
            name=name,
            description=data.get("description"),
            order=order,
            auto_advance_enabled=bool(data.get("autoAdvanceEnabled", False)),
            auto_advance_type=adv_type,
            auto_advance_value=adv_value,
        )
        db.session.add(stage)
        db.session.flush()
        stage_id = stage.id

    logger.info("Created stage %s (%s) in %s at order %d", stage_id, name, pathway, order,
                extra={"tenant_id": tenant_id, "stage_id": stage_id})
    return stage.to_dict(member_count=0, rule_count=0)


def update_stage(tenant_id, stage_id, data):
    """Patch a stage. An `order` change goes through the minimal-shift reorder."""
    with atomic():
        stage = get_scoped(Stage, stage_id, tenant_id=tenant_id, code=_STAGE_NOT_FOUND)

        if "name" in data:
            name = _clean_name(data["name"])
            if name != stage.name:
                _ensure_name_free(tenant_id, stage.pathway, name, exclude_id=stage.id)
                stage.name = name

        adv_type = data.get("autoAdvanceType", stage.auto_advance_type)
        adv_value = data.get("autoAdvanceValue", stage.auto_advance_value)
        _validate_auto_advance(adv_type, adv_value)

        if "description" in data:
            stage.description = data["description"]
        if "autoAdvanceEnabled" in data:
            stage.auto_advance_enabled = bool(data["autoAdvanceEnabled"])
        if "autoAdvanceType" in data:
            stage.auto_advance_type = adv_type
        if "autoAdvanceValue" in data:
            stage.auto_advance_value = adv_value

        if data.get("order") is not None and data["order"] != stage.order:
            _reorder_single(stage, data["order"])

        db.session.flush()

    logger.info("Updated stage %s", stage_id, extra={"tenant_id": tenant_id, "stage_id": stage_id})
    return stage.to_dict()


def reorder_single(tenant_id, stage_id, new_order):
    """Move one stage to `new_order` (clamped to N-1), shifting only the stages in between."""
    with atomic():
        stage = get_scoped(Stage, stage_id, tenant_id=tenant_id, code=_STAGE_NOT_FOUND)
        _reorder_single(stage, new_order)
    return stage.to_dict()


def reorder_stages(tenant_id, pathway, reorders):
    """Apply a bulk reorder [{stageId, newOrder}, ...] as one transaction.

    Listed stages land exactly on their target slots; unlisted stages keep
    their relative order and fill the remaining slots. Targets must be
    distinct and within 0..N-1.
    """
    validate_pathway(pathway)
    if not isinstance(reorders, list) or not reorders:
        raise ValidationError("reorders must be a non-empty list", code="INVALID_REORDER")

    targets = {}
    for entry in reorders:
        if not isinstance(entry, dict):
            raise ValidationError("each reorder must be an object", code="INVALID_REORDER")
        stage_id = entry.get("stageId")
        new_order = entry.get("newOrder")
        if isinstance(stage_id, bool) or not isinstance(stage_id, int):
            raise ValidationError("stageId must be an integer", code="INVALID_REORDER")
        _validate_order(new_order, field="newOrder")
        if stage_id in targets:
            raise ValidationError(
                f"Stage {stage_id} listed more than once", code="INVALID_REORDER",
            )
        targets[stage_id] = new_order

    if len(set(targets.values())) != len(targets):
        raise ValidationError("Target orders must be distinct", code="INVALID_REORDER")

    with atomic():
        stages = _pathway_stages(tenant_id, pathway)
        by_id = {s.id: s for s in stages}
        unknown = sorted(set(targets) - set(by_id))
        if unknown:
            raise NotFoundError("Stage", unknown[0], tenant_id=tenant_id, code=_STAGE_NOT_FOUND)
        n = len(stages)
        out_of_range = [o for o in targets.values() if o >= n]
        if out_of_range:
            raise ValidationError(
                f"newOrder must be below {n}", code="INVALID_REORDER",
                details={"newOrder": out_of_range},
            )

        slots = [None] * n
        for stage_id, new_order in targets.items():
            slots[new_order] = by_id[stage_id]
        remaining = iter(s for s in stages if s.id not in targets)
        for index in range(n):
            if slots[index] is None:
                slots[index] = next(remaining)
        for index, stage in enumerate(slots):
            stage.order = index
        db.session.flush()

        _normalize(tenant_id, pathway)

    logger.info("Reordered %d stage(s) in %s", len(targets), pathway, extra={"tenant_id": tenant_id})
    return [s.to_dict() for s in _pathway_stages(tenant_id, pathway)]


def normalize_orders(tenant_id, pathway):
    """Re-sequence the pathway's stages to 0..N-1 preserving current order."""
    validate_pathway(pathway)
    with atomic():
        _normalize(tenant_id, pathway)


def delete_stage(tenant_id, stage_id):
    """Delete an empty stage (its rules cascade) and close the order gap."""
    with atomic():
        stage = get_scoped(Stage, stage_id, tenant_id=tenant_id, code=_STAGE_NOT_FOUND)
        occupants = db.session.execute(
            select(func.count(Member.id)).where(Member.current_stage_id == stage.id)
        ).scalar_one()
        if occupants:
            raise ValidationError(
                f"Cannot delete stage with {occupants} member(s); move them to another stage first",
                code="STAGE_HAS_MEMBERS",
                details={"memberCount": occupants},
            )
        pathway = stage.pathway
        db.session.delete(stage)
        db.session.flush()
        _normalize(tenant_id, pathway)

    logger.info("Deleted stage %s", stage_id, extra={"tenant_id": tenant_id, "stage_id": stage_id})


# ═══════════════════════════════════════════════════════════════
# Default pathways
# ═══════════════════════════════════════════════════════════════

DEFAULT_STAGES = {
    "NEWCOMER": [
        {"name": "First Visit", "description": "Attended their first service", "rules": [
            {"name": "Welcome Email", "task": "Send welcome email with church information",
             "days": 1, "priority": "HIGH"},
            {"name": "Welcome Call", "task": "Make welcome call to introduce yourself",
             "days": 3, "priority": "HIGH"},
        ]},
        {"name": "Follow-up Call", "description": "Personal follow-up by the care team",
         "auto": "welcome call", "rules": [
            {"name": "Connect Group Invite", "task": "Invite to upcoming connect group event",
             "days": 7, "priority": "MEDIUM"},
        ]},
        {"name": "Second Visit", "description": "Returned for a second service"},
        {"name": "Connect Group", "description": "Joined a connect group"},
        {"name": "Regular Attender", "description": "Attends regularly"},
    ],
    "NEW_BELIEVER": [
        {"name": "Decision Made", "description": "Made a decision to follow Christ", "rules": [
            {"name": "Next Steps Meeting", "task": "Schedule one-on-one meeting to discuss next steps",
             "days": 2, "priority": "HIGH"},
        ]},
        {"name": "Baptism Class", "description": "Attending baptism preparation",
         "auto": "baptism class", "rules": [
            {"name": "Baptism Enrollment", "task": "Enroll in baptism class",
             "days": 7, "priority": "MEDIUM"},
        ]},
        {"name": "Baptized", "description": "Baptized"},
        {"name": "Foundations Course", "description": "Taking the foundations course",
         "auto": "foundations course"},
        {"name": "Serving", "description": "Serving on a team"},
    ],
}


def seed_default_stages(tenant_id):
    """Create the default pathways for a tenant; pathways that already have stages are skipped.

    Returns:
        {"stages": <created count>, "rules": <created count>}
    """
    created_stages = created_rules = 0
    with atomic():
        for pathway, stages in DEFAULT_STAGES.items():
            if _count_stages(tenant_id, pathway):
                logger.info("Pathway %s already configured, skipping seed", pathway,
                            extra={"tenant_id": tenant_id})
                continue
            for order, template in enumerate(stages):
                stage = Stage(
                    tenant_id=tenant_id,
                    pathway=pathway,
                    name=template["name"],
                    description=template.get("description"),
                    order=order,
                    auto_advance_enabled="auto" in template,
                    auto_advance_type=AUTO_ADVANCE_TASK_COMPLETED if "auto" in template else None,
                    auto_advance_value=template.get("auto"),
                )
                db.session.add(stage)
                db.session.flush()
                created_stages += 1
                for rule in template.get("rules", ()):
                    db.session.add(AutomationRule(
                        tenant_id=tenant_id,
                        stage_id=stage.id,
                        name=rule["name"],
                        task_description=rule["task"],
                        days_due=rule["days"],
                        priority=rule["priority"],
                    ))
                    created_rules += 1

    logger.info("Seeded %d stages and %d rules", created_stages, created_rules,
                extra={"tenant_id": tenant_id})
    return {"stages": created_stages, "rules": created_rules}
