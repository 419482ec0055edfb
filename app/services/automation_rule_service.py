"""
Automation Rule Set — "on entering stage S, create task T" bindings.

Rules are only ever fired by the progression engine's stage-entry event
(app/services/progression.py); this module reads and maintains them.
"""

import logging

from sqlalchemy import case, func, select

from app.core.exceptions import ValidationError
from app.models import db
from app.models.pathway import PRIORITY_RANK, TASK_PRIORITIES, AutomationRule, Stage
from app.services.helpers.scoped_queries import get_scoped
from app.services.helpers.transaction import atomic

logger = logging.getLogger(__name__)

_RULE_NOT_FOUND = "RULE_NOT_FOUND"

# Upper bound for daysDue (ten years); larger offsets overflow datetime
MAX_DAYS_DUE = 3650

# SQL mirror of PRIORITY_RANK so HIGH sorts above MEDIUM above LOW
priority_rank = case(PRIORITY_RANK, value=AutomationRule.priority, else_=0)


def find_enabled_rules_for_stage(stage_id):
    """Enabled rules of a stage, HIGH priority first, then creation order."""
    return db.session.execute(
        select(AutomationRule)
        .where(AutomationRule.stage_id == stage_id, AutomationRule.enabled.is_(True))
        .order_by(priority_rank.desc(), AutomationRule.id)
    ).scalars().all()


# ── Validation ───────────────────────────────────────────────────────────────

def _validate_fields(data, partial=False):
    errors = {}
    if not partial:
        stage_id = data.get("stageId")
        if isinstance(stage_id, bool) or not isinstance(stage_id, int):
            errors["stageId"] = "required"
    for field in ("name", "taskDescription"):
        if field in data or not partial:
            value = data.get(field)
            if not isinstance(value, str) or not value.strip():
                errors[field] = "required"
    if "daysDue" in data or not partial:
        days = data.get("daysDue")
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            errors["daysDue"] = "must be a non-negative integer"
        elif days > MAX_DAYS_DUE:
            errors["daysDue"] = f"must be at most {MAX_DAYS_DUE}"
    if data.get("priority") is not None and data["priority"] not in TASK_PRIORITIES:
        errors["priority"] = f"must be one of {', '.join(TASK_PRIORITIES)}"
    if "enabled" in data and not isinstance(data["enabled"], bool):
        errors["enabled"] = "must be a boolean"
    if errors:
        raise ValidationError("Invalid automation rule", details=errors)


# ── Reads ────────────────────────────────────────────────────────────────────

def list_rules(tenant_id, stage_id=None):
    stmt = select(AutomationRule).where(AutomationRule.tenant_id == tenant_id)
    if stage_id is not None:
        stmt = stmt.where(AutomationRule.stage_id == stage_id)
    rules = db.session.execute(
        stmt.order_by(AutomationRule.stage_id, priority_rank.desc(), AutomationRule.id)
    ).scalars().all()
    return [r.to_dict(include_stage=True) for r in rules]


def get_rule(tenant_id, rule_id):
    rule = get_scoped(AutomationRule, rule_id, tenant_id=tenant_id,
                      resource="Automation rule", code=_RULE_NOT_FOUND)
    return rule.to_dict(include_stage=True)


def get_rule_stats(tenant_id):
    total = db.session.execute(
        select(func.count(AutomationRule.id)).where(AutomationRule.tenant_id == tenant_id)
    ).scalar_one()
    enabled = db.session.execute(
        select(func.count(AutomationRule.id)).where(
            AutomationRule.tenant_id == tenant_id, AutomationRule.enabled.is_(True),
        )
    ).scalar_one()
    stages_with_rules = db.session.execute(
        select(func.count(func.distinct(AutomationRule.stage_id)))
        .where(AutomationRule.tenant_id == tenant_id)
    ).scalar_one()
    return {
        "total": total,
        "enabled": enabled,
        "disabled": total - enabled,
        "byStage": stages_with_rules,
    }


# ── Writes ───────────────────────────────────────────────────────────────────

def create_rule(tenant_id, data):
    """Create a rule on a stage of the same tenant."""
    _validate_fields(data)
    with atomic():
        stage = get_scoped(Stage, data.get("stageId"), tenant_id=tenant_id, code="STAGE_NOT_FOUND")
        rule = AutomationRule(
            tenant_id=tenant_id,
            stage_id=stage.id,
            name=data["name"].strip(),
            task_description=data["taskDescription"].strip(),
            days_due=data["daysDue"],
            priority=data.get("priority") or "MEDIUM",
            enabled=data.get("enabled", True),
        )
        db.session.add(rule)
        db.session.flush()
        rule_id = rule.id

    logger.info("Created automation rule %s (%s) for stage %s", rule_id, rule.name, stage.name,
                extra={"tenant_id": tenant_id, "stage_id": stage.id})
    return rule.to_dict(include_stage=True)


def update_rule(tenant_id, rule_id, data):
    _validate_fields(data, partial=True)
    with atomic():
        rule = get_scoped(AutomationRule, rule_id, tenant_id=tenant_id,
                          resource="Automation rule", code=_RULE_NOT_FOUND)
        if "name" in data:
            rule.name = data["name"].strip()
        if "taskDescription" in data:
            rule.task_description = data["taskDescription"].strip()
        if "daysDue" in data:
            rule.days_due = data["daysDue"]
        if data.get("priority") is not None:
            rule.priority = data["priority"]
        if "enabled" in data:
            rule.enabled = data["enabled"]

    logger.info("Updated automation rule %s", rule_id, extra={"tenant_id": tenant_id})
    return rule.to_dict(include_stage=True)


def toggle_rule(tenant_id, rule_id, enabled):
    if not isinstance(enabled, bool):
        raise ValidationError("enabled must be a boolean", details={"enabled": "must be a boolean"})
    with atomic():
        rule = get_scoped(AutomationRule, rule_id, tenant_id=tenant_id,
                          resource="Automation rule", code=_RULE_NOT_FOUND)
        rule.enabled = enabled

    logger.info("%s automation rule %s", "Enabled" if enabled else "Disabled", rule_id,
                extra={"tenant_id": tenant_id})
    return rule.to_dict(include_stage=True)


def delete_rule(tenant_id, rule_id):
    with atomic():
        rule = get_scoped(AutomationRule, rule_id, tenant_id=tenant_id,
                          resource="Automation rule", code=_RULE_NOT_FOUND)
        db.session.delete(rule)

    logger.info("Deleted automation rule %s", rule_id, extra={"tenant_id": tenant_id})
