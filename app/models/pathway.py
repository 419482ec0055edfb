"""
Pathway Progression Platform
Pathway domain models — stages and their automation rules.

Models:
    - Stage:            one ordered step of a pathway, per tenant
    - AutomationRule:   "on stage entry, create task" binding owned by a Stage

Architecture:
    Tenant ──1:N──▶ Stage (partitioned by pathway) ──1:N──▶ AutomationRule
    Stage ◀──N:1── Member.current_stage_id

Ordering:
    Within one (tenant_id, pathway) the stage `order` values are unique and,
    after any registry operation returns, dense from 0. The registry in
    app/services/stage_service.py is the only writer of `order`; there is no
    DB unique constraint on it because shift updates pass through transient
    duplicates inside the transaction.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel, _iso


# ── Constants ────────────────────────────────────────────────────────────────

PATHWAYS = ("NEWCOMER", "NEW_BELIEVER")

AUTO_ADVANCE_TASK_COMPLETED = "TASK_COMPLETED"
AUTO_ADVANCE_TIME_IN_STAGE = "TIME_IN_STAGE"
AUTO_ADVANCE_TYPES = (AUTO_ADVANCE_TASK_COMPLETED, AUTO_ADVANCE_TIME_IN_STAGE)

TASK_PRIORITIES = ("LOW", "MEDIUM", "HIGH")

# Higher rank fires first when a stage has several rules.
PRIORITY_RANK = {"LOW": 1, "MEDIUM": 2, "HIGH": 3}


class Stage(TenantModel):
    __tablename__ = "stages"

    id = db.Column(db.Integer, primary_key=True)
    pathway = db.Column(db.String(30), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    order = db.Column(db.Integer, nullable=False, default=0)
    auto_advance_enabled = db.Column(db.Boolean, nullable=False, default=False)
    auto_advance_type = db.Column(db.String(30))
    auto_advance_value = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "pathway", "name", name="uq_stage_tenant_pathway_name"),
        TenantModel.tenant_composite_index("stages", "pathway", "order"),
    )

    automation_rules = db.relationship(
        "AutomationRule",
        back_populates="stage",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    def to_dict(self, member_count=None, rule_count=None):
        d = {
            "id": self.id,
            "tenantId": self.tenant_id,
            "pathway": self.pathway,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "autoAdvanceEnabled": self.auto_advance_enabled,
            "autoAdvanceType": self.auto_advance_type,
            "autoAdvanceValue": self.auto_advance_value,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if member_count is not None:
            d["memberCount"] = member_count
        if rule_count is not None:
            d["automationRuleCount"] = rule_count
        return d

    def to_summary(self):
        return {"id": self.id, "name": self.name, "pathway": self.pathway, "order": self.order}

    def __repr__(self):
        return f"<Stage {self.id} {self.pathway}#{self.order} {self.name!r}>"


class AutomationRule(TenantModel):
    __tablename__ = "automation_rules"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer,
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    task_description = db.Column(db.Text, nullable=False)
    days_due = db.Column(db.Integer, nullable=False, default=0)
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM")
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("days_due >= 0", name="ck_automation_rules_days_due"),
    )

    stage = db.relationship("Stage", back_populates="automation_rules")

    def to_dict(self, include_stage=False):
        d = {
            "id": self.id,
            "tenantId": self.tenant_id,
            "stageId": self.stage_id,
            "name": self.name,
            "taskDescription": self.task_description,
            "daysDue": self.days_due,
            "priority": self.priority,
            "enabled": self.enabled,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if include_stage and self.stage is not None:
            d["stage"] = self.stage.to_summary()
        return d
