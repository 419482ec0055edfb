"""
Pathway Progression Platform
Task model — follow-up work attached to a member.

Lifecycle:
    pending (completed=False) → completed (terminal, completed_at stamped once)

Rule-generated tasks carry created_by_rule=True and the originating
automation_rule_id (nulled if the rule is later deleted).
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel, _iso


class Task(TenantModel):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(
        db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    description = db.Column(db.Text, nullable=False)
    due_date = db.Column(db.DateTime, nullable=False)
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM")
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_by_rule = db.Column(db.Boolean, nullable=False, default=False)
    automation_rule_id = db.Column(
        db.Integer, db.ForeignKey("automation_rules.id", ondelete="SET NULL"), nullable=True
    )
    completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        TenantModel.tenant_composite_index("tasks", "completed", "due_date"),
    )

    member = db.relationship("Member", back_populates="tasks")
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    def to_dict(self, include_member=False):
        d = {
            "id": self.id,
            "tenantId": self.tenant_id,
            "memberId": self.member_id,
            "description": self.description,
            "dueDate": _iso(self.due_date),
            "priority": self.priority,
            "assignedToId": self.assigned_to_id,
            "createdById": self.created_by_id,
            "createdByRule": self.created_by_rule,
            "automationRuleId": self.automation_rule_id,
            "completed": self.completed,
            "completedAt": _iso(self.completed_at),
            "createdAt": _iso(self.created_at),
        }
        if include_member and self.member is not None:
            d["member"] = {
                "id": self.member.id,
                "firstName": self.member.first_name,
                "lastName": self.member.last_name,
            }
        return d
