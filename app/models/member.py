"""
Pathway Progression Platform
Member domain models.

Models:
    - Member:        a tracked person occupying exactly one stage of one pathway
    - StageHistory:  immutable audit row, one per progression (or initial placement)
    - Note:          append-only log entry; is_system=True rows narrate automation
    - MemberTag:     free-text label, unique per member

Architecture:
    Tenant ──1:N──▶ Member ──N:1──▶ Stage (current_stage_id)
    Member ──1:N──▶ StageHistory / Note / MemberTag / Task   (cascade delete)

Invariants:
    - current_stage.pathway == member.pathway
    - current_stage_id is only mutated by app/services/progression.py
    - `version` is the SQLAlchemy version counter; every UPDATE bumps it and a
      stale UPDATE raises StaleDataError
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel, _iso


# ── Constants ────────────────────────────────────────────────────────────────

MEMBER_STATUSES = ("ACTIVE", "INTEGRATED", "INACTIVE")
MEMBER_STATUS_ACTIVE = "ACTIVE"
MEMBER_STATUS_INTEGRATED = "INTEGRATED"

GENDERS = ("MALE", "FEMALE", "OTHER")
MARITAL_STATUSES = ("SINGLE", "MARRIED", "DIVORCED", "WIDOWED", "OTHER")

SYSTEM_NOTE_PREFIX = "[System]"

# Widths of the free-text Member columns below
MEMBER_COLUMN_LIMITS = {
    "first_name": 100,
    "last_name": 100,
    "email": 254,
    "phone": 50,
    "address": 300,
    "city": 100,
    "state": 100,
    "zip": 20,
}


class Member(TenantModel):
    __tablename__ = "members"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(254))
    phone = db.Column(db.String(50))
    date_of_birth = db.Column(db.Date)
    gender = db.Column(db.String(10))
    marital_status = db.Column(db.String(10))
    address = db.Column(db.String(300))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    zip = db.Column(db.String(20))

    pathway = db.Column(db.String(30), nullable=False)
    current_stage_id = db.Column(
        db.Integer,
        db.ForeignKey("stages.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status = db.Column(db.String(20), nullable=False, default=MEMBER_STATUS_ACTIVE)
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    last_stage_change_date = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        TenantModel.tenant_composite_index("members", "email"),
        TenantModel.tenant_composite_index("members", "pathway", "status"),
    )
    __mapper_args__ = {"version_id_col": version}

    current_stage = db.relationship("Stage", lazy="joined", innerjoin=True)
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
    history = db.relationship(
        "StageHistory", back_populates="member",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="StageHistory.id",
    )
    notes = db.relationship(
        "Note", back_populates="member",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="Note.id",
    )
    tags = db.relationship(
        "MemberTag", back_populates="member",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    tasks = db.relationship(
        "Task", back_populates="member",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "dateOfBirth": _iso(self.date_of_birth),
            "gender": self.gender,
            "maritalStatus": self.marital_status,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "pathway": self.pathway,
            "currentStageId": self.current_stage_id,
            "currentStage": self.current_stage.to_summary() if self.current_stage else None,
            "status": self.status,
            "assignedToId": self.assigned_to_id,
            "assignedTo": self.assigned_to.to_summary() if self.assigned_to else None,
            "createdById": self.created_by_id,
            "lastStageChangeDate": _iso(self.last_stage_change_date),
            "version": self.version,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Member {self.id} {self.first_name} {self.last_name} stage={self.current_stage_id}>"


class StageHistory(db.Model):
    __tablename__ = "stage_history"

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(
        db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_stage_id = db.Column(
        db.Integer, db.ForeignKey("stages.id", ondelete="SET NULL"), nullable=True
    )
    to_stage_id = db.Column(
        db.Integer, db.ForeignKey("stages.id", ondelete="SET NULL"), nullable=True
    )
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    reason = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    member = db.relationship("Member", back_populates="history")
    from_stage = db.relationship("Stage", foreign_keys=[from_stage_id])
    to_stage = db.relationship("Stage", foreign_keys=[to_stage_id])

    def to_dict(self):
        return {
            "id": self.id,
            "memberId": self.member_id,
            "fromStageId": self.from_stage_id,
            "fromStage": self.from_stage.name if self.from_stage else None,
            "toStageId": self.to_stage_id,
            "toStage": self.to_stage.name if self.to_stage else None,
            "changedBy": self.changed_by,
            "reason": self.reason,
            "createdAt": _iso(self.created_at),
        }


class Note(db.Model):
    __tablename__ = "notes"

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(
        db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content = db.Column(db.Text, nullable=False)
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    member = db.relationship("Member", back_populates="notes")

    def to_dict(self):
        return {
            "id": self.id,
            "memberId": self.member_id,
            "content": self.content,
            "isSystem": self.is_system,
            "createdById": self.created_by_id,
            "createdAt": _iso(self.created_at),
        }


class MemberTag(db.Model):
    __tablename__ = "member_tags"

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(
        db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("member_id", "tag", name="uq_member_tag"),
    )

    member = db.relationship("Member", back_populates="tags")

    def to_dict(self):
        return {"id": self.id, "memberId": self.member_id, "tag": self.tag}
