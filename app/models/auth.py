"""
Auth Models — tenants and users.

Identity itself lives with the external auth provider; these rows mirror the
church (tenant) and the staff/volunteer accounts that own members and tasks.
The access token carries the user's role, ROLES below is the closed set.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import _iso


ROLES = ("SUPER_ADMIN", "ADMIN", "TEAM_LEADER", "VOLUNTEER")


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    plan = db.Column(db.String(50), default="trial")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    # Denormalised; written only through member_service.adjust_member_count
    member_count = db.Column(db.Integer, default=0, nullable=False)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "plan": self.plan,
            "isActive": self.is_active,
            "memberCount": self.member_count or 0,
            "settings": self.settings or {},
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    role = db.Column(db.String(30), nullable=False, default="VOLUNTEER")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
    )

    tenant = db.relationship("Tenant", back_populates="users")

    @property
    def full_name(self):
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def to_dict(self):
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role,
            "isActive": self.is_active,
        }

    def to_summary(self):
        """Compact form embedded in member/task payloads."""
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
        }
