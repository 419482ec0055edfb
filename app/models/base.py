"""
TenantModel — Abstract base class for tenant-scoped models.

Every pathway entity (stages, rules, members, tasks) inherits from TenantModel
instead of db.Model directly. This adds:
  - tenant_id FK column with index
  - Composite index macro helper
  - _iso() datetime serialisation helper shared by to_dict()
"""

from app.models import db


def _iso(value):
    """ISO-8601 string for a date/datetime column, or None."""
    return value.isoformat() if value else None


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def tenant_composite_index(cls, name_suffix, *extra_cols):
        """Build a (tenant_id, ...) composite index for __table_args__."""
        name = f"ix_{name_suffix}_tenant_{'_'.join(extra_cols)}"
        cols = ("tenant_id",) + extra_cols
        return db.Index(name, *cols)
