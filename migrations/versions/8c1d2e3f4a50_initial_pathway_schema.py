"""initial_pathway_schema

Create tenants, users, stages, automation_rules, members, stage_history,
notes, member_tags and tasks.

Revision ID: 8c1d2e3f4a50
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "8c1d2e3f4a50"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "tenants" not in existing_tables:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("plan", sa.String(length=50), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("settings", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="VOLUNTEER"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        )
        op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    if "stages" not in existing_tables:
        op.create_table(
            "stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("pathway", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("auto_advance_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("auto_advance_type", sa.String(length=30), nullable=True),
            sa.Column("auto_advance_value", sa.String(length=200), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "pathway", "name", name="uq_stage_tenant_pathway_name"),
        )
        op.create_index("ix_stages_tenant_id", "stages", ["tenant_id"])
        op.create_index("ix_stages_tenant_pathway_order", "stages", ["tenant_id", "pathway", "order"])

    if "automation_rules" not in existing_tables:
        op.create_table(
            "automation_rules",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("task_description", sa.Text(), nullable=False),
            sa.Column("days_due", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="MEDIUM"),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.CheckConstraint("days_due >= 0", name="ck_automation_rules_days_due"),
            sa.ForeignKeyConstraint(["stage_id"], ["stages.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_automation_rules_tenant_id", "automation_rules", ["tenant_id"])
        op.create_index("ix_automation_rules_stage_id", "automation_rules", ["stage_id"])

    if "members" not in existing_tables:
        op.create_table(
            "members",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=254), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("date_of_birth", sa.Date(), nullable=True),
            sa.Column("gender", sa.String(length=10), nullable=True),
            sa.Column("marital_status", sa.String(length=10), nullable=True),
            sa.Column("address", sa.String(length=300), nullable=True),
            sa.Column("city", sa.String(length=100), nullable=True),
            sa.Column("state", sa.String(length=100), nullable=True),
            sa.Column("zip", sa.String(length=20), nullable=True),
            sa.Column("pathway", sa.String(length=30), nullable=False),
            sa.Column("current_stage_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
            sa.Column("assigned_to_id", sa.Integer(), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("last_stage_change_date", sa.DateTime(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["current_stage_id"], ["stages.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_members_tenant_id", "members", ["tenant_id"])
        op.create_index("ix_members_current_stage_id", "members", ["current_stage_id"])
        op.create_index("ix_members_assigned_to_id", "members", ["assigned_to_id"])
        op.create_index("ix_members_tenant_email", "members", ["tenant_id", "email"])
        op.create_index("ix_members_tenant_pathway_status", "members", ["tenant_id", "pathway", "status"])

    if "stage_history" not in existing_tables:
        op.create_table(
            "stage_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("from_stage_id", sa.Integer(), nullable=True),
            sa.Column("to_stage_id", sa.Integer(), nullable=True),
            sa.Column("changed_by", sa.Integer(), nullable=True),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["changed_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["from_stage_id"], ["stages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["to_stage_id"], ["stages.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_history_member_id", "stage_history", ["member_id"])

    if "notes" not in existing_tables:
        op.create_table(
            "notes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notes_member_id", "notes", ["member_id"])

    if "member_tags" not in existing_tables:
        op.create_table(
            "member_tags",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("tag", sa.String(length=100), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("member_id", "tag", name="uq_member_tag"),
        )
        op.create_index("ix_member_tags_member_id", "member_tags", ["member_id"])

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("due_date", sa.DateTime(), nullable=False),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="MEDIUM"),
            sa.Column("assigned_to_id", sa.Integer(), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("created_by_rule", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("automation_rule_id", sa.Integer(), nullable=True),
            sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["automation_rule_id"], ["automation_rules.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_tasks_tenant_id", "tasks", ["tenant_id"])
        op.create_index("ix_tasks_member_id", "tasks", ["member_id"])
        op.create_index("ix_tasks_assigned_to_id", "tasks", ["assigned_to_id"])
        op.create_index("ix_tasks_tenant_completed_due_date", "tasks", ["tenant_id", "completed", "due_date"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "tasks", "member_tags", "notes", "stage_history", "members",
        "automation_rules", "stages", "users", "tenants",
    ):
        if table in existing_tables:
            op.drop_table(table)
