"""Create client, care plan, draft, staff assignment and activity tables per tenant.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19
"""

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

from alembic import context, op
import sqlalchemy as sa


def _is_tenant_run() -> bool:
    return context.get_x_argument(as_dictionary=True).get("schema") == "tenant"


def upgrade() -> None:
    if not _is_tenant_run():
        return

    op.create_table(
        "clients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("address", sa.Text()),
        sa.Column("date_of_birth", sa.Date()),
        sa.Column("age_group", sa.String(20), server_default="adult", nullable=False),
        sa.Column("branch_id", sa.String(36), index=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "care_plans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("status", sa.String(30), server_default="pending_approval", nullable=False, index=True),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("provider_type", sa.String(20), server_default="staff", nullable=False),
        sa.Column("provider_name", sa.String(255)),
        sa.Column("start_date", sa.Date()),
        sa.Column("review_date", sa.Date()),
        sa.Column("priority", sa.String(20), server_default="medium", nullable=False),
        sa.Column("data", sa.JSON()),
        sa.Column("completion_percentage", sa.Integer(), server_default="0", nullable=False),
        sa.Column("finalized_at", sa.DateTime()),
        sa.Column("finalized_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "care_plan_drafts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False, index=True),
        sa.Column("care_plan_id", sa.String(36), sa.ForeignKey("care_plans.id"), index=True),
        sa.Column("auto_save_data", sa.JSON()),
        sa.Column("last_step_completed", sa.Integer(), server_default="1", nullable=False),
        sa.Column("catalog_version", sa.Integer()),
        sa.Column("completion_percentage", sa.Integer(), server_default="0", nullable=False),
        sa.Column("status", sa.String(20), server_default="draft", nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_care_plan_drafts_lookup", "care_plan_drafts",
        ["client_id", "care_plan_id", "status", "updated_at"],
    )

    op.create_table(
        "care_plan_staff_assignments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "care_plan_id", sa.String(36),
            sa.ForeignKey("care_plans.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("staff_id", sa.String(36), nullable=False, index=True),
        sa.Column("is_primary", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("care_plan_id", "staff_id", name="uq_care_plan_staff"),
    )

    op.create_table(
        "client_medications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("care_plan_id", sa.String(36), sa.ForeignKey("care_plans.id"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("dosage", sa.String(100)),
        sa.Column("frequency", sa.String(100)),
        sa.Column("instructions", sa.Text()),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor_id", sa.String(36), nullable=False, index=True),
        sa.Column("actor_role", sa.String(50)),
        sa.Column("action", sa.String(50), nullable=False, index=True),
        sa.Column("care_plan_id", sa.String(36), index=True),
        sa.Column("client_id", sa.String(36), index=True),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False, index=True),
    )


def downgrade() -> None:
    if not _is_tenant_run():
        return
    op.drop_table("activity_logs")
    op.drop_table("client_medications")
    op.drop_table("care_plan_staff_assignments")
    op.drop_index("ix_care_plan_drafts_lookup", table_name="care_plan_drafts")
    op.drop_table("care_plan_drafts")
    op.drop_table("care_plans")
    op.drop_table("clients")
