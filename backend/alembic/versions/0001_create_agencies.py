"""Create agencies table in the public schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import context, op
import sqlalchemy as sa


def _is_tenant_run() -> bool:
    return context.get_x_argument(as_dictionary=True).get("schema") == "tenant"


def upgrade() -> None:
    if _is_tenant_run():
        return
    op.create_table(
        "agencies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("tenant_schema", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_agencies_tenant_schema", "agencies", ["tenant_schema"], unique=True)


def downgrade() -> None:
    if _is_tenant_run():
        return
    op.drop_index("ix_agencies_tenant_schema", table_name="agencies")
    op.drop_table("agencies")
