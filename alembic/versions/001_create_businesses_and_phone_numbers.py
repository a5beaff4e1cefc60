"""Create businesses and phone_numbers tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "businesses",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String, nullable=False),
        sa.Column("owner_name", sa.String, nullable=True),
        sa.Column("owner_email", sa.String, nullable=True),
        sa.Column("owner_phone", sa.String, nullable=True),
        sa.Column("stripe_customer_id", sa.String, unique=True, nullable=True),
        sa.Column("subscription_status", sa.String, server_default="trial"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "phone_numbers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("business_id", sa.String(36), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("phone_number", sa.String, nullable=False),
        sa.Column("telnyx_number_id", sa.String, nullable=True, index=True),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "BLOCKED", "RELEASED", name="phone_number_status_enum"),
            nullable=False,
            server_default="ACTIVE",
            index=True,
        ),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("phone_numbers")
    op.execute("DROP TYPE IF EXISTS phone_number_status_enum")
    op.drop_table("businesses")
