"""Create trial_usages table

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "trial_usages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("identifier", sa.String, nullable=False),
        sa.Column("identifier_type", sa.String, nullable=False, server_default="business_id"),
        sa.Column("business_id", sa.String(36), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=True, index=True),
        sa.Column("calls_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("calls_remaining", sa.Integer, nullable=False, server_default="10"),
        sa.Column("calls_limit", sa.Integer, nullable=False, server_default="10"),
        sa.Column("days_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("days_remaining", sa.Integer, nullable=False, server_default="15"),
        sa.Column("days_limit", sa.Integer, nullable=False, server_default="15"),
        sa.Column("trial_end_date", sa.DateTime, nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "warned", "blocked", "pending_deletion", "deleted", "paid", name="trial_status_enum"),
            nullable=False,
            server_default="active",
            index=True,
        ),
        sa.Column("is_blocked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("block_reason", sa.String, nullable=True),
        sa.Column("warning_email_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("warning_email_date", sa.DateTime, nullable=True),
        sa.Column("blocked_email_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("blocked_email_date", sa.DateTime, nullable=True),
        sa.Column("deletion_warning_email_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("deletion_warning_email_date", sa.DateTime, nullable=True),
        sa.Column("deletion_email_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("deletion_email_date", sa.DateTime, nullable=True),
        sa.Column("scheduled_deletion_date", sa.DateTime, nullable=True),
        sa.Column("last_call_date", sa.DateTime, nullable=True),
        sa.Column("last_activity_date", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), index=True),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    # Unique identifier is what makes concurrent first-touch creation safe
    op.create_index("ix_trial_usages_identifier", "trial_usages", ["identifier"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_trial_usages_identifier", table_name="trial_usages")
    op.drop_table("trial_usages")
    op.execute("DROP TYPE IF EXISTS trial_status_enum")
