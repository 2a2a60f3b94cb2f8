"""user profile plan state"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "userprofile",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("role", sa.String(length=8), nullable=True),
        sa.Column("plan_type", sa.String(length=16), nullable=True),
        sa.Column("plan_status", sa.String(length=16), nullable=True),
        sa.Column("plan_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("plan_requires_payment", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("plan_reference", sa.String(length=64), nullable=True),
        sa.Column("plan_issue", sa.String(length=64), nullable=True),
        sa.Column("billing_profile", sa.JSON(), server_default="{}"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_userprofile_plan_expires_at", "userprofile", ["plan_expires_at"])


def downgrade() -> None:
    op.drop_index("ix_userprofile_plan_expires_at", table_name="userprofile")
    op.drop_table("userprofile")
