"""add gift certificates

Revision ID: e41b7d2c6a05
Revises: 7c2e5a1b9d40
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "e41b7d2c6a05"
down_revision = "7c2e5a1b9d40"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "gift_certificates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime()),
        sa.Column("redeemed_by_id", sa.Integer(), sa.ForeignKey("user.id")),
        sa.Column("redeemed_at", sa.DateTime()),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id")),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_gift_certificates_code", "gift_certificates", ["code"], unique=True)
    op.create_index("ix_gift_certificates_redeemed_by_id", "gift_certificates", ["redeemed_by_id"])


def downgrade():
    op.drop_index("ix_gift_certificates_redeemed_by_id", table_name="gift_certificates")
    op.drop_index("ix_gift_certificates_code", table_name="gift_certificates")
    op.drop_table("gift_certificates")
