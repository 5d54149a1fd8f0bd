"""billing core schema: users, ledger, promocodes, invoices, servers

Revision ID: 7c2e5a1b9d40
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "7c2e5a1b9d40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(80), nullable=False, unique=True),
        sa.Column("email", sa.String(120), nullable=False, unique=True),
        sa.Column("name", sa.String(120)),
        sa.Column("company", sa.String(120)),
        sa.Column("phone", sa.String(40)),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("referral_balance", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("referral_code", sa.String(10), unique=True),
        sa.Column("referred_by_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("notify_email", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_admin", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
    )

    op.create_table(
        "plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "servers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("suspended_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_servers_user_id", "servers", ["user_id"])
    op.create_index("ix_servers_status", "servers", ["status"])
    op.create_index("ix_servers_expires_at", "servers", ["expires_at"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(255)),
        sa.Column("payment_method", sa.String(20)),
        sa.Column("payment_id", sa.String(120)),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("metadata", sa.JSON()),
        sa.Column("refund_of_id", sa.Integer(), sa.ForeignKey("transactions.id"), unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_status", "transactions", ["status"])
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])
    op.create_index("ix_transactions_payment", "transactions", ["payment_id", "payment_method", "status"])

    op.create_table(
        "referral_earning",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("referrer_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("referred_user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False, unique=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_referral_earning_referrer_id", "referral_earning", ["referrer_id"])

    op.create_table(
        "promocodes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(40), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("min_amount", sa.Numeric(12, 2)),
        sa.Column("max_uses", sa.Integer()),
        sa.Column("max_uses_per_user", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(), nullable=False),
        sa.Column("valid_until", sa.DateTime()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_promocodes_code", "promocodes", ["code"], unique=True)

    op.create_table(
        "promocode_usages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("promocode_id", sa.Integer(), sa.ForeignKey("promocodes.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2)),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint("user_id", "promocode_id", name="uq_promocode_usage_user_code"),
    )
    op.create_index("ix_promocode_usages_user_id", "promocode_usages", ["user_id"])
    op.create_index("ix_promocode_usages_promocode_id", "promocode_usages", ["promocode_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("number", sa.String(20), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("description", sa.String(255)),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="UNPAID"),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_invoices_number", "invoices", ["number"], unique=True)
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    op.create_table(
        "invoice_sequences",
        sa.Column("year", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade():
    op.drop_table("invoice_sequences")

    op.drop_index("ix_invoices_status", table_name="invoices")
    op.drop_index("ix_invoices_user_id", table_name="invoices")
    op.drop_index("ix_invoices_number", table_name="invoices")
    op.drop_table("invoices")

    op.drop_index("ix_promocode_usages_promocode_id", table_name="promocode_usages")
    op.drop_index("ix_promocode_usages_user_id", table_name="promocode_usages")
    op.drop_table("promocode_usages")

    op.drop_index("ix_promocodes_code", table_name="promocodes")
    op.drop_table("promocodes")

    op.drop_index("ix_referral_earning_referrer_id", table_name="referral_earning")
    op.drop_table("referral_earning")

    op.drop_index("ix_transactions_payment", table_name="transactions")
    op.drop_index("ix_transactions_created_at", table_name="transactions")
    op.drop_index("ix_transactions_status", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")

    op.drop_index("ix_servers_expires_at", table_name="servers")
    op.drop_index("ix_servers_status", table_name="servers")
    op.drop_index("ix_servers_user_id", table_name="servers")
    op.drop_table("servers")

    op.drop_table("plans")
    op.drop_table("user")
