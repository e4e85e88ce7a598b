"""initial ledger schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "groups",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("code", sa.String(length=6), nullable=False, unique=True),
        sa.Column("created_by", sa.Text(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default="USD"),
        sa.Column("smart_split_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "group_members",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("user_name", sa.Text()),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("group_id", "user_id", name="group_members_group_user_key"),
    )

    op.create_table(
        "group_expenses",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("paid_by_user_id", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="group_expenses_amount_positive"),
    )

    op.create_table(
        "expense_splits",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "expense_id",
            sa.BigInteger(),
            sa.ForeignKey("group_expenses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("amount_owed", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_settled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("settled_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("expense_id", "user_id", name="expense_splits_expense_user_key"),
        sa.CheckConstraint("amount_owed > 0", name="expense_splits_amount_positive"),
    )

    op.create_index("idx_group_members_user", "group_members", ["user_id"])
    op.create_index("idx_group_expenses_group_payer", "group_expenses", ["group_id", "paid_by_user_id"])
    op.create_index("idx_expense_splits_user_open", "expense_splits", ["user_id", "is_settled"])


def downgrade() -> None:
    op.drop_index("idx_expense_splits_user_open", table_name="expense_splits")
    op.drop_index("idx_group_expenses_group_payer", table_name="group_expenses")
    op.drop_index("idx_group_members_user", table_name="group_members")

    op.drop_table("expense_splits")
    op.drop_table("group_expenses")
    op.drop_table("group_members")
    op.drop_table("groups")
