"""Initial schema — users, approval rules, expenses, effect outbox, cart.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(14, 2)


def upgrade() -> None:
    # -- Reference data --
    op.create_table(
        "users",
        sa.Column("user_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="employee"),
        sa.Column("manager_id", UUID(as_uuid=True),
                  sa.ForeignKey("users.user_id"), nullable=True, index=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "approval_rules",
        sa.Column("rule_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("min_amount", MONEY, nullable=False),
        sa.Column("max_amount", MONEY, nullable=True),
        sa.Column("cost_center_id", UUID(as_uuid=True), nullable=True, index=True),
        sa.Column("levels_required", sa.Integer, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("min_amount >= 0", name="ck_approval_rules_min_amount"),
        sa.CheckConstraint(
            "max_amount IS NULL OR max_amount > min_amount",
            name="ck_approval_rules_band",
        ),
        sa.CheckConstraint(
            "levels_required BETWEEN 1 AND 10",
            name="ck_approval_rules_levels",
        ),
    )

    op.create_table(
        "ledger_account_mappings",
        sa.Column("category", sa.String(100), primary_key=True),
        sa.Column("account_code", sa.String(20), nullable=False),
        sa.Column("account_name", sa.String(255), server_default=""),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # -- Operational --
    op.create_table(
        "expenses",
        sa.Column("expense_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("submitter_id", UUID(as_uuid=True),
                  sa.ForeignKey("users.user_id"), nullable=False, index=True),
        sa.Column("cost_center_id", UUID(as_uuid=True), nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("cost_type", sa.String(10), nullable=False, server_default="OPEX"),
        sa.Column("vendor_name", sa.String(255), nullable=True),
        sa.Column("expense_date", sa.Date, nullable=False),
        sa.Column("is_reimbursable", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        sa.Column("current_approval_level", sa.Integer, nullable=True),
        sa.Column("current_approver_id", UUID(as_uuid=True),
                  sa.ForeignKey("users.user_id"), nullable=True, index=True),
        sa.Column("approval_rule_id", UUID(as_uuid=True),
                  sa.ForeignKey("approval_rules.rule_id"), nullable=True, index=True),
        sa.Column("approval_chain", JSONB, nullable=True),
        sa.Column("approved_by", UUID(as_uuid=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("ledger_reference", sa.String(100), nullable=True),
        sa.Column("ledger_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ledger_sync_error", sa.Text, nullable=True),
        sa.Column("marketplace_correlation_id", sa.String(255), nullable=True),
        sa.Column("marketplace_order_status", sa.String(20), nullable=True),
        sa.Column("marketplace_po_number", sa.String(100), nullable=True),
        sa.Column("marketplace_order_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )

    op.create_table(
        "effect_intents",
        sa.Column("intent_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("expense_id", UUID(as_uuid=True),
                  sa.ForeignKey("expenses.expense_id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("expense_id", "kind", name="uq_effect_intent_expense_kind"),
    )

    op.create_table(
        "cart_items",
        sa.Column("cart_item_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True),
                  sa.ForeignKey("users.user_id"), nullable=False, index=True),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("vendor_name", sa.String(255), nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("cost_center_id", UUID(as_uuid=True), nullable=True),
        sa.Column("marketplace_correlation_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("cart_items")
    op.drop_table("effect_intents")
    op.drop_table("expenses")
    op.drop_table("ledger_account_mappings")
    op.drop_table("approval_rules")
    op.drop_table("users")
