"""SQLAlchemy ORM table models for ExpenseHub.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for the approval chain,
which is stored embedded in the expense row and validated on every read.

Categories:
- REFERENCE: UserRow, ApprovalRuleRow, LedgerAccountMappingRow
  (read by the approval core, written by administrators)
- OPERATIONAL: ExpenseRow (status/level/chain owned by the state machine,
               effect columns owned by the effect runner), EffectIntentRow,
               CartItemRow
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from src.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")

MONEY = Numeric(14, 2)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class UserRow(Base):
    """Employee with an optional manager (the reporting hierarchy)."""

    __tablename__ = "users"

    user_id: Mapped[UUID] = mapped_column(primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="employee")
    manager_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.user_id"), nullable=True, index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class ApprovalRuleRow(Base):
    __tablename__ = "approval_rules"

    rule_id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    min_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    max_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    cost_center_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    levels_required: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LedgerAccountMappingRow(Base):
    """Expense category -> ledger account code."""

    __tablename__ = "ledger_account_mappings"

    category: Mapped[str] = mapped_column(String(100), primary_key=True)
    account_code: Mapped[str] = mapped_column(String(20), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Expenses — OPERATIONAL
# ---------------------------------------------------------------------------


class ExpenseRow(Base):
    """Expense aggregate with its embedded approval chain.

    ``version`` is bumped by every state-machine write and used as the
    optimistic-concurrency guard of the conditional UPDATE.
    ``current_approver_id`` mirrors the approver of the current chain step
    while pending, so an approver's inbox is one indexed lookup.
    """

    __tablename__ = "expenses"

    expense_id: Mapped[UUID] = mapped_column(primary_key=True)
    submitter_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.user_id"), nullable=False, index=True,
    )
    cost_center_id: Mapped[UUID | None] = mapped_column(nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    cost_type: Mapped[str] = mapped_column(String(10), nullable=False, default="OPEX")
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_reimbursable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Approval state
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    current_approval_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_approver_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.user_id"), nullable=True, index=True,
    )
    approval_rule_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("approval_rules.rule_id"), nullable=True, index=True,
    )
    approval_chain = mapped_column(FlexJSON, nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Ledger sync effect
    ledger_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ledger_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ledger_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Marketplace order effect
    marketplace_correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    marketplace_order_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    marketplace_po_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    marketplace_order_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EffectIntentRow(Base):
    """Outbox row: one completion effect requested for one expense."""

    __tablename__ = "effect_intents"
    __table_args__ = (
        UniqueConstraint("expense_id", "kind", name="uq_effect_intent_expense_kind"),
    )

    intent_id: Mapped[UUID] = mapped_column(primary_key=True)
    expense_id: Mapped[UUID] = mapped_column(
        ForeignKey("expenses.expense_id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CartItemRow(Base):
    __tablename__ = "cart_items"

    cart_item_id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.user_id"), nullable=False, index=True,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_center_id: Mapped[UUID | None] = mapped_column(nullable=True)
    marketplace_correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity
