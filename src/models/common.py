"""Shared types, enums, and base models used across ExpenseHub domain models."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Reusable annotated types ---

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]
Money = Annotated[
    Decimal, Field(max_digits=14, decimal_places=2, description="Amount in account currency.")
]


# --- Shared enums ---


class ExpenseStatus(StrEnum):
    """Expense lifecycle. APPROVED and REJECTED are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepStatus(StrEnum):
    """Status of one step in an approval chain."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrderStatus(StrEnum):
    """Marketplace order placement status, tracked apart from ledger sync."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class EffectKind(StrEnum):
    """Completion effects fired when an expense reaches APPROVED."""

    LEDGER_SYNC = "ledger_sync"
    MARKETPLACE_ORDER = "marketplace_order"


class EffectStatus(StrEnum):
    """Outbox intent lifecycle."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class NotificationKind(StrEnum):
    """Notices sent around approval transitions."""

    APPROVAL_REQUESTED = "approval_requested"
    EXPENSE_APPROVED = "expense_approved"
    EXPENSE_REJECTED = "expense_rejected"


class UserRole(StrEnum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"


class CostType(StrEnum):
    OPEX = "OPEX"
    CAPEX = "CAPEX"


TERMINAL_EXPENSE_STATUSES: frozenset[ExpenseStatus] = frozenset({
    ExpenseStatus.APPROVED,
    ExpenseStatus.REJECTED,
})

RESCINDED_REASON = "Rescinded by submitter"


# --- Base model ---


class ExpenseHubBase(BaseModel):
    """Base model with common configuration for all ExpenseHub Pydantic models."""

    model_config = {
        "populate_by_name": True,
        "ser_json_timedelta": "iso8601",
        "protected_namespaces": (),
    }
