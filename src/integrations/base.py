"""Collaborator interfaces consumed by the approval core.

The ledger, marketplace and notification adapters all receive an
ExpenseSnapshot rather than an ORM row, so they can run after the
request's session is gone.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import Field

from src.db.tables import ExpenseRow
from src.models.common import ExpenseHubBase, NotificationKind
from src.models.expense import BuyerInfo

DEFAULT_CATEGORY_ACCOUNTS: dict[str, str] = {
    "meals": "420",
    "meals_entertainment": "420",
    "travel": "493",
    "car_rental": "404",
    "fuel": "404",
    "office_supplies": "461",
    "software": "453",
    "equipment": "630",
    "professional_services": "404",
    "marketing": "400",
    "internet": "445",
    "utilities": "445",
    "other": "404",
}


class ExpenseSnapshot(ExpenseHubBase):
    """Read-only copy of the expense fields collaborators need."""

    expense_id: UUID
    submitter_id: UUID
    amount: Decimal
    description: str
    category: str
    vendor_name: str | None = None
    expense_date: date
    status: str
    is_reimbursable: bool = False
    rejection_reason: str | None = None
    marketplace_correlation_id: str | None = None

    @classmethod
    def from_row(cls, row: ExpenseRow) -> "ExpenseSnapshot":
        return cls(
            expense_id=row.expense_id,
            submitter_id=row.submitter_id,
            amount=row.amount,
            description=row.description,
            category=row.category,
            vendor_name=row.vendor_name,
            expense_date=row.expense_date,
            status=row.status,
            is_reimbursable=row.is_reimbursable,
            rejection_reason=row.rejection_reason,
            marketplace_correlation_id=row.marketplace_correlation_id,
        )


class AccountMapping(ExpenseHubBase):
    """Category -> ledger account code, with fallbacks."""

    category_mapping: dict[str, str] = Field(default_factory=dict)
    default_account: str = "400"
    default_tax_type: str = "NONE"

    def account_for(self, category: str) -> str:
        if category in self.category_mapping:
            return self.category_mapping[category]
        key = category.strip().lower().replace(" ", "_")
        return DEFAULT_CATEGORY_ACCOUNTS.get(key, self.default_account)


class LedgerSyncResult(ExpenseHubBase):
    success: bool
    reference_id: str | None = None
    error: str | None = None


class OrderResult(ExpenseHubBase):
    success: bool
    order_number: str | None = None
    error: str | None = None


class Recipient(ExpenseHubBase):
    user_id: UUID
    name: str
    email: str


class LedgerClient(ABC):
    """External accounting ledger."""

    @abstractmethod
    async def sync_expense(
        self,
        expense: ExpenseSnapshot,
        account_mapping: AccountMapping,
    ) -> LedgerSyncResult:
        """Post the expense to the ledger. Must not raise for remote errors."""
        ...


class MarketplaceClient(ABC):
    """Punchout marketplace order placement."""

    @abstractmethod
    async def place_order(self, expense: ExpenseSnapshot, buyer: BuyerInfo) -> OrderResult:
        """Place the order identified by the expense's correlation id."""
        ...


class Notifier(ABC):
    """Transactional notification delivery."""

    @abstractmethod
    async def notify(
        self,
        kind: NotificationKind,
        expense: ExpenseSnapshot,
        recipient: Recipient,
        extra: dict,
    ) -> None:
        ...
