"""Expense submission models and cost-type derivation."""

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import Field, field_validator, model_validator

from src.models.common import CostType, ExpenseHubBase

CAPEX_KEYWORDS: tuple[str, ...] = ("equipment", "hardware", "furniture", "fixtures", "vehicle")
CAPEX_THRESHOLD = Decimal("2500")

DEFAULT_CART_CATEGORY = "Office Supplies"


def determine_cost_type(category: str, amount: Decimal) -> CostType:
    """Classify an expense as CAPEX when a capital category meets the threshold."""
    category_lower = category.lower()
    if any(keyword in category_lower for keyword in CAPEX_KEYWORDS) and amount >= CAPEX_THRESHOLD:
        return CostType.CAPEX
    return CostType.OPEX


class ExpenseDraft(ExpenseHubBase):
    """Everything an employee supplies when submitting a single expense."""

    cost_center_id: UUID | None = None
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=2000)
    category: str = Field(..., min_length=1, max_length=100)
    expense_date: date
    vendor_name: str | None = Field(default=None, max_length=255)
    cost_type: CostType | None = None
    is_reimbursable: bool = False
    notes: str | None = None
    marketplace_correlation_id: str | None = Field(default=None, max_length=255)

    @field_validator("description", "category")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            msg = "must not be blank"
            raise ValueError(msg)
        return stripped

    def resolved_cost_type(self) -> CostType:
        return self.cost_type or determine_cost_type(self.category, self.amount)


_NOT_NULL_ON_EDIT = frozenset({
    "amount", "description", "category", "expense_date", "cost_type", "is_reimbursable",
})


class ExpenseUpdate(ExpenseHubBase):
    """Fields a submitter may change while the expense is still pending.

    Only fields present in the request are applied. ``cost_center_id`` may be
    sent as null to move the expense back under global rules.
    """

    cost_center_id: UUID | None = None
    amount: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    description: str | None = Field(default=None, min_length=1, max_length=2000)
    category: str | None = Field(default=None, min_length=1, max_length=100)
    expense_date: date | None = None
    vendor_name: str | None = Field(default=None, max_length=255)
    cost_type: CostType | None = None
    is_reimbursable: bool | None = None
    notes: str | None = None

    @field_validator("description", "category")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            msg = "must not be blank"
            raise ValueError(msg)
        return stripped

    @model_validator(mode="after")
    def _required_not_null(self) -> "ExpenseUpdate":
        for name in sorted(_NOT_NULL_ON_EDIT & self.model_fields_set):
            if getattr(self, name) is None:
                msg = f"{name} cannot be null"
                raise ValueError(msg)
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class BuyerInfo(ExpenseHubBase):
    """Person the marketplace order is placed for (the submitter)."""

    user_id: UUID
    name: str
    email: str
