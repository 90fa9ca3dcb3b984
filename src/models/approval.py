"""Approval models — rules, chain steps, manager chain entries, outcomes."""

from decimal import Decimal
from uuid import UUID

from pydantic import Field, model_validator

from src.models.common import (
    ExpenseHubBase,
    ExpenseStatus,
    StepStatus,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)

MAX_LEVELS_REQUIRED = 10


# ---------------------------------------------------------------------------
# Approval rule (amount band -> required depth)
# ---------------------------------------------------------------------------


class ApprovalRule(ExpenseHubBase):
    """Amount band mapped to a number of manager levels.

    ``max_amount`` of None means the band is unbounded above.
    ``cost_center_id`` of None means the rule applies to every cost center.
    """

    rule_id: UUIDv7 = Field(default_factory=new_uuid7)
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    min_amount: Decimal = Field(..., ge=0)
    max_amount: Decimal | None = Field(default=None, ge=0)
    cost_center_id: UUID | None = None
    levels_required: int = Field(..., ge=1, le=MAX_LEVELS_REQUIRED)
    is_active: bool = True
    created_by: UUID | None = None
    created_at: UTCTimestamp = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _max_gt_min(self) -> "ApprovalRule":
        if self.max_amount is not None and self.max_amount <= self.min_amount:
            msg = "max_amount must be greater than min_amount"
            raise ValueError(msg)
        return self

    def covers(self, amount: Decimal) -> bool:
        """True when ``amount`` falls inside the inclusive band."""
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount

    def overlaps(self, other: "ApprovalRule") -> bool:
        """True when the two inclusive bands share at least one amount."""
        upper_self = self.max_amount
        upper_other = other.max_amount
        if upper_other is not None and self.min_amount > upper_other:
            return False
        if upper_self is not None and other.min_amount > upper_self:
            return False
        return True


# ---------------------------------------------------------------------------
# Manager chain and approval steps
# ---------------------------------------------------------------------------


class ManagerChainEntry(ExpenseHubBase):
    """One manager found while walking up the reporting hierarchy."""

    level: int = Field(..., ge=1)
    manager_id: UUID
    manager_name: str
    manager_email: str


class ApprovalStep(ExpenseHubBase):
    """One level of an expense's approval chain."""

    level: int = Field(..., ge=1)
    approver_user_id: UUID
    approver_name: str
    approver_email: str
    status: StepStatus = StepStatus.PENDING
    decided_by_user_id: UUID | None = None
    decided_at: UTCTimestamp | None = None
    comments: str | None = None

    @classmethod
    def from_entry(cls, entry: ManagerChainEntry) -> "ApprovalStep":
        return cls(
            level=entry.level,
            approver_user_id=entry.manager_id,
            approver_name=entry.manager_name,
            approver_email=entry.manager_email,
        )


class ChainBuildResult(ExpenseHubBase):
    """Outcome of building a chain for a prospective expense.

    ``requires_approval`` False means the expense is auto-approved; chain and
    rule are then both None.
    """

    requires_approval: bool
    chain: list[ApprovalStep] | None = None
    rule: ApprovalRule | None = None

    @property
    def rule_id(self) -> UUID | None:
        return self.rule.rule_id if self.rule is not None else None

    @classmethod
    def auto_approved(cls) -> "ChainBuildResult":
        return cls(requires_approval=False, chain=None, rule=None)


class NextApprover(ExpenseHubBase):
    level: int
    user_id: UUID
    name: str
    email: str


class ApprovalOutcome(ExpenseHubBase):
    """Result of an approve / reject / rescind action."""

    expense_id: UUID
    status: ExpenseStatus
    is_final: bool
    current_approval_level: int | None = None
    next_approver: NextApprover | None = None
    message: str = ""
