"""Rule matcher — pick the single approval rule for an amount.

Selection order among active rules whose band covers the amount:
1. a rule scoped to the expense's cost center beats a global rule;
2. within one scope, the highest ``min_amount`` (tightest band) wins;
3. remaining ties: earliest ``created_at``, then smallest ``rule_id``.

Read-only. Rules are reference data, so no locking is involved.
"""

from decimal import Decimal
from uuid import UUID

from src.approvals.errors import ValidationError
from src.models.approval import ApprovalRule
from src.repositories.approval_rules import ApprovalRuleRepository


def _rank(rule: ApprovalRule, cost_center_id: UUID | None) -> tuple:
    scoped = cost_center_id is not None and rule.cost_center_id == cost_center_id
    return (
        0 if scoped else 1,
        -rule.min_amount,
        rule.created_at,
        str(rule.rule_id),
    )


def select_rule(
    rules: list[ApprovalRule],
    amount: Decimal,
    cost_center_id: UUID | None,
) -> ApprovalRule | None:
    """Apply the matching and tie-break order to an in-memory rule list."""
    candidates = [
        r for r in rules
        if r.is_active
        and r.covers(amount)
        and (r.cost_center_id is None or r.cost_center_id == cost_center_id)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda r: _rank(r, cost_center_id))


def find_overlap(rule: ApprovalRule, existing: list[ApprovalRule]) -> ApprovalRule | None:
    """First active rule in the same scope whose band overlaps ``rule``."""
    for other in existing:
        if other.rule_id == rule.rule_id or not other.is_active:
            continue
        if other.cost_center_id != rule.cost_center_id:
            continue
        if rule.overlaps(other):
            return other
    return None


class RuleMatcher:
    """Repository-backed rule lookup."""

    def __init__(self, rule_repo: ApprovalRuleRepository) -> None:
        self._rules = rule_repo

    async def find_applicable_rule(
        self,
        amount: Decimal,
        cost_center_id: UUID | None,
    ) -> ApprovalRule | None:
        """Return the applicable rule, or None when no approval is required."""
        if amount < 0:
            msg = "amount must not be negative"
            raise ValidationError(msg, field="amount")
        candidates = await self._rules.list_matching(amount, cost_center_id)
        return select_rule(candidates, amount, cost_center_id)
