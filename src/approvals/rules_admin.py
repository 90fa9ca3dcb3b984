"""Administrator operations on approval rules.

Active rules sharing a scope must have disjoint amount bands; a rule an
expense already points at can be deactivated but not deleted.
"""

import logging
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from src.approvals.errors import RuleNotFoundError, ValidationError
from src.approvals.rule_matcher import find_overlap
from src.models.approval import ApprovalRule
from src.repositories.approval_rules import ApprovalRuleRepository, rule_from_row

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = frozenset({
    "name", "description", "min_amount", "max_amount",
    "cost_center_id", "levels_required", "is_active",
})


class ApprovalRuleService:
    def __init__(self, rule_repo: ApprovalRuleRepository) -> None:
        self._rules = rule_repo

    async def list_rules(self) -> list[ApprovalRule]:
        return [rule_from_row(r) for r in await self._rules.list_all()]

    async def get_rule(self, rule_id: UUID) -> ApprovalRule:
        row = await self._rules.get(rule_id)
        if row is None:
            msg = f"Approval rule {rule_id} not found"
            raise RuleNotFoundError(msg)
        return rule_from_row(row)

    async def create_rule(self, rule: ApprovalRule) -> ApprovalRule:
        await self._check_overlap(rule)
        row = await self._rules.create(rule)
        logger.info("Created approval rule %s (%s)", row.rule_id, row.name)
        return rule_from_row(row)

    async def update_rule(self, rule_id: UUID, changes: dict) -> ApprovalRule:
        current = await self.get_rule(rule_id)
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            msg = f"Fields cannot be changed: {sorted(unknown)}"
            raise ValidationError(msg, field=sorted(unknown)[0])
        try:
            updated = ApprovalRule.model_validate({**current.model_dump(), **changes})
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            loc = first["loc"][0] if first["loc"] else None
            raise ValidationError(first["msg"], field=str(loc) if loc else None) from exc

        await self._check_overlap(updated)
        row = await self._rules.update(updated)
        logger.info("Updated approval rule %s", rule_id)
        return rule_from_row(row)

    async def delete_rule(self, rule_id: UUID) -> None:
        await self.get_rule(rule_id)
        references = await self._rules.count_expense_references(rule_id)
        if references:
            msg = (
                f"Approval rule {rule_id} is used by {references} expense(s); "
                "deactivate it instead"
            )
            raise ValidationError(msg, field="rule_id")
        await self._rules.delete(rule_id)
        logger.info("Deleted approval rule %s", rule_id)

    async def _check_overlap(self, rule: ApprovalRule) -> None:
        if not rule.is_active:
            return
        existing = await self._rules.list_active_in_scope(rule.cost_center_id)
        conflict = find_overlap(rule, existing)
        if conflict is not None:
            upper = conflict.max_amount if conflict.max_amount is not None else "unbounded"
            msg = (
                f"Amount range overlaps rule '{conflict.name}' "
                f"({conflict.min_amount} - {upper})"
            )
            raise ValidationError(msg, field="min_amount")
