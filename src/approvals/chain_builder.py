"""Approval chain builder — rule + manager chain -> concrete approval steps.

Used for single expense submission, cart checkout (once per cart, from the
cart total) and the read-only preview. Never writes.
"""

import logging
from decimal import Decimal
from uuid import UUID

from src.approvals.errors import ValidationError
from src.approvals.manager_chain import ManagerChainResolver
from src.approvals.rule_matcher import RuleMatcher
from src.models.approval import ApprovalStep, ChainBuildResult

logger = logging.getLogger(__name__)


class ApprovalChainBuilder:
    def __init__(self, matcher: RuleMatcher, resolver: ManagerChainResolver) -> None:
        self._matcher = matcher
        self._resolver = resolver

    async def build_chain(
        self,
        submitter_id: UUID,
        amount: Decimal,
        cost_center_id: UUID | None,
    ) -> ChainBuildResult:
        if amount <= 0:
            msg = "amount must be positive"
            raise ValidationError(msg, field="amount")

        rule = await self._matcher.find_applicable_rule(amount, cost_center_id)
        if rule is None:
            return ChainBuildResult.auto_approved()

        entries = await self._resolver.resolve_chain(submitter_id, rule.levels_required)
        if len(entries) < rule.levels_required:
            # short hierarchy: auto-approve
            logger.info(
                "Rule %s needs %d level(s) but submitter %s has %d manager(s); auto-approving",
                rule.rule_id, rule.levels_required, submitter_id, len(entries),
            )
            return ChainBuildResult.auto_approved()

        chain = [ApprovalStep.from_entry(entry) for entry in entries]
        return ChainBuildResult(requires_approval=True, chain=chain, rule=rule)

    async def preview_chain(
        self,
        submitter_id: UUID,
        amount: Decimal,
        cost_center_id: UUID | None,
    ) -> ChainBuildResult:
        """Prospective approval path shown to the submitter before submitting."""
        return await self.build_chain(submitter_id, amount, cost_center_id)
