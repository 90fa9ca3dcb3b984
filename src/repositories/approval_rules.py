"""Approval rule repository.

Range queries for the rule matcher plus the administrator CRUD the rule
table needs (overlap checks live in the service, not here).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import ApprovalRuleRow, ExpenseRow
from src.models.approval import ApprovalRule
from src.models.common import utc_now


def rule_from_row(row: ApprovalRuleRow) -> ApprovalRule:
    return ApprovalRule(
        rule_id=row.rule_id,
        name=row.name,
        description=row.description or "",
        min_amount=row.min_amount,
        max_amount=row.max_amount,
        cost_center_id=row.cost_center_id,
        levels_required=row.levels_required,
        is_active=row.is_active,
        created_by=row.created_by,
        created_at=row.created_at,
    )


class ApprovalRuleRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, rule: ApprovalRule) -> ApprovalRuleRow:
        now = utc_now()
        row = ApprovalRuleRow(
            rule_id=rule.rule_id, name=rule.name, description=rule.description,
            min_amount=rule.min_amount, max_amount=rule.max_amount,
            cost_center_id=rule.cost_center_id,
            levels_required=rule.levels_required, is_active=rule.is_active,
            created_by=rule.created_by, created_at=rule.created_at, updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, rule_id: UUID) -> ApprovalRuleRow | None:
        return await self._session.get(ApprovalRuleRow, rule_id)

    async def list_all(self) -> list[ApprovalRuleRow]:
        result = await self._session.execute(
            select(ApprovalRuleRow).order_by(
                ApprovalRuleRow.min_amount.asc(), ApprovalRuleRow.created_at.desc(),
            )
        )
        return list(result.scalars().all())

    async def list_matching(self, amount: Decimal,
                            cost_center_id: UUID | None) -> list[ApprovalRule]:
        """Active rules whose band covers ``amount`` in the given or global scope."""
        scope = ApprovalRuleRow.cost_center_id.is_(None)
        if cost_center_id is not None:
            scope = or_(scope, ApprovalRuleRow.cost_center_id == cost_center_id)
        result = await self._session.execute(
            select(ApprovalRuleRow).where(
                ApprovalRuleRow.is_active.is_(True),
                ApprovalRuleRow.min_amount <= amount,
                or_(ApprovalRuleRow.max_amount.is_(None), ApprovalRuleRow.max_amount >= amount),
                scope,
            )
        )
        return [rule_from_row(r) for r in result.scalars().all()]

    async def list_active_in_scope(self, cost_center_id: UUID | None) -> list[ApprovalRule]:
        """Active rules sharing exactly this scope (same cost center, or both global)."""
        if cost_center_id is None:
            scope = ApprovalRuleRow.cost_center_id.is_(None)
        else:
            scope = ApprovalRuleRow.cost_center_id == cost_center_id
        result = await self._session.execute(
            select(ApprovalRuleRow).where(ApprovalRuleRow.is_active.is_(True), scope)
        )
        return [rule_from_row(r) for r in result.scalars().all()]

    async def update(self, rule: ApprovalRule) -> ApprovalRuleRow | None:
        row = await self.get(rule.rule_id)
        if row is not None:
            row.name = rule.name
            row.description = rule.description
            row.min_amount = rule.min_amount
            row.max_amount = rule.max_amount
            row.cost_center_id = rule.cost_center_id
            row.levels_required = rule.levels_required
            row.is_active = rule.is_active
            row.updated_at = utc_now()
            await self._session.flush()
        return row

    async def count_expense_references(self, rule_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(ExpenseRow).where(
                ExpenseRow.approval_rule_id == rule_id
            )
        )
        return int(result.scalar_one())

    async def delete(self, rule_id: UUID) -> bool:
        row = await self.get(rule_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True
