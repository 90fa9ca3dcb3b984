"""Expense repository.

State-machine writes go through ``conditional_update``: a single UPDATE
guarded by status, current level and version, so two concurrent actions
on the same expense can never both apply. Effect columns are written
through ``update_effect_fields``, which never touches status or level.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import ExpenseRow
from src.models.common import ExpenseStatus, utc_now

EFFECT_COLUMNS: frozenset[str] = frozenset({
    "ledger_reference",
    "ledger_synced_at",
    "ledger_sync_error",
    "marketplace_order_status",
    "marketplace_po_number",
    "marketplace_order_sent_at",
})


class ExpenseRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, expense_id: UUID, submitter_id: UUID,
                     amount: Decimal, description: str, category: str,
                     expense_date: date, status: str,
                     cost_center_id: UUID | None = None,
                     cost_type: str = "OPEX",
                     vendor_name: str | None = None,
                     is_reimbursable: bool = False,
                     notes: str | None = None,
                     approval_rule_id: UUID | None = None,
                     approval_chain: list | None = None,
                     current_approval_level: int | None = None,
                     current_approver_id: UUID | None = None,
                     approved_at=None,
                     marketplace_correlation_id: str | None = None,
                     marketplace_order_status: str | None = None) -> ExpenseRow:
        now = utc_now()
        row = ExpenseRow(
            expense_id=expense_id, submitter_id=submitter_id,
            cost_center_id=cost_center_id, amount=amount,
            description=description, category=category, cost_type=cost_type,
            vendor_name=vendor_name, expense_date=expense_date,
            is_reimbursable=is_reimbursable, notes=notes, status=status,
            current_approval_level=current_approval_level,
            current_approver_id=current_approver_id,
            approval_rule_id=approval_rule_id, approval_chain=approval_chain,
            approved_at=approved_at, version=1,
            marketplace_correlation_id=marketplace_correlation_id,
            marketplace_order_status=marketplace_order_status,
            created_at=now, updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, expense_id: UUID) -> ExpenseRow | None:
        return await self._session.get(ExpenseRow, expense_id)

    async def reload(self, expense_id: UUID) -> ExpenseRow | None:
        """Fetch bypassing the identity map (after a bulk UPDATE)."""
        return await self._session.get(ExpenseRow, expense_id, populate_existing=True)

    async def get_pending(self, expense_id: UUID) -> ExpenseRow | None:
        result = await self._session.execute(
            select(ExpenseRow).where(
                ExpenseRow.expense_id == expense_id,
                ExpenseRow.status == ExpenseStatus.PENDING,
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_submitter(self, submitter_id: UUID,
                                status: str | None = None) -> list[ExpenseRow]:
        stmt = select(ExpenseRow).where(ExpenseRow.submitter_id == submitter_id)
        if status is not None:
            stmt = stmt.where(ExpenseRow.status == status)
        result = await self._session.execute(
            stmt.order_by(ExpenseRow.expense_date.desc(), ExpenseRow.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_pending_for_approver(self, approver_id: UUID) -> list[ExpenseRow]:
        result = await self._session.execute(
            select(ExpenseRow)
            .where(
                ExpenseRow.status == ExpenseStatus.PENDING,
                ExpenseRow.current_approver_id == approver_id,
            )
            .order_by(ExpenseRow.created_at.asc())
        )
        return list(result.scalars().all())

    async def conditional_update(self, expense_id: UUID, *, expected_status: str,
                                 expected_level: int | None,
                                 expected_version: int, **values) -> bool:
        """Apply ``values`` only if status/level/version still match what was read.

        Returns False when another transaction got there first.
        """
        stmt = (
            update(ExpenseRow)
            .where(
                ExpenseRow.expense_id == expense_id,
                ExpenseRow.status == expected_status,
                ExpenseRow.version == expected_version,
            )
            .values(**values, version=ExpenseRow.version + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if expected_level is None:
            stmt = stmt.where(ExpenseRow.current_approval_level.is_(None))
        else:
            stmt = stmt.where(ExpenseRow.current_approval_level == expected_level)
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def update_effect_fields(self, expense_id: UUID, **values) -> None:
        unknown = set(values) - EFFECT_COLUMNS
        if unknown:
            msg = f"Not an effect column: {sorted(unknown)}"
            raise ValueError(msg)
        await self._session.execute(
            update(ExpenseRow)
            .where(ExpenseRow.expense_id == expense_id)
            .values(**values, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def delete_unless_approved(self, expense_id: UUID, *, expected_version: int) -> bool:
        """Delete only if the expense is still unapproved at the version that was read."""
        result = await self._session.execute(
            delete(ExpenseRow)
            .where(
                ExpenseRow.expense_id == expense_id,
                ExpenseRow.version == expected_version,
                ExpenseRow.status != ExpenseStatus.APPROVED,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
