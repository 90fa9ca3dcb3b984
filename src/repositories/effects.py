"""Completion-effect outbox repository.

One row per (expense, effect kind). Claiming an intent is a conditional
PENDING -> RUNNING update; only the transaction that flips it runs the
effect.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import EffectIntentRow
from src.models.common import EffectKind, EffectStatus, new_uuid7, utc_now

_FINISHED = (EffectStatus.FAILED, EffectStatus.SKIPPED, EffectStatus.SUCCEEDED)


class EffectIntentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, intent_id: UUID) -> EffectIntentRow | None:
        return await self._session.get(EffectIntentRow, intent_id, populate_existing=True)

    async def get_for_expense(self, expense_id: UUID,
                              kind: EffectKind) -> EffectIntentRow | None:
        result = await self._session.execute(
            select(EffectIntentRow).where(
                EffectIntentRow.expense_id == expense_id,
                EffectIntentRow.kind == kind,
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_if_absent(self, expense_id: UUID,
                               kind: EffectKind) -> EffectIntentRow | None:
        """Insert a PENDING intent. Returns None if one already exists."""
        if await self.get_for_expense(expense_id, kind) is not None:
            return None
        now = utc_now()
        row = EffectIntentRow(
            intent_id=new_uuid7(), expense_id=expense_id, kind=str(kind),
            status=EffectStatus.PENDING, attempts=0,
            created_at=now, updated_at=now,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(row)
        except IntegrityError:
            # unique (expense_id, kind) lost to a concurrent enqueue
            return None
        return row

    async def list_for_expense(self, expense_id: UUID) -> list[EffectIntentRow]:
        result = await self._session.execute(
            select(EffectIntentRow)
            .where(EffectIntentRow.expense_id == expense_id)
            .order_by(EffectIntentRow.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_by_status(self, status: EffectStatus,
                             limit: int | None = None) -> list[EffectIntentRow]:
        stmt = (
            select(EffectIntentRow)
            .where(EffectIntentRow.status == status)
            .order_by(EffectIntentRow.created_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def claim(self, intent_id: UUID) -> bool:
        result = await self._session.execute(
            update(EffectIntentRow)
            .where(
                EffectIntentRow.intent_id == intent_id,
                EffectIntentRow.status == EffectStatus.PENDING,
            )
            .values(
                status=EffectStatus.RUNNING,
                attempts=EffectIntentRow.attempts + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finish(self, intent_id: UUID, status: EffectStatus,
                     error: str | None = None) -> None:
        await self._session.execute(
            update(EffectIntentRow)
            .where(EffectIntentRow.intent_id == intent_id)
            .values(status=status, last_error=error, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def rearm(self, intent_id: UUID) -> bool:
        """Finished (FAILED, SKIPPED, SUCCEEDED) -> PENDING, for a manual retry."""
        result = await self._session.execute(
            update(EffectIntentRow)
            .where(
                EffectIntentRow.intent_id == intent_id,
                EffectIntentRow.status.in_(_FINISHED),
            )
            .values(status=EffectStatus.PENDING, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
