"""Ledger account mapping repository — expense category -> ledger account code."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import LedgerAccountMappingRow
from src.models.common import utc_now


class LedgerAccountMappingRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, category: str) -> LedgerAccountMappingRow | None:
        return await self._session.get(LedgerAccountMappingRow, category)

    async def list_all(self) -> list[LedgerAccountMappingRow]:
        result = await self._session.execute(
            select(LedgerAccountMappingRow).order_by(LedgerAccountMappingRow.category.asc())
        )
        return list(result.scalars().all())

    async def upsert(self, category: str, account_code: str,
                     account_name: str = "") -> LedgerAccountMappingRow:
        row = await self.get(category)
        if row is None:
            row = LedgerAccountMappingRow(category=category)
            self._session.add(row)
        row.account_code = account_code
        row.account_name = account_name
        row.updated_at = utc_now()
        await self._session.flush()
        return row

    async def as_dict(self) -> dict[str, str]:
        return {r.category: r.account_code for r in await self.list_all()}
