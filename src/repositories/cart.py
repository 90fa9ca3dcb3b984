"""Procurement cart repository — per-user punchout lines awaiting checkout."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import CartItemRow
from src.models.common import new_uuid7, utc_now


class CartItemRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, *, user_id: UUID, description: str, vendor_name: str,
                  unit_price: Decimal, quantity: int,
                  cost_center_id: UUID | None = None,
                  marketplace_correlation_id: str | None = None) -> CartItemRow:
        row = CartItemRow(
            cart_item_id=new_uuid7(), user_id=user_id, description=description,
            vendor_name=vendor_name, unit_price=unit_price, quantity=quantity,
            cost_center_id=cost_center_id,
            marketplace_correlation_id=marketplace_correlation_id,
            created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_user(self, user_id: UUID) -> list[CartItemRow]:
        result = await self._session.execute(
            select(CartItemRow)
            .where(CartItemRow.user_id == user_id)
            .order_by(CartItemRow.created_at.asc(), CartItemRow.cart_item_id.asc())
        )
        return list(result.scalars().all())

    async def remove(self, user_id: UUID, cart_item_id: UUID) -> bool:
        result = await self._session.execute(
            delete(CartItemRow).where(
                CartItemRow.cart_item_id == cart_item_id,
                CartItemRow.user_id == user_id,
            )
        )
        return result.rowcount == 1

    async def clear(self, user_id: UUID) -> int:
        result = await self._session.execute(
            delete(CartItemRow).where(CartItemRow.user_id == user_id)
        )
        return result.rowcount
