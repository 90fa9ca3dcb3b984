"""User repository — the reporting hierarchy read by the chain resolver."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import UserRow
from src.models.common import UserRole, utc_now


class UserRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, user_id: UUID, first_name: str, last_name: str,
                     email: str, role: str = UserRole.EMPLOYEE,
                     manager_id: UUID | None = None,
                     is_active: bool = True) -> UserRow:
        row = UserRow(
            user_id=user_id, first_name=first_name, last_name=last_name,
            email=email, role=str(role), manager_id=manager_id,
            is_active=is_active, created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, user_id: UUID) -> UserRow | None:
        return await self._session.get(UserRow, user_id)

    async def get_by_email(self, email: str) -> UserRow | None:
        result = await self._session.execute(
            select(UserRow).where(UserRow.email == email)
        )
        return result.scalar_one_or_none()

    async def set_manager(self, user_id: UUID, manager_id: UUID | None) -> UserRow | None:
        row = await self.get(user_id)
        if row is not None:
            row.manager_id = manager_id
            await self._session.flush()
        return row

    async def list_all(self) -> list[UserRow]:
        result = await self._session.execute(select(UserRow))
        return list(result.scalars().all())
