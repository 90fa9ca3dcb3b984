"""Manager chain resolver — walk the manager-of relation upward.

The walk is bounded by ``levels_required`` lookups. Reaching the top of
the hierarchy, an inactive or missing manager, or a cycle (a user seen
earlier in the walk, the submitter included) ends it early; callers treat
any result shorter than requested as incomplete.
"""

import logging
from uuid import UUID

from src.repositories.users import UserRepository
from src.models.approval import ManagerChainEntry

logger = logging.getLogger(__name__)


class ManagerChainResolver:
    def __init__(self, user_repo: UserRepository) -> None:
        self._users = user_repo

    async def resolve_chain(self, submitter_id: UUID,
                            levels_required: int) -> list[ManagerChainEntry]:
        submitter = await self._users.get(submitter_id)
        if submitter is None:
            return []

        entries: list[ManagerChainEntry] = []
        seen: set[UUID] = {submitter.user_id}
        manager_id = submitter.manager_id

        while manager_id is not None and len(entries) < levels_required:
            if manager_id in seen:
                logger.warning(
                    "Manager cycle for submitter %s at %s; chain is incomplete",
                    submitter_id, manager_id,
                )
                break
            manager = await self._users.get(manager_id)
            if manager is None or not manager.is_active:
                break
            seen.add(manager.user_id)
            entries.append(ManagerChainEntry(
                level=len(entries) + 1,
                manager_id=manager.user_id,
                manager_name=manager.full_name,
                manager_email=manager.email,
            ))
            manager_id = manager.manager_id

        return entries
