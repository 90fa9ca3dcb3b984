"""Completion effects dispatcher — outbox enqueue on the transition to APPROVED.

Called inside the transaction that approves the expense, so the intents
commit or roll back together with the status change. Never calls out.
"""

import logging

from src.db.tables import ExpenseRow
from src.integrations.config import EffectsConfig
from src.models.common import EffectKind, ExpenseStatus, OrderStatus
from src.repositories.effects import EffectIntentRepository

logger = logging.getLogger(__name__)


def wants_marketplace_order(expense: ExpenseRow) -> bool:
    return (
        bool(expense.marketplace_correlation_id)
        and expense.marketplace_order_status == OrderStatus.PENDING
    )


class CompletionEffectsDispatcher:
    def __init__(self, intent_repo: EffectIntentRepository, config: EffectsConfig) -> None:
        self._intents = intent_repo
        self._config = config

    async def enqueue(self, expense: ExpenseRow) -> list[EffectKind]:
        """Record the effects owed to an approved expense.

        Idempotent: an effect that already has an intent is left alone.

        Returns:
            The kinds newly enqueued by this call.
        """
        if expense.status != ExpenseStatus.APPROVED:
            msg = f"Expense {expense.expense_id} is {expense.status}, not approved"
            raise ValueError(msg)

        wanted: list[EffectKind] = []
        if self._config.ledger_sync_enabled:
            wanted.append(EffectKind.LEDGER_SYNC)
        if wants_marketplace_order(expense):
            wanted.append(EffectKind.MARKETPLACE_ORDER)

        created: list[EffectKind] = []
        for kind in wanted:
            if await self._intents.create_if_absent(expense.expense_id, kind) is not None:
                created.append(kind)
        if created:
            logger.info("Enqueued %s for expense %s", ", ".join(created), expense.expense_id)
        return created
