"""Notification trigger — collect notices during a transition, send after commit.

Notices are queued while the transaction is open and handed to the
Notifier only once the caller has committed, so a rolled-back transition
never sends mail. Delivery failures are logged and swallowed.
"""

import logging
from dataclasses import dataclass, field

from src.integrations.base import ExpenseSnapshot, Notifier, Recipient
from src.models.common import NotificationKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    kind: NotificationKind
    expense: ExpenseSnapshot
    recipient: Recipient
    extra: dict = field(default_factory=dict)


class NotificationTrigger:
    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._queue: list[Notice] = []

    @property
    def pending(self) -> list[Notice]:
        return list(self._queue)

    def queue(
        self,
        kind: NotificationKind,
        expense: ExpenseSnapshot,
        recipient: Recipient,
        extra: dict | None = None,
    ) -> None:
        self._queue.append(Notice(kind, expense, recipient, dict(extra or {})))

    def discard(self) -> None:
        """Drop queued notices (the transaction rolled back)."""
        self._queue.clear()

    async def dispatch(self) -> int:
        """Deliver every queued notice. Returns how many were delivered."""
        notices, self._queue = self._queue, []
        delivered = 0
        for notice in notices:
            try:
                await self._notifier.notify(
                    notice.kind, notice.expense, notice.recipient, notice.extra,
                )
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "Failed to send %s notice for expense %s to %s: %s",
                    notice.kind, notice.expense.expense_id, notice.recipient.email, exc,
                )
        return delivered
