"""Notification delivery.

EmailNotifier posts a rendered message to a transactional email HTTP API.
LogNotifier is used when no API is configured (dev, tests).
"""

import logging

import httpx

from src.integrations.base import ExpenseSnapshot, Notifier, Recipient
from src.integrations.config import NotifierConfig
from src.models.common import NotificationKind

logger = logging.getLogger(__name__)


def render_subject(kind: NotificationKind, expense: ExpenseSnapshot, extra: dict) -> str:
    amount = f"${expense.amount:.2f}"
    if kind == NotificationKind.APPROVAL_REQUESTED:
        submitter = extra.get("submitter_name", "an employee")
        return f"New Expense Submitted for Approval - {submitter}"
    if kind == NotificationKind.EXPENSE_APPROVED:
        return f"Expense Approved - {amount}"
    return f"Expense Rejected - {amount}"


def render_body(kind: NotificationKind, expense: ExpenseSnapshot,
                recipient: Recipient, extra: dict, frontend_url: str) -> str:
    lines = [
        f"Hi {recipient.name},",
        "",
        f"Description: {expense.description}",
        f"Amount: ${expense.amount:.2f}",
        f"Category: {expense.category}",
        f"Date: {expense.expense_date.isoformat()}",
    ]
    if kind == NotificationKind.APPROVAL_REQUESTED:
        lines.insert(2, f"An expense is waiting for your approval (level {extra.get('level', 1)}).")
        lines.append(f"Review it at {frontend_url}/approvals")
    elif kind == NotificationKind.EXPENSE_APPROVED:
        lines.insert(2, "Your expense has been approved.")
        lines.append(f"View it at {frontend_url}/expenses")
    else:
        lines.insert(2, "Your expense has been rejected.")
        lines.append(f"Reason: {extra.get('reason') or 'No reason given'}")
    return "\n".join(lines)


class EmailNotifier(Notifier):
    def __init__(
        self,
        config: NotifierConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    async def notify(
        self,
        kind: NotificationKind,
        expense: ExpenseSnapshot,
        recipient: Recipient,
        extra: dict,
    ) -> None:
        message = {
            "from": self._config.from_address,
            "to": recipient.email,
            "subject": render_subject(kind, expense, extra),
            "text": render_body(kind, expense, recipient, extra, self._config.frontend_url),
            "tags": [str(kind)],
        }
        async with httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        ) as client:
            resp = await client.post(
                self._config.api_url,
                headers={"Authorization": f"Bearer {self._config.api_key}"},
                json=message,
            )
            resp.raise_for_status()


class LogNotifier(Notifier):
    async def notify(
        self,
        kind: NotificationKind,
        expense: ExpenseSnapshot,
        recipient: Recipient,
        extra: dict,
    ) -> None:
        logger.info(
            "Notice %s for expense %s -> %s <%s>",
            kind, expense.expense_id, recipient.name, recipient.email,
        )


def build_notifier(config: NotifierConfig) -> Notifier:
    if not config.api_url:
        return LogNotifier()
    return EmailNotifier(config)
