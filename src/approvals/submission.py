"""Expense submission, pending-expense edits and procurement cart checkout.

Both paths build the approval chain up front. An expense needing approval
is stored pending at level 1 and its first approver is notified; an
auto-approved one is stored approved and its completion effects are
enqueued in the same transaction.
"""

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from src.approvals.chain import dump_chain
from src.approvals.chain_builder import ApprovalChainBuilder
from src.approvals.errors import ExpenseNotFoundError, ForbiddenError, ValidationError
from src.approvals.notifications import NotificationTrigger
from src.db.tables import CartItemRow, ExpenseRow, UserRow
from src.effects.dispatcher import CompletionEffectsDispatcher
from src.integrations.base import ExpenseSnapshot, Recipient
from src.models.approval import ChainBuildResult
from src.models.common import (
    CostType,
    ExpenseStatus,
    NotificationKind,
    OrderStatus,
    new_uuid7,
    utc_now,
)
from src.models.expense import (
    DEFAULT_CART_CATEGORY,
    ExpenseDraft,
    ExpenseUpdate,
    determine_cost_type,
)
from src.repositories.cart import CartItemRepository
from src.repositories.expenses import ExpenseRepository
from src.repositories.users import UserRepository

logger = logging.getLogger(__name__)


class ExpenseSubmissionService:
    def __init__(
        self,
        expense_repo: ExpenseRepository,
        user_repo: UserRepository,
        cart_repo: CartItemRepository,
        builder: ApprovalChainBuilder,
        dispatcher: CompletionEffectsDispatcher,
        notifications: NotificationTrigger,
    ) -> None:
        self._expenses = expense_repo
        self._users = user_repo
        self._cart = cart_repo
        self._builder = builder
        self._dispatcher = dispatcher
        self._notifications = notifications

    async def submit_expense(self, submitter_id: UUID, draft: ExpenseDraft) -> ExpenseRow:
        submitter = await self._active_submitter(submitter_id)
        result = await self._builder.build_chain(
            submitter_id, draft.amount, draft.cost_center_id,
        )
        return await self._create(
            submitter,
            result,
            cost_center_id=draft.cost_center_id,
            amount=draft.amount,
            description=draft.description,
            category=draft.category,
            cost_type=draft.resolved_cost_type(),
            expense_date=draft.expense_date,
            vendor_name=draft.vendor_name,
            is_reimbursable=draft.is_reimbursable,
            notes=draft.notes,
            marketplace_correlation_id=draft.marketplace_correlation_id,
        )

    async def checkout_cart(
        self,
        submitter_id: UUID,
        cost_center_id: UUID | None = None,
        category: str = DEFAULT_CART_CATEGORY,
    ) -> list[ExpenseRow]:
        """Turn every cart line into an expense sharing one approval chain.

        The chain is built once from the cart total, so splitting a purchase
        into lines never lowers the approval depth.
        """
        submitter = await self._active_submitter(submitter_id)
        items = await self._cart.list_for_user(submitter_id)
        if not items:
            msg = "Cart is empty"
            raise ValidationError(msg, field="cart")

        total = sum((item.line_total for item in items), Decimal("0"))
        result = await self._builder.build_chain(submitter_id, total, cost_center_id)

        today = utc_now().date()
        created: list[ExpenseRow] = []
        for item in items:
            amount = item.line_total
            created.append(await self._create(
                submitter,
                result,
                cost_center_id=item.cost_center_id or cost_center_id,
                amount=amount,
                description=_line_description(item),
                category=category,
                cost_type=determine_cost_type(category, amount),
                expense_date=today,
                vendor_name=item.vendor_name,
                is_reimbursable=False,
                notes=None,
                marketplace_correlation_id=item.marketplace_correlation_id,
            ))
        await self._cart.clear(submitter_id)
        logger.info("Checked out %d cart line(s) for %s, total %s (%s)",
                    len(created), submitter_id, total,
                    "pending approval" if result.requires_approval else "auto-approved")
        return created

    async def update_expense(self, expense_id: UUID, owner_id: UUID,
                             update: ExpenseUpdate) -> ExpenseRow:
        """Edit a pending expense on behalf of its submitter.

        A new amount or cost center rebuilds the approval chain from level 1,
        discarding approvals already given. When the rebuilt chain needs no
        approval the expense is approved at once, as on submission. Other
        edits leave the chain and its progress untouched.
        """
        expense = await self._expenses.reload(expense_id)
        if expense is None:
            msg = f"Expense {expense_id} not found"
            raise ExpenseNotFoundError(msg)
        if expense.submitter_id != owner_id:
            msg = f"Only the submitter may edit expense {expense_id}"
            raise ForbiddenError(msg)
        if expense.status != ExpenseStatus.PENDING:
            msg = f"Cannot edit an expense that is already {expense.status}"
            raise ValidationError(msg, field="status")

        values = update.changes()
        if not values:
            return expense
        if "cost_type" in values:
            values["cost_type"] = str(values["cost_type"])

        amount = values.get("amount", expense.amount)
        cost_center_id = values.get("cost_center_id", expense.cost_center_id)
        rebuild = amount != expense.amount or cost_center_id != expense.cost_center_id
        result: ChainBuildResult | None = None
        if rebuild:
            result = await self._builder.build_chain(expense.submitter_id, amount, cost_center_id)
            if result.requires_approval:
                values.update(
                    approval_rule_id=result.rule_id,
                    approval_chain=dump_chain(result.chain),
                    current_approval_level=1,
                    current_approver_id=result.chain[0].approver_user_id,
                )
            else:
                values.update(
                    status=str(ExpenseStatus.APPROVED),
                    approved_at=utc_now(),
                    approval_rule_id=None,
                    approval_chain=None,
                    current_approval_level=None,
                    current_approver_id=None,
                )

        if not await self._expenses.conditional_update(
            expense_id,
            expected_status=expense.status,
            expected_level=expense.current_approval_level,
            expected_version=expense.version,
            **values,
        ):
            msg = f"Expense {expense_id} changed while it was being edited; reload and retry"
            raise ValidationError(msg, field="expense_id")

        expense = await self._expenses.reload(expense_id)
        if result is None:
            logger.info("Expense %s edited by submitter %s", expense_id, owner_id)
        elif result.requires_approval:
            submitter = await self._users.get(expense.submitter_id)
            self._request_first_approval(expense, result, submitter)
            logger.info("Expense %s edited; approval restarted with %d level(s)",
                        expense_id, len(result.chain))
        else:
            await self._dispatcher.enqueue(expense)
            logger.info("Expense %s edited and auto-approved", expense_id)
        return expense

    async def _active_submitter(self, submitter_id: UUID) -> UserRow:
        submitter = await self._users.get(submitter_id)
        if submitter is None or not submitter.is_active:
            msg = f"Unknown or inactive submitter {submitter_id}"
            raise ValidationError(msg, field="submitter_id")
        return submitter

    async def _create(
        self,
        submitter: UserRow,
        result: ChainBuildResult,
        *,
        cost_center_id: UUID | None,
        amount: Decimal,
        description: str,
        category: str,
        cost_type: CostType,
        expense_date: date,
        vendor_name: str | None,
        is_reimbursable: bool,
        notes: str | None,
        marketplace_correlation_id: str | None,
    ) -> ExpenseRow:
        common = {
            "expense_id": new_uuid7(),
            "submitter_id": submitter.user_id,
            "cost_center_id": cost_center_id,
            "amount": amount,
            "description": description,
            "category": category,
            "cost_type": str(cost_type),
            "expense_date": expense_date,
            "vendor_name": vendor_name,
            "is_reimbursable": is_reimbursable,
            "notes": notes,
            "marketplace_correlation_id": marketplace_correlation_id,
            "marketplace_order_status": (
                str(OrderStatus.PENDING) if marketplace_correlation_id else None
            ),
        }

        if not result.requires_approval:
            expense = await self._expenses.create(
                **common,
                status=str(ExpenseStatus.APPROVED),
                approved_at=utc_now(),
            )
            await self._dispatcher.enqueue(expense)
            logger.info("Expense %s auto-approved", expense.expense_id)
            return expense

        expense = await self._expenses.create(
            **common,
            status=str(ExpenseStatus.PENDING),
            approval_rule_id=result.rule_id,
            approval_chain=dump_chain(result.chain),
            current_approval_level=1,
            current_approver_id=result.chain[0].approver_user_id,
        )
        self._request_first_approval(expense, result, submitter)
        logger.info("Expense %s pending %d approval level(s) under rule %s",
                    expense.expense_id, len(result.chain), result.rule_id)
        return expense

    def _request_first_approval(self, expense: ExpenseRow, result: ChainBuildResult,
                                submitter: UserRow | None) -> None:
        first = result.chain[0]
        self._notifications.queue(
            NotificationKind.APPROVAL_REQUESTED,
            ExpenseSnapshot.from_row(expense),
            Recipient(
                user_id=first.approver_user_id,
                name=first.approver_name,
                email=first.approver_email,
            ),
            {"level": first.level, "submitter_name": submitter.full_name if submitter else ""},
        )


def _line_description(item: CartItemRow) -> str:
    if item.quantity > 1:
        return f"{item.description} (x{item.quantity})"
    return item.description
