"""Approval state machine — approve / reject / rescind / delete one expense.

States: pending -> approved | rejected. Both outcomes are terminal.

Every transition is one conditional UPDATE guarded by the status, level
and version that were read. When it matches no row, a concurrent action
won: the loser re-reads and reports ForbiddenError (the level moved on)
or ExpenseNotFoundError (no longer pending). Completion effects and
notices are only recorded here; they run after the caller commits.
"""

import logging
from uuid import UUID

from src.approvals.chain import dump_chain, load_chain, step_at
from src.approvals.errors import (
    ExpenseNotFoundError,
    ForbiddenError,
    InconsistentStateError,
    ValidationError,
)
from src.approvals.notifications import NotificationTrigger
from src.db.tables import ExpenseRow
from src.effects.dispatcher import CompletionEffectsDispatcher
from src.integrations.base import ExpenseSnapshot, Recipient
from src.models.approval import ApprovalOutcome, ApprovalStep, NextApprover
from src.models.common import (
    RESCINDED_REASON,
    ExpenseStatus,
    NotificationKind,
    StepStatus,
    utc_now,
)
from src.repositories.expenses import ExpenseRepository
from src.repositories.users import UserRepository

logger = logging.getLogger(__name__)


class ApprovalStateMachine:
    def __init__(
        self,
        expense_repo: ExpenseRepository,
        user_repo: UserRepository,
        dispatcher: CompletionEffectsDispatcher,
        notifications: NotificationTrigger,
    ) -> None:
        self._expenses = expense_repo
        self._users = user_repo
        self._dispatcher = dispatcher
        self._notifications = notifications

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def approve(self, expense_id: UUID, acting_user_id: UUID,
                      comments: str | None = None) -> ApprovalOutcome:
        expense = await self._load_pending(expense_id)
        chain, step = self._current_step(expense, acting_user_id)
        level = step.level
        now = utc_now()
        chain[level - 1] = step.model_copy(update={
            "status": StepStatus.APPROVED,
            "decided_by_user_id": acting_user_id,
            "decided_at": now,
            "comments": comments,
        })
        is_final = level == len(chain)

        if is_final:
            await self._apply(
                expense,
                status=ExpenseStatus.APPROVED,
                approval_chain=dump_chain(chain),
                current_approver_id=None,
                approved_by=acting_user_id,
                approved_at=now,
            )
        else:
            await self._apply(
                expense,
                approval_chain=dump_chain(chain),
                current_approval_level=level + 1,
                current_approver_id=chain[level].approver_user_id,
            )

        expense = await self._expenses.reload(expense_id)
        snapshot = ExpenseSnapshot.from_row(expense)

        if is_final:
            await self._dispatcher.enqueue(expense)
            await self._notify_submitter(NotificationKind.EXPENSE_APPROVED, snapshot)
            logger.info("Expense %s approved at final level %d by %s",
                        expense_id, level, acting_user_id)
            return ApprovalOutcome(
                expense_id=expense_id,
                status=ExpenseStatus.APPROVED,
                is_final=True,
                current_approval_level=level,
                message="Expense fully approved",
            )

        next_step = chain[level]
        submitter = await self._users.get(expense.submitter_id)
        self._notifications.queue(
            NotificationKind.APPROVAL_REQUESTED,
            snapshot,
            Recipient(
                user_id=next_step.approver_user_id,
                name=next_step.approver_name,
                email=next_step.approver_email,
            ),
            {
                "level": next_step.level,
                "submitter_name": submitter.full_name if submitter else "",
            },
        )
        logger.info("Expense %s approved at level %d by %s; now at level %d",
                    expense_id, level, acting_user_id, next_step.level)
        return ApprovalOutcome(
            expense_id=expense_id,
            status=ExpenseStatus.PENDING,
            is_final=False,
            current_approval_level=next_step.level,
            next_approver=NextApprover(
                level=next_step.level,
                user_id=next_step.approver_user_id,
                name=next_step.approver_name,
                email=next_step.approver_email,
            ),
            message=f"Approved at level {level}; awaiting level {next_step.level}",
        )

    async def reject(self, expense_id: UUID, acting_user_id: UUID,
                     comments: str | None) -> ApprovalOutcome:
        reason = (comments or "").strip()
        if not reason:
            msg = "A rejection reason is required"
            raise ValidationError(msg, field="comments")

        expense = await self._load_pending(expense_id)
        chain, step = self._current_step(expense, acting_user_id)
        chain[step.level - 1] = step.model_copy(update={
            "status": StepStatus.REJECTED,
            "decided_by_user_id": acting_user_id,
            "decided_at": utc_now(),
            "comments": reason,
        })
        await self._apply(
            expense,
            status=ExpenseStatus.REJECTED,
            approval_chain=dump_chain(chain),
            rejection_reason=reason,
            current_approver_id=None,
        )

        expense = await self._expenses.reload(expense_id)
        await self._notify_submitter(
            NotificationKind.EXPENSE_REJECTED,
            ExpenseSnapshot.from_row(expense),
            {"reason": reason},
        )
        logger.info("Expense %s rejected at level %d by %s",
                    expense_id, step.level, acting_user_id)
        return ApprovalOutcome(
            expense_id=expense_id,
            status=ExpenseStatus.REJECTED,
            is_final=True,
            current_approval_level=step.level,
            message="Expense rejected",
        )

    async def rescind(self, expense_id: UUID, owner_id: UUID) -> ApprovalOutcome:
        """Withdraw a pending expense. Steps already approved stay in the chain."""
        expense = await self._load_pending(expense_id)
        if expense.submitter_id != owner_id:
            msg = f"Only the submitter may rescind expense {expense_id}"
            raise ForbiddenError(msg)

        await self._apply(
            expense,
            status=ExpenseStatus.REJECTED,
            rejection_reason=RESCINDED_REASON,
            current_approver_id=None,
        )
        logger.info("Expense %s rescinded by submitter %s", expense_id, owner_id)
        return ApprovalOutcome(
            expense_id=expense_id,
            status=ExpenseStatus.REJECTED,
            is_final=True,
            current_approval_level=expense.current_approval_level,
            message=RESCINDED_REASON,
        )

    async def delete(self, expense_id: UUID, owner_id: UUID) -> None:
        expense = await self._expenses.reload(expense_id)
        if expense is None:
            msg = f"Expense {expense_id} not found"
            raise ExpenseNotFoundError(msg)
        if expense.submitter_id != owner_id:
            msg = f"Only the submitter may delete expense {expense_id}"
            raise ForbiddenError(msg)
        if expense.status == ExpenseStatus.APPROVED:
            msg = "Approved expenses cannot be deleted"
            raise ValidationError(msg, field="expense_id")

        if not await self._expenses.delete_unless_approved(
            expense_id, expected_version=expense.version,
        ):
            await self._lost_race(expense_id)
        logger.info("Expense %s deleted by submitter %s", expense_id, owner_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_pending_for(self, approver_id: UUID) -> list[ExpenseRow]:
        """Pending expenses whose current step belongs to ``approver_id``."""
        mine: list[ExpenseRow] = []
        for expense in await self._expenses.list_pending_for_approver(approver_id):
            try:
                chain = load_chain(expense.approval_chain, expense_id=expense.expense_id)
                step = step_at(chain, expense.current_approval_level,
                               expense_id=expense.expense_id)
            except InconsistentStateError:
                # already logged; one corrupt row must not hide the rest
                continue
            if step.approver_user_id == approver_id:
                mine.append(expense)
        return mine

    async def history(self, expense_id: UUID) -> list[ApprovalStep]:
        """The stored chain, or an empty list for auto-approved expenses."""
        expense = await self._expenses.get(expense_id)
        if expense is None:
            msg = f"Expense {expense_id} not found"
            raise ExpenseNotFoundError(msg)
        if expense.approval_chain is None:
            return []
        return load_chain(expense.approval_chain, expense_id=expense_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_pending(self, expense_id: UUID) -> ExpenseRow:
        expense = await self._expenses.get_pending(expense_id)
        if expense is None:
            msg = f"No pending expense {expense_id}"
            raise ExpenseNotFoundError(msg)
        return expense

    @staticmethod
    def _current_step(expense: ExpenseRow,
                      acting_user_id: UUID) -> tuple[list[ApprovalStep], ApprovalStep]:
        chain = load_chain(expense.approval_chain, expense_id=expense.expense_id)
        step = step_at(chain, expense.current_approval_level, expense_id=expense.expense_id)
        if step.approver_user_id != acting_user_id:
            msg = (
                f"User {acting_user_id} is not the approver for level {step.level} "
                f"of expense {expense.expense_id}"
            )
            raise ForbiddenError(msg)
        if step.status != StepStatus.PENDING:
            msg = f"Expense {expense.expense_id}: step {step.level} is already {step.status}."
            logger.error(msg)
            raise InconsistentStateError(msg)
        return chain, step

    async def _apply(self, expense: ExpenseRow, **values) -> None:
        applied = await self._expenses.conditional_update(
            expense.expense_id,
            expected_status=expense.status,
            expected_level=expense.current_approval_level,
            expected_version=expense.version,
            **values,
        )
        if not applied:
            await self._lost_race(expense.expense_id)

    async def _lost_race(self, expense_id: UUID) -> None:
        current = await self._expenses.reload(expense_id)
        logger.info("Concurrent update on expense %s; this action lost", expense_id)
        if current is None or current.status != ExpenseStatus.PENDING:
            msg = f"No pending expense {expense_id}"
            raise ExpenseNotFoundError(msg)
        msg = f"Expense {expense_id} moved on to level {current.current_approval_level}"
        raise ForbiddenError(msg)

    async def _notify_submitter(self, kind: NotificationKind, snapshot: ExpenseSnapshot,
                                extra: dict | None = None) -> None:
        submitter = await self._users.get(snapshot.submitter_id)
        if submitter is None:
            logger.warning("Submitter %s of expense %s not found; %s notice dropped",
                           snapshot.submitter_id, snapshot.expense_id, kind)
            return
        self._notifications.queue(
            kind,
            snapshot,
            Recipient(user_id=submitter.user_id, name=submitter.full_name, email=submitter.email),
            extra,
        )
