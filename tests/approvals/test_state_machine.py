"""Tests for the approval state machine — src/approvals/state_machine.py.

Covers the end-to-end scenarios (single level, auto-approve, two-level
approve-then-reject, unauthorized approver), concurrency via stale reads,
stored-chain corruption, rescind and delete.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from uuid_extensions import uuid7

from src.approvals.chain_builder import ApprovalChainBuilder
from src.approvals.errors import (
    ExpenseNotFoundError,
    ForbiddenError,
    InconsistentStateError,
    ValidationError,
)
from src.approvals.manager_chain import ManagerChainResolver
from src.approvals.notifications import NotificationTrigger
from src.approvals.rule_matcher import RuleMatcher
from src.approvals.state_machine import ApprovalStateMachine
from src.approvals.submission import ExpenseSubmissionService
from src.db.tables import ExpenseRow
from src.effects.dispatcher import CompletionEffectsDispatcher
from src.integrations.config import EffectsConfig
from src.models.approval import ApprovalRule
from src.models.common import (
    RESCINDED_REASON,
    EffectKind,
    ExpenseStatus,
    NotificationKind,
    StepStatus,
)
from src.models.expense import ExpenseDraft
from src.repositories.approval_rules import ApprovalRuleRepository
from src.repositories.cart import CartItemRepository
from src.repositories.effects import EffectIntentRepository
from src.repositories.expenses import ExpenseRepository
from src.repositories.users import UserRepository


class _InterleavingRepo(ExpenseRepository):
    """Runs ``action`` right after the pending read, like a concurrent request."""

    def __init__(self, session: AsyncSession, action) -> None:
        super().__init__(session)
        self._action = action

    async def get_pending(self, expense_id):
        row = await super().get_pending(expense_id)
        if self._action is not None:
            action, self._action = self._action, None
            await action()
        return row


@dataclass
class Harness:
    session: AsyncSession
    notifications: NotificationTrigger
    machine: ApprovalStateMachine
    submission: ExpenseSubmissionService
    intents: EffectIntentRepository
    expenses: ExpenseRepository

    def machine_with(self, expense_repo: ExpenseRepository) -> ApprovalStateMachine:
        return ApprovalStateMachine(
            expense_repo,
            UserRepository(self.session),
            CompletionEffectsDispatcher(self.intents, EffectsConfig()),
            self.notifications,
        )

    async def add_rule(self, lo: str, hi: str | None, levels: int) -> ApprovalRule:
        rule = ApprovalRule(
            name=f"{lo}+",
            min_amount=Decimal(lo),
            max_amount=Decimal(hi) if hi else None,
            levels_required=levels,
        )
        await ApprovalRuleRepository(self.session).create(rule)
        return rule

    async def submit(self, submitter_id, amount: str, **kw) -> ExpenseRow:
        draft = ExpenseDraft(
            amount=Decimal(amount),
            description="Team offsite",
            category="Travel",
            expense_date=date(2026, 3, 1),
            **kw,
        )
        return await self.submission.submit_expense(submitter_id, draft)


@pytest.fixture
def harness(db_session: AsyncSession, notifier) -> Harness:
    expenses = ExpenseRepository(db_session)
    users = UserRepository(db_session)
    intents = EffectIntentRepository(db_session)
    notifications = NotificationTrigger(notifier)
    dispatcher = CompletionEffectsDispatcher(intents, EffectsConfig())
    builder = ApprovalChainBuilder(
        RuleMatcher(ApprovalRuleRepository(db_session)),
        ManagerChainResolver(users),
    )
    return Harness(
        session=db_session,
        notifications=notifications,
        machine=ApprovalStateMachine(expenses, users, dispatcher, notifications),
        submission=ExpenseSubmissionService(
            expenses, users, CartItemRepository(db_session), builder, dispatcher, notifications,
        ),
        intents=intents,
        expenses=expenses,
    )


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:

    @pytest.mark.anyio
    async def test_single_level_approval(self, harness: Harness, org) -> None:
        await harness.add_rule("0", "500", 1)
        expense = await harness.submit(org.employee.user_id, "100")
        assert expense.status == ExpenseStatus.PENDING
        assert expense.current_approval_level == 1
        assert [s["approver_user_id"] for s in expense.approval_chain] == [str(org.manager.user_id)]

        harness.notifications.discard()
        outcome = await harness.machine.approve(expense.expense_id, org.manager.user_id, "ok")

        assert outcome.status == ExpenseStatus.APPROVED
        assert outcome.is_final is True
        assert outcome.next_approver is None
        row = await harness.expenses.reload(expense.expense_id)
        assert row.status == ExpenseStatus.APPROVED
        assert row.approved_by == org.manager.user_id
        assert row.approved_at is not None
        assert row.approval_chain[0]["status"] == StepStatus.APPROVED
        assert row.approval_chain[0]["comments"] == "ok"
        assert row.version == 2

        kinds = [i.kind for i in await harness.intents.list_for_expense(expense.expense_id)]
        assert kinds == [EffectKind.LEDGER_SYNC]
        notices = harness.notifications.pending
        assert [(n.kind, n.recipient.user_id) for n in notices] == [
            (NotificationKind.EXPENSE_APPROVED, org.employee.user_id),
        ]

    @pytest.mark.anyio
    async def test_no_manager_is_auto_approved(self, harness: Harness, org) -> None:
        await harness.add_rule("0", "500", 1)
        expense = await harness.submit(org.loner.user_id, "100")
        assert expense.status == ExpenseStatus.APPROVED
        assert expense.approval_chain is None
        assert expense.current_approval_level is None
        assert expense.approved_at is not None
        intents = await harness.intents.list_for_expense(expense.expense_id)
        assert [i.kind for i in intents] == [EffectKind.LEDGER_SYNC]
        assert harness.notifications.pending == []

    @pytest.mark.anyio
    async def test_two_levels_approve_then_reject(self, harness: Harness, org) -> None:
        await harness.add_rule("500", None, 2)
        expense = await harness.submit(org.employee.user_id, "1000")

        first = await harness.machine.approve(expense.expense_id, org.manager.user_id)
        assert first.is_final is False
        assert first.status == ExpenseStatus.PENDING
        assert first.current_approval_level == 2
        assert first.next_approver.user_id == org.director.user_id

        harness.notifications.discard()
        second = await harness.machine.reject(
            expense.expense_id, org.director.user_id, "over budget",
        )
        assert second.status == ExpenseStatus.REJECTED
        assert second.is_final is True

        row = await harness.expenses.reload(expense.expense_id)
        assert row.status == ExpenseStatus.REJECTED
        assert row.rejection_reason == "over budget"
        assert row.current_approval_level == 2
        assert [s["status"] for s in row.approval_chain] == [
            StepStatus.APPROVED, StepStatus.REJECTED,
        ]
        assert await harness.intents.list_for_expense(expense.expense_id) == []
        notices = harness.notifications.pending
        assert len(notices) == 1
        assert notices[0].kind == NotificationKind.EXPENSE_REJECTED
        assert notices[0].recipient.user_id == org.employee.user_id
        assert notices[0].extra["reason"] == "over budget"

    @pytest.mark.anyio
    async def test_non_approver_is_forbidden(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 2)
        expense = await harness.submit(org.employee.user_id, "100")
        with pytest.raises(ForbiddenError):
            await harness.machine.approve(expense.expense_id, org.director.user_id)
        with pytest.raises(ForbiddenError):
            await harness.machine.reject(expense.expense_id, org.employee.user_id, "no")
        row = await harness.expenses.reload(expense.expense_id)
        assert row.current_approval_level == 1
        assert row.version == 1

    @pytest.mark.anyio
    async def test_intermediate_approval_notifies_next_approver(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 3)
        expense = await harness.submit(org.employee.user_id, "100")
        assert [n.recipient.user_id for n in harness.notifications.pending] == [org.manager.user_id]

        harness.notifications.discard()
        await harness.machine.approve(expense.expense_id, org.manager.user_id)
        notices = harness.notifications.pending
        assert len(notices) == 1
        assert notices[0].kind == NotificationKind.APPROVAL_REQUESTED
        assert notices[0].recipient.user_id == org.director.user_id
        assert notices[0].extra["level"] == 2
        assert notices[0].extra["submitter_name"] == "Eli Test"
        assert await harness.intents.list_for_expense(expense.expense_id) == []


# ---------------------------------------------------------------------------
# Error paths
# ---------------------------------------------------------------------------


class TestApproveReject:

    @pytest.mark.anyio
    async def test_unknown_expense(self, harness: Harness, org) -> None:
        with pytest.raises(ExpenseNotFoundError):
            await harness.machine.approve(uuid7(), org.manager.user_id)

    @pytest.mark.anyio
    @pytest.mark.parametrize("comments", [None, "", "   "])
    async def test_reject_requires_comments_first(self, harness: Harness, org, comments) -> None:
        # checked before the lookup, so even an unknown id fails validation
        with pytest.raises(ValidationError) as exc_info:
            await harness.machine.reject(uuid7(), org.manager.user_id, comments)
        assert exc_info.value.field == "comments"

    @pytest.mark.anyio
    async def test_terminal_expense_cannot_be_approved(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.machine.approve(expense.expense_id, org.manager.user_id)
        with pytest.raises(ExpenseNotFoundError):
            await harness.machine.approve(expense.expense_id, org.manager.user_id)
        with pytest.raises(ExpenseNotFoundError):
            await harness.machine.reject(expense.expense_id, org.manager.user_id, "late")

    @pytest.mark.anyio
    async def test_repeat_approval_does_not_advance_twice(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 3)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.machine.approve(expense.expense_id, org.manager.user_id)
        with pytest.raises(ForbiddenError):
            await harness.machine.approve(expense.expense_id, org.manager.user_id)
        row = await harness.expenses.reload(expense.expense_id)
        assert row.current_approval_level == 2

    @pytest.mark.anyio
    async def test_final_approval_enqueues_effects_once(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        expense = await harness.submit(
            org.employee.user_id, "100", marketplace_correlation_id="SPAID-1",
        )
        await harness.machine.approve(expense.expense_id, org.manager.user_id)
        row = await harness.expenses.reload(expense.expense_id)

        dispatcher = CompletionEffectsDispatcher(harness.intents, EffectsConfig())
        assert await dispatcher.enqueue(row) == []
        kinds = sorted(i.kind for i in await harness.intents.list_for_expense(expense.expense_id))
        assert kinds == [EffectKind.LEDGER_SYNC, EffectKind.MARKETPLACE_ORDER]


class TestConcurrency:

    @pytest.mark.anyio
    async def test_loser_of_approval_race_is_forbidden(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 3)
        expense = await harness.submit(org.employee.user_id, "100")
        eid = expense.expense_id

        async def other_request_approves() -> None:
            assert await ExpenseRepository(harness.session).conditional_update(
                eid, expected_status=ExpenseStatus.PENDING, expected_level=1,
                expected_version=1, current_approval_level=2,
            )

        machine = harness.machine_with(_InterleavingRepo(harness.session, other_request_approves))
        with pytest.raises(ForbiddenError):
            await machine.approve(eid, org.manager.user_id)

        row = await harness.expenses.reload(eid)
        assert row.current_approval_level == 2
        assert row.version == 2

    @pytest.mark.anyio
    async def test_loser_after_rejection_sees_not_found(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 2)
        expense = await harness.submit(org.employee.user_id, "100")
        eid = expense.expense_id

        async def other_request_rescinds() -> None:
            assert await ExpenseRepository(harness.session).conditional_update(
                eid, expected_status=ExpenseStatus.PENDING, expected_level=1,
                expected_version=1, status=ExpenseStatus.REJECTED,
                rejection_reason=RESCINDED_REASON,
            )

        machine = harness.machine_with(_InterleavingRepo(harness.session, other_request_rescinds))
        with pytest.raises(ExpenseNotFoundError):
            await machine.approve(eid, org.manager.user_id)
        assert await harness.intents.list_for_expense(eid) == []

    @pytest.mark.anyio
    async def test_stale_version_update_affects_nothing(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 2)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.machine.approve(expense.expense_id, org.manager.user_id)
        applied = await harness.expenses.conditional_update(
            expense.expense_id, expected_status=ExpenseStatus.PENDING,
            expected_level=1, expected_version=1, current_approval_level=2,
        )
        assert applied is False


class TestInconsistentChain:

    @pytest.mark.anyio
    async def test_corrupt_chain_raises_and_is_not_repaired(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 2)
        expense = await harness.submit(org.employee.user_id, "100")
        broken = [dict(expense.approval_chain[0], level=2)]
        await harness.session.execute(
            update(ExpenseRow)
            .where(ExpenseRow.expense_id == expense.expense_id)
            .values(approval_chain=broken)
        )

        with pytest.raises(InconsistentStateError):
            await harness.machine.approve(expense.expense_id, org.manager.user_id)
        row = await harness.expenses.reload(expense.expense_id)
        assert row.approval_chain == broken
        assert row.status == ExpenseStatus.PENDING

    @pytest.mark.anyio
    async def test_level_outside_chain(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.session.execute(
            update(ExpenseRow)
            .where(ExpenseRow.expense_id == expense.expense_id)
            .values(current_approval_level=4)
        )
        with pytest.raises(InconsistentStateError):
            await harness.machine.approve(expense.expense_id, org.manager.user_id)

    @pytest.mark.anyio
    async def test_pending_inbox_skips_corrupt_rows(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        good = await harness.submit(org.employee.user_id, "100")
        bad = await harness.submit(org.employee.user_id, "200")
        await harness.session.execute(
            update(ExpenseRow).where(ExpenseRow.expense_id == bad.expense_id)
            .values(approval_chain=[])
        )
        inbox = await harness.machine.list_pending_for(org.manager.user_id)
        assert [e.expense_id for e in inbox] == [good.expense_id]


class TestPendingInbox:

    @pytest.mark.anyio
    async def test_inbox_follows_current_level(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 2)
        expense = await harness.submit(org.employee.user_id, "100")
        assert expense.current_approver_id == org.manager.user_id

        await harness.machine.approve(expense.expense_id, org.manager.user_id)
        assert await harness.machine.list_pending_for(org.manager.user_id) == []
        inbox = await harness.machine.list_pending_for(org.director.user_id)
        assert [e.expense_id for e in inbox] == [expense.expense_id]

        await harness.machine.approve(expense.expense_id, org.director.user_id)
        assert await harness.machine.list_pending_for(org.director.user_id) == []
        row = await harness.expenses.reload(expense.expense_id)
        assert row.current_approver_id is None

    @pytest.mark.anyio
    async def test_rejected_leaves_inbox(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.machine.reject(expense.expense_id, org.manager.user_id, "no receipt")

        assert await harness.machine.list_pending_for(org.manager.user_id) == []
        row = await harness.expenses.reload(expense.expense_id)
        assert row.current_approver_id is None


# ---------------------------------------------------------------------------
# Submitter actions
# ---------------------------------------------------------------------------


class TestRescind:

    @pytest.mark.anyio
    async def test_rescind_after_partial_progress(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 2)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.machine.approve(expense.expense_id, org.manager.user_id)
        harness.notifications.discard()

        outcome = await harness.machine.rescind(expense.expense_id, org.employee.user_id)
        assert outcome.status == ExpenseStatus.REJECTED
        assert outcome.message == RESCINDED_REASON

        row = await harness.expenses.reload(expense.expense_id)
        assert row.status == ExpenseStatus.REJECTED
        assert row.rejection_reason == RESCINDED_REASON
        assert [s["status"] for s in row.approval_chain] == [
            StepStatus.APPROVED, StepStatus.PENDING,
        ]
        assert harness.notifications.pending == []
        assert await harness.intents.list_for_expense(expense.expense_id) == []

    @pytest.mark.anyio
    async def test_only_submitter_may_rescind(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        expense = await harness.submit(org.employee.user_id, "100")
        with pytest.raises(ForbiddenError):
            await harness.machine.rescind(expense.expense_id, org.manager.user_id)

    @pytest.mark.anyio
    async def test_cannot_rescind_terminal_expense(self, harness: Harness, org) -> None:
        expense = await harness.submit(org.employee.user_id, "100")  # no rules: approved
        with pytest.raises(ExpenseNotFoundError):
            await harness.machine.rescind(expense.expense_id, org.employee.user_id)


class TestDelete:

    @pytest.mark.anyio
    async def test_delete_pending(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.machine.delete(expense.expense_id, org.employee.user_id)
        assert await harness.expenses.reload(expense.expense_id) is None

    @pytest.mark.anyio
    async def test_delete_rejected(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.machine.reject(expense.expense_id, org.manager.user_id, "no receipt")
        await harness.machine.delete(expense.expense_id, org.employee.user_id)
        assert await harness.expenses.reload(expense.expense_id) is None

    @pytest.mark.anyio
    async def test_approved_expense_cannot_be_deleted(self, harness: Harness, org) -> None:
        expense = await harness.submit(org.employee.user_id, "100")
        with pytest.raises(ValidationError):
            await harness.machine.delete(expense.expense_id, org.employee.user_id)
        assert await harness.expenses.reload(expense.expense_id) is not None

    @pytest.mark.anyio
    async def test_only_submitter_may_delete(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 1)
        expense = await harness.submit(org.employee.user_id, "100")
        with pytest.raises(ForbiddenError):
            await harness.machine.delete(expense.expense_id, org.manager.user_id)

    @pytest.mark.anyio
    async def test_unknown_expense(self, harness: Harness, org) -> None:
        with pytest.raises(ExpenseNotFoundError):
            await harness.machine.delete(uuid7(), org.employee.user_id)


class TestHistory:

    @pytest.mark.anyio
    async def test_history_returns_steps(self, harness: Harness, org) -> None:
        await harness.add_rule("0", None, 2)
        expense = await harness.submit(org.employee.user_id, "100")
        await harness.machine.approve(expense.expense_id, org.manager.user_id, "fine")
        steps = await harness.machine.history(expense.expense_id)
        assert [s.status for s in steps] == [StepStatus.APPROVED, StepStatus.PENDING]
        assert steps[0].decided_by_user_id == org.manager.user_id
        assert steps[0].decided_at is not None

    @pytest.mark.anyio
    async def test_auto_approved_history_is_empty(self, harness: Harness, org) -> None:
        expense = await harness.submit(org.employee.user_id, "100")
        assert await harness.machine.history(expense.expense_id) == []
