"""Effect runner — executes outbox intents outside the approving request.

Each intent goes through three short transactions:

1. claim (conditional PENDING -> RUNNING) and snapshot the expense;
2. call the collaborator with no transaction open;
3. record the outcome on the expense's effect columns and the intent.

Only the runner whose claim flipped the row performs step 2, so a
marketplace order is placed at most once even when runners race. Each
intent is isolated: a failure is recorded on that intent and never
reaches the caller or the other effect.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from src.approvals.errors import ExpenseNotFoundError, ValidationError
from src.db.session import SessionFactory, session_scope
from src.effects.dispatcher import wants_marketplace_order
from src.integrations.base import (
    AccountMapping,
    ExpenseSnapshot,
    LedgerClient,
    LedgerSyncResult,
    MarketplaceClient,
    OrderResult,
)
from src.integrations.config import EffectsConfig
from src.models.common import (
    EffectKind,
    EffectStatus,
    ExpenseHubBase,
    ExpenseStatus,
    OrderStatus,
    utc_now,
)
from src.models.expense import BuyerInfo
from src.repositories.effects import EffectIntentRepository
from src.repositories.expenses import ExpenseRepository
from src.repositories.ledger_mappings import LedgerAccountMappingRepository
from src.repositories.users import UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Job:
    intent_id: UUID
    kind: EffectKind
    expense: ExpenseSnapshot
    mapping: AccountMapping | None = None
    buyer: BuyerInfo | None = None


class LedgerRetryOutcome(ExpenseHubBase):
    """One expense of a bulk ledger retry: a final status or the refusal."""

    expense_id: UUID
    status: EffectStatus | None = None
    error: str | None = None


class EffectRunner:
    def __init__(
        self,
        session_factory: SessionFactory,
        ledger: LedgerClient,
        marketplace: MarketplaceClient,
        config: EffectsConfig,
    ) -> None:
        self._factory = session_factory
        self._ledger = ledger
        self._marketplace = marketplace
        self._config = config

    async def run_for_expense(self, expense_id: UUID) -> dict[EffectKind, EffectStatus]:
        """Run every PENDING intent of one expense.

        Returns:
            Final status per effect this call executed. Intents claimed by
            another runner are absent.
        """
        async with session_scope(self._factory) as session:
            intents = await EffectIntentRepository(session).list_for_expense(expense_id)
            todo = [
                (i.intent_id, EffectKind(i.kind))
                for i in intents if i.status == EffectStatus.PENDING
            ]

        results: dict[EffectKind, EffectStatus] = {}
        for intent_id, kind in todo:
            status = await self._run_intent(intent_id, kind)
            if status is not None:
                results[kind] = status
        return results

    async def run_pending(self, limit: int = 100) -> int:
        """Sweep PENDING intents left behind by crashed or skipped runs."""
        async with session_scope(self._factory) as session:
            intents = await EffectIntentRepository(session).list_by_status(
                EffectStatus.PENDING, limit=limit,
            )
            todo = [(i.intent_id, EffectKind(i.kind)) for i in intents]

        executed = 0
        for intent_id, kind in todo:
            if await self._run_intent(intent_id, kind) is not None:
                executed += 1
        return executed

    async def retry_ledger_sync(self, expense_id: UUID) -> EffectStatus | None:
        """Re-arm and run the ledger sync of an approved, unsynced expense."""
        async with session_scope(self._factory) as session:
            expense = await ExpenseRepository(session).get(expense_id)
            if expense is None or expense.status != ExpenseStatus.APPROVED:
                msg = f"No approved expense {expense_id}"
                raise ExpenseNotFoundError(msg)
            if expense.ledger_reference:
                msg = f"Expense {expense_id} is already synced as {expense.ledger_reference}"
                raise ValidationError(msg, field="expense_id")

            intents = EffectIntentRepository(session)
            intent = await intents.get_for_expense(expense_id, EffectKind.LEDGER_SYNC)
            if intent is None:
                intent = await intents.create_if_absent(expense_id, EffectKind.LEDGER_SYNC)
                if intent is None:
                    msg = f"Ledger sync for expense {expense_id} was enqueued concurrently"
                    raise ValidationError(msg, field="expense_id")
            elif intent.status == EffectStatus.RUNNING:
                msg = f"Ledger sync for expense {expense_id} is already running"
                raise ValidationError(msg, field="expense_id")
            elif intent.status != EffectStatus.PENDING:
                await intents.rearm(intent.intent_id)
            intent_id = intent.intent_id

        return await self._run_intent(intent_id, EffectKind.LEDGER_SYNC)

    async def retry_ledger_syncs(self, expense_ids: list[UUID]) -> list[LedgerRetryOutcome]:
        """Retry several ledger syncs; a refused expense never stops the rest."""
        outcomes: list[LedgerRetryOutcome] = []
        for expense_id in dict.fromkeys(expense_ids):
            try:
                status = await self.retry_ledger_sync(expense_id)
            except (ExpenseNotFoundError, ValidationError) as exc:
                outcomes.append(LedgerRetryOutcome(expense_id=expense_id, error=str(exc)))
                continue
            outcomes.append(LedgerRetryOutcome(expense_id=expense_id, status=status))
        succeeded = sum(1 for o in outcomes if o.status == EffectStatus.SUCCEEDED)
        logger.info("Bulk ledger retry: %d of %d expense(s) synced", succeeded, len(outcomes))
        return outcomes

    # ------------------------------------------------------------------
    # One intent
    # ------------------------------------------------------------------

    async def _run_intent(self, intent_id: UUID, kind: EffectKind) -> EffectStatus | None:
        try:
            job = await self._claim(intent_id, kind)
        except Exception:
            logger.exception("Could not claim %s intent %s", kind, intent_id)
            return None
        if not isinstance(job, _Job):
            return job

        if kind == EffectKind.LEDGER_SYNC:
            result = await self._call_ledger(job)
            status = EffectStatus.SUCCEEDED if result.success else EffectStatus.FAILED
            error = result.error
        else:
            order = await self._call_marketplace(job)
            status = EffectStatus.SUCCEEDED if order.success else EffectStatus.FAILED
            error = order.error

        try:
            async with session_scope(self._factory) as session:
                expenses = ExpenseRepository(session)
                if kind == EffectKind.LEDGER_SYNC:
                    await self._record_ledger(expenses, job.expense.expense_id, result)
                else:
                    await self._record_order(expenses, job.expense.expense_id, order)
                await EffectIntentRepository(session).finish(intent_id, status, error)
        except Exception:
            logger.exception(
                "Could not record %s outcome for expense %s", kind, job.expense.expense_id,
            )
            return None

        log = logger.info if status == EffectStatus.SUCCEEDED else logger.warning
        log("%s for expense %s: %s%s", kind, job.expense.expense_id, status,
            f" ({error})" if error else "")
        return status

    async def _claim(self, intent_id: UUID, kind: EffectKind) -> "_Job | EffectStatus | None":
        async with session_scope(self._factory) as session:
            intents = EffectIntentRepository(session)
            if not await intents.claim(intent_id):
                logger.info("%s intent %s already claimed", kind, intent_id)
                return None
            intent = await intents.get(intent_id)
            expense = await ExpenseRepository(session).reload(intent.expense_id)
            if expense is None or expense.status != ExpenseStatus.APPROVED:
                await intents.finish(intent_id, EffectStatus.SKIPPED, "expense is not approved")
                return EffectStatus.SKIPPED

            snapshot = ExpenseSnapshot.from_row(expense)
            if kind == EffectKind.LEDGER_SYNC:
                if expense.ledger_reference:
                    await intents.finish(intent_id, EffectStatus.SKIPPED, None)
                    return EffectStatus.SKIPPED
                mapping = AccountMapping(
                    category_mapping=await LedgerAccountMappingRepository(session).as_dict(),
                    default_account=self._config.default_account,
                    default_tax_type=self._config.default_tax_type,
                )
                return _Job(intent_id, kind, snapshot, mapping=mapping)

            if not wants_marketplace_order(expense):
                await intents.finish(intent_id, EffectStatus.SKIPPED, None)
                return EffectStatus.SKIPPED
            submitter = await UserRepository(session).get(expense.submitter_id)
            if submitter is None:
                await intents.finish(intent_id, EffectStatus.FAILED, "submitter not found")
                return EffectStatus.FAILED
            buyer = BuyerInfo(
                user_id=submitter.user_id,
                name=submitter.full_name,
                email=submitter.email,
            )
            return _Job(intent_id, kind, snapshot, buyer=buyer)

    async def _call_ledger(self, job: _Job) -> LedgerSyncResult:
        try:
            return await self._ledger.sync_expense(job.expense, job.mapping)
        except Exception as exc:
            logger.exception("Ledger client raised for expense %s", job.expense.expense_id)
            return LedgerSyncResult(success=False, error=str(exc) or type(exc).__name__)

    async def _call_marketplace(self, job: _Job) -> OrderResult:
        try:
            return await self._marketplace.place_order(job.expense, job.buyer)
        except Exception as exc:
            logger.exception("Marketplace client raised for expense %s", job.expense.expense_id)
            return OrderResult(success=False, error=str(exc) or type(exc).__name__)

    @staticmethod
    async def _record_ledger(expenses: ExpenseRepository, expense_id: UUID,
                             result: LedgerSyncResult) -> None:
        if result.success:
            await expenses.update_effect_fields(
                expense_id,
                ledger_reference=result.reference_id,
                ledger_synced_at=utc_now(),
                ledger_sync_error=None,
            )
        else:
            await expenses.update_effect_fields(
                expense_id, ledger_sync_error=result.error or "ledger sync failed",
            )

    @staticmethod
    async def _record_order(expenses: ExpenseRepository, expense_id: UUID,
                            order: OrderResult) -> None:
        if order.success:
            await expenses.update_effect_fields(
                expense_id,
                marketplace_order_status=OrderStatus.CONFIRMED,
                marketplace_po_number=order.order_number,
                marketplace_order_sent_at=utc_now(),
            )
        else:
            await expenses.update_effect_fields(
                expense_id, marketplace_order_status=OrderStatus.FAILED,
            )
