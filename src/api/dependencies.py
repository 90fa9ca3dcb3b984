"""FastAPI dependency injection factories.

Repositories take AsyncSession via Depends(get_async_session). Services are
assembled from them here, together with the explicit config objects built
from Settings, so nothing below the API layer reads the environment.

FastAPI caches a dependency per request, so the NotificationTrigger handed
to a service is the same instance the endpoint dispatches after commit.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.approvals.chain_builder import ApprovalChainBuilder
from src.approvals.manager_chain import ManagerChainResolver
from src.approvals.notifications import NotificationTrigger
from src.approvals.rule_matcher import RuleMatcher
from src.approvals.rules_admin import ApprovalRuleService
from src.approvals.state_machine import ApprovalStateMachine
from src.approvals.submission import ExpenseSubmissionService
from src.config.settings import get_settings
from src.db.session import get_async_session
from src.effects.dispatcher import CompletionEffectsDispatcher
from src.effects.runner import EffectRunner
from src.effects.tasks import EffectScheduler, build_runner
from src.integrations.base import Notifier
from src.integrations.config import effects_config, notifier_config
from src.integrations.email import build_notifier
from src.repositories.approval_rules import ApprovalRuleRepository
from src.repositories.cart import CartItemRepository
from src.repositories.effects import EffectIntentRepository
from src.repositories.expenses import ExpenseRepository
from src.repositories.ledger_mappings import LedgerAccountMappingRepository
from src.repositories.users import UserRepository

# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


async def get_user_repo(
    session: AsyncSession = Depends(get_async_session),
) -> UserRepository:
    return UserRepository(session)


async def get_expense_repo(
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRepository:
    return ExpenseRepository(session)


async def get_rule_repo(
    session: AsyncSession = Depends(get_async_session),
) -> ApprovalRuleRepository:
    return ApprovalRuleRepository(session)


async def get_cart_repo(
    session: AsyncSession = Depends(get_async_session),
) -> CartItemRepository:
    return CartItemRepository(session)


async def get_effect_intent_repo(
    session: AsyncSession = Depends(get_async_session),
) -> EffectIntentRepository:
    return EffectIntentRepository(session)


async def get_ledger_mapping_repo(
    session: AsyncSession = Depends(get_async_session),
) -> LedgerAccountMappingRepository:
    return LedgerAccountMappingRepository(session)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


def get_notifier() -> Notifier:
    return build_notifier(notifier_config(get_settings()))


async def get_notification_trigger(
    notifier: Notifier = Depends(get_notifier),
) -> NotificationTrigger:
    return NotificationTrigger(notifier)


async def get_effects_dispatcher(
    intent_repo: EffectIntentRepository = Depends(get_effect_intent_repo),
) -> CompletionEffectsDispatcher:
    return CompletionEffectsDispatcher(intent_repo, effects_config(get_settings()))


def get_effect_runner() -> EffectRunner:
    return build_runner(get_settings())


def get_effect_scheduler(
    runner: EffectRunner = Depends(get_effect_runner),
) -> EffectScheduler:
    return EffectScheduler(runner, use_celery=bool(get_settings().CELERY_BROKER_URL))


# ---------------------------------------------------------------------------
# Approval services
# ---------------------------------------------------------------------------


async def get_chain_builder(
    rule_repo: ApprovalRuleRepository = Depends(get_rule_repo),
    user_repo: UserRepository = Depends(get_user_repo),
) -> ApprovalChainBuilder:
    return ApprovalChainBuilder(RuleMatcher(rule_repo), ManagerChainResolver(user_repo))


async def get_state_machine(
    expense_repo: ExpenseRepository = Depends(get_expense_repo),
    user_repo: UserRepository = Depends(get_user_repo),
    dispatcher: CompletionEffectsDispatcher = Depends(get_effects_dispatcher),
    notifications: NotificationTrigger = Depends(get_notification_trigger),
) -> ApprovalStateMachine:
    return ApprovalStateMachine(expense_repo, user_repo, dispatcher, notifications)


async def get_submission_service(
    expense_repo: ExpenseRepository = Depends(get_expense_repo),
    user_repo: UserRepository = Depends(get_user_repo),
    cart_repo: CartItemRepository = Depends(get_cart_repo),
    builder: ApprovalChainBuilder = Depends(get_chain_builder),
    dispatcher: CompletionEffectsDispatcher = Depends(get_effects_dispatcher),
    notifications: NotificationTrigger = Depends(get_notification_trigger),
) -> ExpenseSubmissionService:
    return ExpenseSubmissionService(
        expense_repo, user_repo, cart_repo, builder, dispatcher, notifications,
    )


async def get_rule_service(
    rule_repo: ApprovalRuleRepository = Depends(get_rule_repo),
) -> ApprovalRuleService:
    return ApprovalRuleService(rule_repo)
