"""Completion effect execution: inline background task or Celery worker.

When CELERY_BROKER_URL is configured, effects run in a Celery worker.
When empty (dev/test), they run in-process after the response is sent.
"""

import asyncio
import logging
from uuid import UUID

from src.config.settings import Settings, get_settings
from src.db.session import SessionFactory, get_session_factory
from src.effects.runner import EffectRunner
from src.integrations.config import effects_config, ledger_config, marketplace_config
from src.integrations.ledger import HttpLedgerClient
from src.integrations.marketplace import HttpMarketplaceClient

logger = logging.getLogger(__name__)

EFFECTS_TASK_NAME = "expensehub.completion_effects"

_celery_app = None


def get_celery_app():
    """Get or create the Celery application.

    The effects task is registered here, so a worker that only builds the
    app knows it as well as the API process that sends it.
    """
    global _celery_app
    if _celery_app is None:
        from celery import Celery

        settings = get_settings()
        broker_url = settings.CELERY_BROKER_URL or settings.REDIS_URL
        _celery_app = Celery(
            "expensehub",
            broker=broker_url,
            backend=broker_url,
        )
        _celery_app.conf.task_serializer = "json"
        _celery_app.conf.result_serializer = "json"
        _celery_app.task(name=EFFECTS_TASK_NAME)(_celery_effects_task)
    return _celery_app


def build_runner(settings: Settings, session_factory: SessionFactory | None = None) -> EffectRunner:
    return EffectRunner(
        session_factory or get_session_factory(),
        HttpLedgerClient(ledger_config(settings)),
        HttpMarketplaceClient(marketplace_config(settings)),
        effects_config(settings),
    )


async def run_effects(runner: EffectRunner, expense_id: UUID) -> None:
    """Background-task entry point. Never raises."""
    try:
        results = await runner.run_for_expense(expense_id)
    except Exception:
        logger.exception("Completion effects for expense %s failed", expense_id)
        return
    if results:
        logger.info("Completion effects for expense %s: %s", expense_id,
                    {str(k): str(v) for k, v in results.items()})


def _celery_effects_task(expense_id_str: str) -> None:
    """Celery task: run the effects of one expense with a worker-local runner."""
    runner = build_runner(get_settings())
    asyncio.run(run_effects(runner, UUID(expense_id_str)))


def dispatch_effects(expense_id: UUID) -> None:
    """Send one expense's effects to the Celery worker."""
    get_celery_app().tasks[EFFECTS_TASK_NAME].delay(str(expense_id))


class EffectScheduler:
    """Hands approved expenses to whichever executor is configured."""

    def __init__(self, runner: EffectRunner, use_celery: bool) -> None:
        self._runner = runner
        self._use_celery = use_celery

    def schedule(self, background_tasks, expense_id: UUID) -> None:
        """Queue effects to start once the response has been sent.

        ``background_tasks`` is a FastAPI BackgroundTasks; its tasks run
        after the request's Unit-of-Work has committed.
        """
        if self._use_celery:
            background_tasks.add_task(dispatch_effects, expense_id)
        else:
            background_tasks.add_task(run_effects, self._runner, expense_id)
