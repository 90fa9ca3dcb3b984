"""Explicit configuration objects for the external collaborators.

Built from Settings by the API dependency layer and task entry points;
nothing below src/api reads the environment.
"""

from pydantic import Field

from src.config.settings import Settings
from src.models.common import ExpenseHubBase


class LedgerConfig(ExpenseHubBase):
    api_url: str
    api_token: str = ""
    tenant_id: str = ""
    default_account: str = "400"
    default_tax_type: str = "NONE"
    timeout_seconds: float = Field(default=30.0, gt=0)


class MarketplaceConfig(ExpenseHubBase):
    api_url: str
    api_key: str = ""
    buyer_identity: str = ""
    timeout_seconds: float = Field(default=30.0, gt=0)


class NotifierConfig(ExpenseHubBase):
    """``api_url`` empty means notices are only logged."""

    api_url: str = ""
    api_key: str = ""
    from_address: str = "noreply@expensehub.local"
    frontend_url: str = "http://localhost:3000"
    timeout_seconds: float = Field(default=30.0, gt=0)


class EffectsConfig(ExpenseHubBase):
    ledger_sync_enabled: bool = True
    default_account: str = "400"
    default_tax_type: str = "NONE"


def ledger_config(settings: Settings) -> LedgerConfig:
    return LedgerConfig(
        api_url=settings.LEDGER_API_URL,
        api_token=settings.LEDGER_API_TOKEN,
        tenant_id=settings.LEDGER_TENANT_ID,
        default_account=settings.LEDGER_DEFAULT_ACCOUNT,
        default_tax_type=settings.LEDGER_DEFAULT_TAX_TYPE,
        timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
    )


def marketplace_config(settings: Settings) -> MarketplaceConfig:
    return MarketplaceConfig(
        api_url=settings.MARKETPLACE_API_URL,
        api_key=settings.MARKETPLACE_API_KEY,
        buyer_identity=settings.MARKETPLACE_BUYER_IDENTITY,
        timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
    )


def notifier_config(settings: Settings) -> NotifierConfig:
    return NotifierConfig(
        api_url=settings.NOTIFY_API_URL,
        api_key=settings.NOTIFY_API_KEY,
        from_address=settings.NOTIFY_FROM_ADDRESS,
        frontend_url=settings.FRONTEND_URL,
        timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
    )


def effects_config(settings: Settings) -> EffectsConfig:
    return EffectsConfig(
        ledger_sync_enabled=settings.LEDGER_SYNC_ENABLED,
        default_account=settings.LEDGER_DEFAULT_ACCOUNT,
        default_tax_type=settings.LEDGER_DEFAULT_TAX_TYPE,
    )
