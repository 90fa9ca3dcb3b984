"""HttpMarketplaceClient — places punchout orders once an expense is approved.

The punchout session left a correlation id on the expense; the order
request echoes it back along with the buyer, and the marketplace answers
with a purchase-order number.
"""

import logging

import httpx

from src.integrations.base import ExpenseSnapshot, MarketplaceClient, OrderResult
from src.integrations.config import MarketplaceConfig
from src.models.expense import BuyerInfo

logger = logging.getLogger(__name__)


class HttpMarketplaceClient(MarketplaceClient):
    def __init__(
        self,
        config: MarketplaceConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    async def place_order(self, expense: ExpenseSnapshot, buyer: BuyerInfo) -> OrderResult:
        if not expense.marketplace_correlation_id:
            return OrderResult(success=False, error="Expense has no marketplace correlation id")

        payload = {
            "correlation_id": expense.marketplace_correlation_id,
            "buyer_identity": self._config.buyer_identity,
            "buyer": {"name": buyer.name, "email": buyer.email},
            "reference": f"Expense #{expense.expense_id}",
            "total": str(expense.amount),
            "description": expense.description,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    self._config.api_url,
                    headers={"Authorization": f"Bearer {self._config.api_key}"},
                    json=payload,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Marketplace rejected order for expense %s: HTTP %d",
                expense.expense_id, exc.response.status_code,
            )
            return OrderResult(
                success=False,
                error=f"HTTP {exc.response.status_code}: {exc.response.text[:500]}",
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Marketplace order for expense %s failed: %s", expense.expense_id, exc)
            return OrderResult(success=False, error=str(exc) or type(exc).__name__)

        order_number = data.get("po_number") or data.get("order_number")
        if not order_number:
            return OrderResult(success=False, error=data.get("error") or "No order number returned")
        return OrderResult(success=True, order_number=str(order_number))
