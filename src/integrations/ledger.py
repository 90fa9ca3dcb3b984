"""HttpLedgerClient — posts approved expenses to the accounting ledger as bills.

Speaks the Xero-style accounting REST API: one ACCPAY invoice per expense,
referenced as ``Expense #<id>``. Remote failures are returned as an
unsuccessful LedgerSyncResult, never raised.
"""

import logging

import httpx

from src.integrations.base import (
    AccountMapping,
    ExpenseSnapshot,
    LedgerClient,
    LedgerSyncResult,
)
from src.integrations.config import LedgerConfig

logger = logging.getLogger(__name__)

_UNKNOWN_VENDOR = "Unknown Vendor"


class HttpLedgerClient(LedgerClient):
    def __init__(
        self,
        config: LedgerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._base_url = config.api_url.rstrip("/")
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_token}",
            "xero-tenant-id": self._config.tenant_id,
            "Accept": "application/json",
        }

    def build_bill(self, expense: ExpenseSnapshot, mapping: AccountMapping) -> dict:
        """Render the ACCPAY bill payload for one expense."""
        return {
            "Type": "ACCPAY",
            "Contact": {"Name": expense.vendor_name or _UNKNOWN_VENDOR},
            "Date": expense.expense_date.isoformat(),
            "DueDate": expense.expense_date.isoformat(),
            "Reference": f"Expense #{expense.expense_id}",
            "Status": "AUTHORISED",
            "LineItems": [
                {
                    "Description": expense.description or "Expense",
                    "Quantity": 1,
                    "UnitAmount": str(expense.amount),
                    "AccountCode": mapping.account_for(expense.category),
                    "TaxType": mapping.default_tax_type,
                }
            ],
        }

    async def sync_expense(
        self,
        expense: ExpenseSnapshot,
        account_mapping: AccountMapping,
    ) -> LedgerSyncResult:
        payload = {"Invoices": [self.build_bill(expense, account_mapping)]}
        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    f"{self._base_url}/Invoices",
                    headers=self._headers(),
                    json=payload,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Ledger rejected expense %s: HTTP %d",
                expense.expense_id, exc.response.status_code,
            )
            return LedgerSyncResult(
                success=False,
                error=f"HTTP {exc.response.status_code}: {exc.response.text[:500]}",
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Ledger sync for expense %s failed: %s", expense.expense_id, exc)
            return LedgerSyncResult(success=False, error=str(exc) or type(exc).__name__)

        invoices = data.get("Invoices") or []
        invoice_id = invoices[0].get("InvoiceID") if invoices else None
        if not invoice_id:
            return LedgerSyncResult(success=False, error="Ledger response carried no InvoiceID")
        return LedgerSyncResult(success=True, reference_id=str(invoice_id))
