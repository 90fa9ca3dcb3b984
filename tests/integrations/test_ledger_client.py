"""Tests for HttpLedgerClient and account mapping."""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest
from uuid_extensions import uuid7

from src.integrations.base import AccountMapping, ExpenseSnapshot
from src.integrations.config import LedgerConfig
from src.integrations.ledger import HttpLedgerClient

CONFIG = LedgerConfig(
    api_url="https://ledger.test/api.xro/2.0/",
    api_token="tok",
    tenant_id="tenant-1",
    default_tax_type="INPUT",
)


def _expense(**kw) -> ExpenseSnapshot:
    fields = {
        "expense_id": uuid7(),
        "submitter_id": uuid7(),
        "amount": Decimal("89.90"),
        "description": "Team lunch",
        "category": "Meals",
        "vendor_name": "Deli Co",
        "expense_date": date(2026, 6, 12),
        "status": "approved",
    }
    fields.update(kw)
    return ExpenseSnapshot(**fields)


class TestAccountMapping:

    def test_explicit_mapping_wins(self) -> None:
        mapping = AccountMapping(category_mapping={"Meals": "777"})
        assert mapping.account_for("Meals") == "777"

    def test_default_table_by_normalized_name(self) -> None:
        mapping = AccountMapping()
        assert mapping.account_for("Office Supplies") == "461"
        assert mapping.account_for("travel") == "493"

    def test_fallback_account(self) -> None:
        assert AccountMapping(default_account="499").account_for("Snacks") == "499"


class TestBuildBill:

    def test_bill_fields(self) -> None:
        expense = _expense()
        bill = HttpLedgerClient(CONFIG).build_bill(expense, AccountMapping(default_tax_type="INPUT"))
        assert bill["Type"] == "ACCPAY"
        assert bill["Contact"] == {"Name": "Deli Co"}
        assert bill["Date"] == "2026-06-12"
        assert bill["Reference"] == f"Expense #{expense.expense_id}"
        line = bill["LineItems"][0]
        assert line["UnitAmount"] == "89.90"
        assert line["AccountCode"] == "420"
        assert line["TaxType"] == "INPUT"

    def test_missing_vendor(self) -> None:
        bill = HttpLedgerClient(CONFIG).build_bill(_expense(vendor_name=None), AccountMapping())
        assert bill["Contact"]["Name"] == "Unknown Vendor"


class TestSyncExpense:

    @pytest.mark.anyio
    async def test_success_returns_invoice_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Invoices": [{"InvoiceID": "inv-123"}]})

        client = HttpLedgerClient(CONFIG, transport=httpx.MockTransport(handler))
        result = await client.sync_expense(_expense(), AccountMapping())

        assert result.success is True
        assert result.reference_id == "inv-123"
        request = seen[0]
        assert str(request.url) == "https://ledger.test/api.xro/2.0/Invoices"
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.headers["xero-tenant-id"] == "tenant-1"
        assert json.loads(request.content)["Invoices"][0]["Type"] == "ACCPAY"

    @pytest.mark.anyio
    async def test_http_error_is_returned_not_raised(self) -> None:
        transport = httpx.MockTransport(lambda r: httpx.Response(401, text="unauthorized"))
        result = await HttpLedgerClient(CONFIG, transport=transport).sync_expense(
            _expense(), AccountMapping(),
        )
        assert result.success is False
        assert result.error.startswith("HTTP 401")

    @pytest.mark.anyio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await HttpLedgerClient(
            CONFIG, transport=httpx.MockTransport(handler),
        ).sync_expense(_expense(), AccountMapping())
        assert result.success is False
        assert "refused" in result.error

    @pytest.mark.anyio
    async def test_response_without_invoice(self) -> None:
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"Invoices": []}))
        result = await HttpLedgerClient(CONFIG, transport=transport).sync_expense(
            _expense(), AccountMapping(),
        )
        assert result.success is False
        assert "InvoiceID" in result.error
