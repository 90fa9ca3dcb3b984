"""Tests for SQLAlchemy ORM models — src/db/tables.py.

Tests verify:
- All six tables are created
- FlexJSON approval chains survive a round trip
- The one-intent-per-(expense, kind) UNIQUE constraint
- Money columns keep two decimal places
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import CartItemRow, EffectIntentRow, ExpenseRow, UserRow
from src.models.common import EffectStatus, new_uuid7, utc_now


async def _user(session: AsyncSession) -> UserRow:
    user = UserRow(
        user_id=new_uuid7(), first_name="Ada", last_name="Test",
        email=f"{new_uuid7()}@example.com", role="employee",
        is_active=True, created_at=utc_now(),
    )
    session.add(user)
    await session.flush()
    return user


async def _expense(session: AsyncSession, submitter: UserRow, **kw) -> ExpenseRow:
    now = utc_now()
    fields = {
        "expense_id": new_uuid7(),
        "submitter_id": submitter.user_id,
        "amount": Decimal("19.99"),
        "description": "Parking",
        "category": "Travel",
        "cost_type": "OPEX",
        "expense_date": date(2026, 1, 15),
        "is_reimbursable": True,
        "status": "pending",
        "version": 1,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(kw)
    row = ExpenseRow(**fields)
    session.add(row)
    await session.flush()
    return row


class TestTableCreation:
    EXPECTED_TABLES = {
        "users",
        "approval_rules",
        "ledger_account_mappings",
        "expenses",
        "effect_intents",
        "cart_items",
    }

    @pytest.mark.anyio
    async def test_all_tables_exist(self, db_engine):
        async with db_engine.connect() as conn:
            table_names = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names()
            )
        assert self.EXPECTED_TABLES.issubset(set(table_names)), (
            f"Missing tables: {self.EXPECTED_TABLES - set(table_names)}"
        )


class TestExpenseRow:

    @pytest.mark.anyio
    async def test_approval_chain_round_trip(self, db_session: AsyncSession):
        user = await _user(db_session)
        chain = [{"level": 1, "approver_user_id": str(user.user_id), "status": "pending"}]
        row = await _expense(db_session, user, approval_chain=chain, current_approval_level=1)

        result = await db_session.get(ExpenseRow, row.expense_id, populate_existing=True)
        assert result.approval_chain == chain
        assert result.amount == Decimal("19.99")
        assert result.ledger_reference is None

    @pytest.mark.anyio
    async def test_auto_approved_row_has_no_chain(self, db_session: AsyncSession):
        user = await _user(db_session)
        row = await _expense(db_session, user, status="approved", approved_at=utc_now())
        assert row.approval_chain is None
        assert row.current_approval_level is None


class TestEffectIntentRow:

    @pytest.mark.anyio
    async def test_one_intent_per_kind(self, db_session: AsyncSession):
        user = await _user(db_session)
        expense = await _expense(db_session, user, status="approved")

        def _intent(kind: str) -> EffectIntentRow:
            now = utc_now()
            return EffectIntentRow(
                intent_id=new_uuid7(), expense_id=expense.expense_id, kind=kind,
                status=EffectStatus.PENDING, attempts=0, created_at=now, updated_at=now,
            )

        db_session.add(_intent("ledger_sync"))
        db_session.add(_intent("marketplace_order"))
        await db_session.flush()

        with pytest.raises(IntegrityError):
            async with db_session.begin_nested():
                db_session.add(_intent("ledger_sync"))


class TestCartItemRow:

    @pytest.mark.anyio
    async def test_line_total(self, db_session: AsyncSession):
        user = await _user(db_session)
        item = CartItemRow(
            cart_item_id=new_uuid7(), user_id=user.user_id, description="Pens",
            vendor_name="Staples", unit_price=Decimal("2.50"), quantity=4,
            created_at=utc_now(),
        )
        db_session.add(item)
        await db_session.flush()
        assert item.line_total == Decimal("10.00")
