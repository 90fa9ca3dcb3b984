"""Shared pytest fixtures for the ExpenseHub test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- session_factory: sessionmaker on its own engine, for code that opens
  and commits its own transactions (the effect runner)
- org: a five-deep reporting line (employee -> manager -> director -> vp -> ceo)
- notifier / ledger / marketplace: recording fakes of the collaborators
- client: AsyncClient with dependency overrides for DB-backed testing
"""

from dataclasses import dataclass, field
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.session import Base, get_async_session, session_scope
import src.db.tables  # noqa: F401 — register ORM models on Base.metadata
from src.db.tables import UserRow
from src.integrations.base import (
    AccountMapping,
    ExpenseSnapshot,
    LedgerClient,
    LedgerSyncResult,
    MarketplaceClient,
    Notifier,
    OrderResult,
    Recipient,
)
from src.models.common import NotificationKind, UserRole, new_uuid7
from src.models.expense import BuyerInfo
from src.repositories.users import UserRepository


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed — it rolls back at teardown.
    Application code calling session.commit() triggers a SAVEPOINT release,
    which is then restarted so subsequent operations stay in the same
    outer transaction.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
async def session_factory():
    """Sessionmaker whose sessions really commit (one shared in-memory DB)."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=eng, class_=AsyncSession, expire_on_commit=False)
    await eng.dispose()


# ---------------------------------------------------------------------------
# Reporting hierarchy
# ---------------------------------------------------------------------------


@dataclass
class Org:
    ceo: UserRow
    vp: UserRow
    director: UserRow
    manager: UserRow
    employee: UserRow
    loner: UserRow


async def seed_org(session: AsyncSession) -> Org:
    repo = UserRepository(session)

    async def _user(first: str, role: UserRole, manager: UserRow | None) -> UserRow:
        return await repo.create(
            user_id=new_uuid7(),
            first_name=first,
            last_name="Test",
            email=f"{first.lower()}@example.com",
            role=role,
            manager_id=manager.user_id if manager else None,
        )

    ceo = await _user("Cora", UserRole.ADMIN, None)
    vp = await _user("Victor", UserRole.MANAGER, ceo)
    director = await _user("Dana", UserRole.MANAGER, vp)
    manager = await _user("Mo", UserRole.MANAGER, director)
    employee = await _user("Eli", UserRole.EMPLOYEE, manager)
    loner = await _user("Lee", UserRole.EMPLOYEE, None)
    return Org(ceo=ceo, vp=vp, director=director, manager=manager,
               employee=employee, loner=loner)


@pytest.fixture
async def org(db_session: AsyncSession) -> Org:
    return await seed_org(db_session)


@pytest.fixture
async def committed_org(session_factory) -> Org:
    """The same hierarchy, committed through ``session_factory``."""
    async with session_scope(session_factory) as session:
        return await seed_org(session)


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


@dataclass
class SentNotice:
    kind: NotificationKind
    expense_id: UUID
    recipient_id: UUID
    extra: dict


@dataclass
class RecordingNotifier(Notifier):
    sent: list[SentNotice] = field(default_factory=list)
    fail: bool = False

    async def notify(self, kind: NotificationKind, expense: ExpenseSnapshot,
                     recipient: Recipient, extra: dict) -> None:
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append(SentNotice(kind, expense.expense_id, recipient.user_id, extra))


@dataclass
class FakeLedger(LedgerClient):
    calls: list[UUID] = field(default_factory=list)
    result: LedgerSyncResult = field(
        default_factory=lambda: LedgerSyncResult(success=True, reference_id="INV-001"),
    )
    raises: Exception | None = None

    async def sync_expense(self, expense: ExpenseSnapshot,
                           account_mapping: AccountMapping) -> LedgerSyncResult:
        self.calls.append(expense.expense_id)
        if self.raises is not None:
            raise self.raises
        return self.result


@dataclass
class FakeMarketplace(MarketplaceClient):
    calls: list[tuple[UUID, str]] = field(default_factory=list)
    result: OrderResult = field(
        default_factory=lambda: OrderResult(success=True, order_number="PO-42"),
    )
    raises: Exception | None = None

    async def place_order(self, expense: ExpenseSnapshot, buyer: BuyerInfo) -> OrderResult:
        self.calls.append((expense.expense_id, buyer.email))
        if self.raises is not None:
            raise self.raises
        return self.result


@dataclass
class RecordingScheduler:
    scheduled: list[UUID] = field(default_factory=list)

    def schedule(self, background_tasks, expense_id: UUID) -> None:
        self.scheduled.append(expense_id)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def marketplace() -> FakeMarketplace:
    return FakeMarketplace()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(db_session, notifier, scheduler):
    """AsyncClient with the session, notifier and effect scheduler overridden."""
    from src.api.dependencies import get_effect_scheduler, get_notifier
    from src.api.main import app

    async def _override_session():
        yield db_session

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_effect_scheduler] = lambda: scheduler

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
