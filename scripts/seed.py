"""Seed script — load a demo organisation into the ExpenseHub database.

Creates:
1. A six-person reporting line (CEO -> CFO -> Finance Director -> Team Lead -> 2 employees)
2. Three global approval tiers (expenses under 100 are auto-approved)
3. Ledger account mappings for the common expense categories

Idempotent: safe to run multiple times — skips if the demo CEO already exists.

Usage:
    python -m scripts.seed          # against DATABASE_URL from .env
    pytest tests/scripts/test_seed_demo.py  # against aiosqlite in-memory
"""

import asyncio
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from uuid_extensions import uuid7

from src.db.tables import UserRow
from src.models.approval import ApprovalRule
from src.models.common import UserRole
from src.repositories.approval_rules import ApprovalRuleRepository
from src.repositories.ledger_mappings import LedgerAccountMappingRepository
from src.repositories.users import UserRepository

DEMO_CEO_EMAIL = "ceo@demo.expensehub.local"

# (first name, last name, email prefix, role, index of manager in this list)
DEMO_PEOPLE: list[tuple[str, str, str, UserRole, int | None]] = [
    ("Grace", "Hopper", "ceo", UserRole.ADMIN, None),
    ("Frank", "Ledger", "cfo", UserRole.MANAGER, 0),
    ("Fiona", "Numbers", "finance.director", UserRole.MANAGER, 1),
    ("Tom", "Lead", "team.lead", UserRole.MANAGER, 2),
    ("Erin", "Field", "erin", UserRole.EMPLOYEE, 3),
    ("Sam", "Road", "sam", UserRole.EMPLOYEE, 3),
]

# (name, min, max, levels)
DEMO_RULES: list[tuple[str, str, str | None, int]] = [
    ("Small purchases", "100.00", "999.99", 1),
    ("Medium purchases", "1000.00", "4999.99", 2),
    ("Large purchases", "5000.00", None, 3),
]

DEMO_ACCOUNTS: dict[str, tuple[str, str]] = {
    "Meals": ("420", "Entertainment"),
    "Travel": ("493", "Travel - National"),
    "Office Supplies": ("461", "Printing & Stationery"),
    "Software": ("453", "Office Expenses"),
    "Equipment": ("630", "Inventory"),
}


async def seed_people(session: AsyncSession) -> list[UserRow]:
    repo = UserRepository(session)
    rows: list[UserRow] = []
    for first, last, prefix, role, manager_index in DEMO_PEOPLE:
        manager_id = rows[manager_index].user_id if manager_index is not None else None
        rows.append(await repo.create(
            user_id=uuid7(),
            first_name=first,
            last_name=last,
            email=f"{prefix}@demo.expensehub.local",
            role=role,
            manager_id=manager_id,
        ))
    return rows


async def seed_rules(session: AsyncSession, created_by=None) -> list[ApprovalRule]:
    repo = ApprovalRuleRepository(session)
    rules: list[ApprovalRule] = []
    for name, lo, hi, levels in DEMO_RULES:
        rule = ApprovalRule(
            name=name,
            min_amount=Decimal(lo),
            max_amount=Decimal(hi) if hi is not None else None,
            levels_required=levels,
            created_by=created_by,
        )
        await repo.create(rule)
        rules.append(rule)
    return rules


async def seed_accounts(session: AsyncSession) -> int:
    repo = LedgerAccountMappingRepository(session)
    for category, (code, name) in DEMO_ACCOUNTS.items():
        await repo.upsert(category, code, name)
    return len(DEMO_ACCOUNTS)


async def seed_demo(session: AsyncSession) -> dict:
    """Idempotent demo seed: people + approval tiers + account mappings.

    Returns dict with keys: created (bool), ceo_id, user_count, rule_count.
    If the demo CEO already exists, returns created=False and skips.
    """
    existing = await UserRepository(session).get_by_email(DEMO_CEO_EMAIL)
    if existing is not None:
        return {"created": False, "ceo_id": existing.user_id}

    people = await seed_people(session)
    rules = await seed_rules(session, created_by=people[0].user_id)
    accounts = await seed_accounts(session)
    return {
        "created": True,
        "ceo_id": people[0].user_id,
        "user_count": len(people),
        "rule_count": len(rules),
        "account_count": accounts,
    }


# ---------------------------------------------------------------------------
# CLI entry point: python -m scripts.seed
# ---------------------------------------------------------------------------


async def _run_seed() -> None:
    """Run the demo seed against the real database."""
    from src.db.session import async_session_factory

    async with async_session_factory() as session:
        result = await seed_demo(session)

        if not result["created"]:
            print(f"Demo data already seeded ({DEMO_CEO_EMAIL} exists). Skipping.")
            return

        await session.commit()

        print("Seed complete.")
        print(f"  Users:            {result['user_count']}")
        print(f"  Approval rules:   {result['rule_count']}")
        print(f"  Account mappings: {result['account_count']}")
        print()
        _print_rules()


def _print_rules() -> None:
    print("Approval tiers (global):")
    print(f"  {'Name':<18} {'From':>10} {'To':>10} {'Levels':>7}")
    print(f"  {'─' * 18} {'─' * 10} {'─' * 10} {'─' * 7}")
    for name, lo, hi, levels in DEMO_RULES:
        print(f"  {name:<18} {lo:>10} {hi or 'unbounded':>10} {levels:>7}")


if __name__ == "__main__":
    asyncio.run(_run_seed())
