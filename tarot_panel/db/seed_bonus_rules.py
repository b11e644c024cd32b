"""
Seed the default bonus rules (existing rules are left untouched).

  python -m tarot_panel.db.seed_bonus_rules
"""
import asyncio
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.api.monthly.procedures import TEAM_WIN
from tarot_panel.core.models import BonusRule
from tarot_panel.core.models.worker import ROLE_CENTRAL, ROLE_TAROTISTA
from tarot_panel.db.session import AsyncSessionLocal

# (ranking_type, position, role, amount_eur)
DEFAULT_RULES = [
    ("minutes", 1, ROLE_TAROTISTA, Decimal("60.00")),
    ("minutes", 2, ROLE_TAROTISTA, Decimal("40.00")),
    ("minutes", 3, ROLE_TAROTISTA, Decimal("20.00")),
    ("repite_pct", 1, ROLE_TAROTISTA, Decimal("50.00")),
    ("repite_pct", 2, ROLE_TAROTISTA, Decimal("30.00")),
    ("repite_pct", 3, ROLE_TAROTISTA, Decimal("15.00")),
    ("cliente_pct", 1, ROLE_TAROTISTA, Decimal("50.00")),
    ("cliente_pct", 2, ROLE_TAROTISTA, Decimal("30.00")),
    ("cliente_pct", 3, ROLE_TAROTISTA, Decimal("15.00")),
    ("captadas", 1, ROLE_TAROTISTA, Decimal("40.00")),
    ("captadas", 2, ROLE_TAROTISTA, Decimal("25.00")),
    ("captadas", 3, ROLE_TAROTISTA, Decimal("10.00")),
    (TEAM_WIN, 1, ROLE_CENTRAL, Decimal("80.00")),
]


async def seed_bonus_rules(db: AsyncSession) -> None:
    result = await db.execute(select(BonusRule.ranking_type, BonusRule.position, BonusRule.role))
    existing = {tuple(row) for row in result.all()}
    created = 0
    for ranking_type, position, role, amount in DEFAULT_RULES:
        if (ranking_type, position, role) in existing:
            continue
        db.add(BonusRule(ranking_type=ranking_type, position=position, role=role, amount_eur=amount, is_active=True))
        created += 1
    await db.commit()
    print(f"Bonus rules seeded: {created} created, {len(DEFAULT_RULES) - created} already present.")


async def main() -> None:
    async with AsyncSessionLocal() as db:
        try:
            await seed_bonus_rules(db)
        except Exception as e:
            await db.rollback()
            print("Error:", e)
            raise


if __name__ == "__main__":
    asyncio.run(main())
