"""
Create all tables on the configured database.

Run once on a fresh database:
  python -m tarot_panel.db.init_db
"""
import asyncio

import tarot_panel.core.models  # noqa: F401
from tarot_panel.db.session import Base, engine


async def main() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print("Tables created:", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    asyncio.run(main())
