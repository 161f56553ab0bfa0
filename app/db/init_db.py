"""
Create every table for a fresh database.

Usage:
  python -m app.db.init_db
"""

import asyncio

# Import models so they register on Base.metadata
from app.core import models  # noqa: F401
from app.db.session import Base, engine


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db())
    print("Tables created.")
