"""Create the Heritage Atlas schema and seed default app settings.

Usage:
    python init_db.py           # create missing tables
    python init_db.py --reset   # drop everything first
"""
import argparse
import asyncio
import logging

from heritage.config import settings
from heritage.db import AsyncSessionMaker, engine
from heritage.logging_config import setup_logging
from heritage.models import AppSetting, Base
from heritage.pipelines.bibliography import DEFAULT_CITATION_STYLE

logger = logging.getLogger("init_db")

DEFAULT_SETTINGS = {"citation": {"style": DEFAULT_CITATION_STYLE}}


async def seed_settings() -> list[str]:
    """Insert default ``app_settings`` rows that are not there yet."""
    added = []
    async with AsyncSessionMaker() as session:
        for key, value in DEFAULT_SETTINGS.items():
            if await session.get(AppSetting, key) is None:
                session.add(AppSetting(key=key, value=value))
                added.append(key)
        await session.commit()
    return added


async def init_database(reset: bool = False) -> None:
    logger.info(f"Initializing database at {settings.db.url.split('@')[-1]}")

    async with engine.begin() as conn:
        if reset:
            await conn.run_sync(Base.metadata.drop_all)
            logger.warning("Dropped existing tables")
        await conn.run_sync(Base.metadata.create_all)

    added = await seed_settings()
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")
    if added:
        logger.info(f"Seeded settings: {', '.join(added)}")


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--reset", action="store_true", help="drop all tables before creating them")
    args = parser.parse_args(argv)

    setup_logging()
    try:
        await init_database(reset=args.reset)
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        return 1
    finally:
        await engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
