"""
Create all tables for the change-watch database
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import build_engine, create_all_tables
from core.logging import setup_logging
from models import Base

setup_logging()
logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")
    engine = build_engine(settings.DATABASE_URL, echo=settings.LOG_LEVEL.upper() == "DEBUG")
    try:
        logger.info(f"Creating {len(Base.metadata.tables)} tables: {', '.join(sorted(Base.metadata.tables))}")
        await create_all_tables(engine)
        logger.info("Tables created successfully.")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_database())
