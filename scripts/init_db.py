import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import create_state_engine
from models.base import Base
# Import all models to ensure they are registered
from models.watermark import QueryWatermark
from models.extraction_run import ExtractionRun

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to state database...")
    engine = create_state_engine(settings.STATE_DATABASE_URL)

    async with engine.begin() as conn:
        logger.info(f"Creating tables: {QueryWatermark.__tablename__}, {ExtractionRun.__tablename__}")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(init_database())
