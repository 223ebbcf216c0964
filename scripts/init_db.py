import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import engine, async_session_maker, upsert_statement
from core.logging import setup_logging
from ingestion.sync_config import SyncConfigService
# Import all models to ensure they are registered
from models import Base, Provider, ProviderCredential

setup_logging()
logger = logging.getLogger(__name__)


def eitje_env_credentials():
    credentials = {
        "partner_username": settings.EITJE_PARTNER_USERNAME,
        "partner_password": settings.EITJE_PARTNER_PASSWORD,
        "api_username": settings.EITJE_API_USERNAME,
        "api_password": settings.EITJE_API_PASSWORD,
    }
    if not all(credentials.values()):
        return None
    return credentials


async def init_database():
    logger.info("Connecting to database...")
    
    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")
    
    async with async_session_maker() as session:
        configs = SyncConfigService(session)
        for provider in Provider:
            config = await configs.get(provider)
            logger.info(f"Sync config for {provider.value}: mode={config.mode.value}")
        
        credentials = eitje_env_credentials()
        if credentials is None:
            logger.info("Eitje credentials not set in the environment, skipping credential seed")
        else:
            stmt = upsert_statement(session, ProviderCredential).values(
                provider=Provider.EITJE,
                location_id="",
                base_url=settings.EITJE_BASE_URL,
                credentials=credentials,
                is_active=True,
            ).on_conflict_do_nothing(index_elements=["provider", "location_id"])
            await session.execute(stmt)
            await session.commit()
            logger.info("Seeded Eitje credentials from the environment")
    
    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(init_database())
