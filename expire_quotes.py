import asyncio
import logging

from app.core.database import AsyncSessionLocal, close_db, init_db
from app.core.logging_config import setup_logging
from app.core.storage import SqlKeyValueStore
from app.repositories.quote_repository import QuoteRepository
from app.services.quote_lifecycle_service import QuoteLifecycleService

logger = logging.getLogger("expire_quotes")


async def expire():
    await init_db()
    try:
        repository = QuoteRepository(SqlKeyValueStore(AsyncSessionLocal))
        expired = await QuoteLifecycleService(repository).check_expiration()
        logger.info("Sweep completato: %d preventivi scaduti", len(expired))
    finally:
        await close_db()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(expire())
