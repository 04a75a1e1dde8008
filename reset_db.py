import asyncio
import logging

from app.core.database import close_db, engine
from app.core.logging_config import setup_logging
from app.models import Base

logger = logging.getLogger("reset_db")


async def reset():
    logger.info("Connessione al database, eliminazione tabelle...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("Tabelle eliminate. Creazione nuove tabelle...")
        await conn.run_sync(Base.metadata.create_all)
    await close_db()
    logger.info("Database resettato con successo!")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(reset())
