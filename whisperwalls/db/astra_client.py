# NOTE: astrapy v2 removed the old `astrapy.db` import path.  Everything here
# goes through `DataAPIClient` and its async database/collection objects.

import logging
from typing import Optional

import httpx
from httpcore import ConnectError as HttpcoreConnectError
from astrapy import AsyncCollection, AsyncDatabase, DataAPIClient

from whisperwalls.core.config import settings

logger = logging.getLogger(__name__)

AstraDBCollection = AsyncCollection

db_instance: Optional[AsyncDatabase] = None


async def init_astra_db():
    global db_instance
    if not all(
        [
            settings.ASTRA_DB_API_ENDPOINT,
            settings.ASTRA_DB_APPLICATION_TOKEN,
            settings.ASTRA_DB_KEYSPACE,
        ]
    ):
        logger.error(
            "AstraDB settings are not fully configured. Please check ASTRA_DB_API_ENDPOINT, ASTRA_DB_APPLICATION_TOKEN, and ASTRA_DB_KEYSPACE."
        )
        raise ValueError("AstraDB settings are not fully configured.")

    try:
        logger.info(
            f"Initializing AstraDB client for keyspace: {settings.ASTRA_DB_KEYSPACE} at {settings.ASTRA_DB_API_ENDPOINT[:30]}..."
        )  # Log only part of endpoint
        client = DataAPIClient()
        db_instance = client.get_async_database(
            settings.ASTRA_DB_API_ENDPOINT,
            token=settings.ASTRA_DB_APPLICATION_TOKEN,
            keyspace=settings.ASTRA_DB_KEYSPACE,
        )
        logger.info("AstraDB client initialized successfully.")
    except Exception as e:
        # Connection-level failures get a short log line instead of an
        # unreadable stack trace during normal start-up.
        if isinstance(e, (httpx.ConnectError, HttpcoreConnectError, ConnectionError)):
            logger.error(
                "Unable to establish connection to AstraDB – check API endpoint/token."
            )
            logger.debug("Connection error details: %s", e)
        else:
            logger.error("Failed to initialize AstraDB client: %s", e, exc_info=True)
        raise


async def get_astra_db() -> AsyncDatabase:
    global db_instance
    if db_instance is None:
        logger.info("AstraDB instance not found, attempting to initialize...")
        await init_astra_db()  # This will raise an error if init fails
        if db_instance is None:
            raise RuntimeError("AstraDB could not be initialized.")
    return db_instance


async def get_table(table_name: str) -> AstraDBCollection:
    db = await get_astra_db()
    return db.get_collection(table_name)
