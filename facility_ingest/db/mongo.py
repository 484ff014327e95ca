"""MongoDB client lifecycle for the ingestion service."""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None

MAX_RETRIES = 10
RETRY_DELAY = 3  # seconds


@retry(
    stop=stop_after_attempt(MAX_RETRIES),
    wait=wait_fixed(RETRY_DELAY),
    retry=retry_if_exception_type(PyMongoError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _ping(client: AsyncIOMotorClient) -> None:
    await client.admin.command("ping")


async def init_mongo(url: str, db_name: str):
    """Connect to MongoDB, wait until it answers a ping, and return the database handle."""
    global _client
    _client = AsyncIOMotorClient(url)
    await _ping(_client)
    logger.info(f"Connected to MongoDB database '{db_name}'")
    return _client[db_name]


def close_mongo() -> None:
    global _client
    if _client:
        _client.close()
        _client = None
        logger.info("MongoDB client closed")
