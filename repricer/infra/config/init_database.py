from urllib.parse import quote_plus
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from repricer.infra.config.config import COLLECTIONS, INDEXES
from repricer.infra.config.database import DatabaseConfig
from repricer.infra.config.settings import (
    MONGO_IP,
    MONGO_PORT,
    MONGO_USERNAME,
    MONGO_PASSWORD,
    MONGO_DB,
    MONGO_URI,
)

logger = logging.getLogger(__name__)


def build_connection_string() -> str:
    if MONGO_URI:
        logger.info("Connecting to MongoDB with MONGO_URI")
        return MONGO_URI

    host = f"{MONGO_IP}:{MONGO_PORT}"
    if MONGO_USERNAME and MONGO_PASSWORD:
        logger.info(f"Connecting to MongoDB with authentication at {host}")
        credentials = f"{quote_plus(MONGO_USERNAME)}:{quote_plus(MONGO_PASSWORD)}@"
    else:
        logger.info(f"Connecting to MongoDB without authentication at {host}")
        credentials = ""
    return f"mongodb://{credentials}{host}/{MONGO_DB}"


def init_database() -> DatabaseConfig:
    db_conf = DatabaseConfig(MONGO_DB)
    db_conf.database_url = build_connection_string()

    errors = db_conf.check()
    if errors:
        for err in errors:
            logger.error(err)
        raise ValueError("Database configuration is invalid.")
    return db_conf


async def ensure_indexes(database: AsyncIOMotorDatabase):
    """Create the lookup and uniqueness indexes the repositories rely on."""
    for collection_key, keys, options in INDEXES:
        name = await database[COLLECTIONS[collection_key]].create_index(keys, **options)
        logger.debug(f"Index {name} ready on {COLLECTIONS[collection_key]}")
