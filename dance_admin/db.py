"""MongoDB connection lifecycle for the API process."""
import logging

from dance_admin.config import Settings
from dance_admin.persistence.mongo import MongoGateway

logger = logging.getLogger(__name__)


async def db_startup(settings: Settings) -> MongoGateway:
    """Connect to MongoDB and return the gateway the services are built on."""
    gateway = MongoGateway.from_url(settings.mongodb_url, settings.mongodb_db_name)
    await gateway.ping()
    logger.info(f"Connected to MongoDB database {settings.mongodb_db_name}")
    return gateway


async def db_shutdown(gateway: MongoGateway) -> None:
    """Close MongoDB connection."""
    await gateway.close()
