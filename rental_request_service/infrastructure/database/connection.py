from rental_request_service.app.config import settings
import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional

logger = logging.getLogger(__name__)

# Global client and db variables, managed by connect/close functions
client: Optional[AsyncIOMotorClient] = None
db: Optional[AsyncIOMotorDatabase] = None

async def connect_to_mongo():
    global client, db
    if client is not None and db is not None:
        logger.info("MongoDB connection already established.")
        return

    try:
        logger.info(f"Attempting to connect to MongoDB at {settings.MONGO_DETAILS}...")
        client = AsyncIOMotorClient(settings.MONGO_DETAILS)
        await client.admin.command('ping')
        db = client[settings.DB_NAME]
        logger.info(f"Successfully connected to MongoDB and database '{settings.DB_NAME}' is set.")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}", exc_info=True)
        client = None
        db = None
        raise ConnectionError(f"Failed to connect to MongoDB: {e}")

async def ensure_indexes(database: AsyncIOMotorDatabase):
    await database.requests.create_index("id", unique=True)
    await database.requests.create_index([("requester_id", 1), ("type", 1), ("unit_id", 1), ("status", 1)])
    await database.requests.create_index("unit_id")
    await database.payments.create_index("id", unique=True)
    await database.notifications.create_index("dedupe_key", unique=True)
    await database.notifications.create_index([("user_id", 1), ("created_at", -1)])
    await database.messages.create_index("dedupe_key", unique=True)
    await database.payments.create_index([("request_id", 1), ("kind", 1)], unique=True)
    await database.conversations.create_index([("unit_id", 1), ("type", 1)], unique=True)
    logger.info("MongoDB indexes ensured.")

def close_mongo_connection():
    global client, db
    if client:
        client.close()
        client = None
        db = None
        logger.info("MongoDB connection closed.")

async def get_db():
    global db
    if db is None:
        logger.warning("Database not initialized. Attempting to connect via get_db().")
        await connect_to_mongo()

    if db is None:
        logger.error("Failed to get database instance in get_db.")
        raise ConnectionError("Database client is not available. Connection might have failed or was not established.")

    yield db
