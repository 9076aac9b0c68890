import logging
from motor.motor_asyncio import AsyncIOMotorClient
from typing import Optional
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class Database:
    client: Optional[AsyncIOMotorClient] = None

    @classmethod
    async def connect_db(cls):
        """Connect to MongoDB"""
        settings = get_settings()
        cls.client = AsyncIOMotorClient(settings.mongodb_url)
        logger.info("Connected to MongoDB (%s)", settings.database_name)

        # Create indexes
        await cls.create_indexes()

    @classmethod
    async def create_indexes(cls):
        """Create database indexes"""
        db = cls.get_db()

        # Transaction indexes
        try:
            await db.transactions.create_index([("transaction_id", ASCENDING)], unique=True)
            await db.transactions.create_index([("internal_id", ASCENDING)], unique=True)
            await db.transactions.create_index([("gateway_transaction_id", ASCENDING)], sparse=True)
            await db.transactions.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
            await db.transactions.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
            logger.info("Created indexes on transactions")
        except PyMongoError as e:
            logger.warning("Indexes on transactions may already exist: %s", e)

        # Users collection indexes
        try:
            await db.users.create_index(
                [("email", ASCENDING)],
                unique=True,
                collation={"locale": "en", "strength": 2}  # Case-insensitive
            )
            logger.info("Created unique index on users.email")
        except PyMongoError as e:
            logger.warning("Index on users.email may already exist: %s", e)

        # Payment method indexes
        try:
            await db.payment_methods.create_index([("code", ASCENDING)], unique=True)
            await db.payment_methods.create_index([("gateway", ASCENDING), ("is_active", ASCENDING)])
            logger.info("Created indexes on payment_methods")
        except PyMongoError as e:
            logger.warning("Indexes on payment_methods may already exist: %s", e)

    @classmethod
    async def close_db(cls):
        """Close MongoDB connection"""
        if cls.client:
            cls.client.close()
            logger.info("Disconnected from MongoDB")

    @classmethod
    def get_db(cls):
        """Get database instance"""
        return cls.client[get_settings().database_name]


async def get_database():
    """Dependency to get database"""
    return Database.get_db()
