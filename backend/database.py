from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import MongoClient
from pymongo.errors import PyMongoError
import logging
from contextlib import asynccontextmanager

import config

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None
    sync_client: MongoClient = None
    sync_db = None

    async def connect(self):
        try:
            self.client = AsyncIOMotorClient(config.MONGO_URL)
            self.db = self.client[config.DB_NAME]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {config.DB_NAME}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")
        if self.sync_client:
            self.sync_client.close()
            self.sync_client = None
            self.sync_db = None

    def get_db(self):
        return self.db

    def get_sync_db(self):
        """Synchronous handle used by the draft store and client directory.

        Drafts are written through on every field change, so they go through
        pymongo directly rather than the async motor client.
        """
        if self.sync_db is None:
            self.sync_client = MongoClient(config.MONGO_URL, serverSelectionTimeoutMS=2000)
            self.sync_db = self.sync_client[config.DB_NAME]
        return self.sync_db

    async def _create_indexes(self):
        """Create MongoDB indexes for efficient queries."""
        try:
            # One draft document per instruction namespace
            await self.db[config.DRAFTS_COLLECTION].create_index("namespace", unique=True)
            await self.db[config.DRAFTS_COLLECTION].create_index("updated_at")

            # Client directory lookups and grid search
            try:
                await self.db[config.CLIENTS_COLLECTION].create_index("client_id", unique=True)
            except PyMongoError:
                pass  # Index may already exist with different options
            await self.db[config.CLIENTS_COLLECTION].create_index("last_name")

            # Submissions - reference is the sink's receipt
            await self.db[config.SUBMISSIONS_COLLECTION].create_index("reference", unique=True)
            await self.db[config.SUBMISSIONS_COLLECTION].create_index("instruction_ref")

            # Audit log indexes - for timeline queries
            await self.db.audit_logs.create_index([("resource_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index("action")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

@asynccontextmanager
async def get_db_context():
    """Context manager for standalone scripts to access the database.

    Usage in scripts:
        async with get_db_context() as db:
            await db.matter_drafts.find_one(...)
    """
    client = None
    try:
        client = AsyncIOMotorClient(config.MONGO_URL)
        db = client[config.DB_NAME]
        await db.command("ping")
        logger.info(f"Script connected to MongoDB: {config.DB_NAME}")
        yield db
    finally:
        if client:
            client.close()
            logger.info("Script MongoDB connection closed")
