from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

# Fail fast when Mongo is unreachable instead of hanging request handlers
SERVER_SELECTION_TIMEOUT_MS = int(os.environ.get("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000"))


def _client_from_env():
    client = AsyncIOMotorClient(
        os.environ['MONGO_URL'],
        serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS,
    )
    return client, client[os.environ['DB_NAME']]


class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            self.client, self.db = _client_from_env()
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {self.db.name}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def ping(self) -> bool:
        """True when connected and the server answers; used by the health check."""
        if self.db is None:
            return False
        try:
            await self.db.command("ping")
            return True
        except Exception as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    async def _create_indexes(self):
        """Indexes for account lookups, conflict matching, consent and audit queries."""
        try:
            accounts = self.db.accounts
            await accounts.create_index("account_id", unique=True)
            # Legacy short references resolve to the canonical account_id
            await accounts.create_index("legacy_id", unique=True, sparse=True)
            for field in ("name", "email", "mobile_phone_digits", "conflict_alert", "credit_check_status"):
                await accounts.create_index(field, sparse=field != "name")

            await self.db.consent_templates.create_index("template_id", unique=True)
            await self.db.consent_templates.create_index([("is_active", 1), ("activated_at", -1)])
            await self.db.consent_records.create_index("consent_id", unique=True)
            await self.db.consent_records.create_index([("account_id", 1), ("created_at", -1)])

            await self.db.audit_logs.create_index([("account_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Existing indexes with different options are left alone
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

@asynccontextmanager
async def get_db_context():
    """Database handle for standalone scripts that bypass the app lifespan.

        async with get_db_context() as db:
            await db.accounts.find_one(...)
    """
    client = None
    try:
        client, db = _client_from_env()
        await db.command("ping")
        logger.info(f"Script connected to MongoDB: {db.name}")
        yield db
    finally:
        if client:
            client.close()
