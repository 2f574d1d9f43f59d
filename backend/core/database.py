"""MongoDB async connection manager.

Provides singleton client and database references.
Creates indexes on startup for profiles and audit collections.
Only used when PROFILE_STORE=mongo.
"""
import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from config.settings import get_settings

logger = logging.getLogger(__name__)

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncIOMotorClient(settings.MONGO_URL)
    return _client


def get_db() -> AsyncIOMotorDatabase:
    global _db
    if _db is None:
        settings = get_settings()
        _db = get_client()[settings.DB_NAME]
    return _db


async def init_indexes() -> None:
    """Create required indexes. Idempotent."""
    db = get_db()

    # Profiles: phone is the unique identity key
    await db.users.create_index("phone", unique=True)
    await db.users.create_index("id", unique=True)

    # Audit events: per-user time-series queries
    await db.audit_events.create_index([("user_id", 1), ("timestamp", -1)])
    await db.audit_events.create_index("event_type")

    logger.info("MongoDB indexes initialized")


async def close_db() -> None:
    global _client, _db
    if _client:
        _client.close()
        _client = None
        _db = None
        logger.info("MongoDB connection closed")


async def find_one_safe(
    collection_name: str,
    query: dict,
    extra_projection: dict | None = None,
) -> dict | None:
    """find_one with _id excluded by default.

    Prevents ObjectId serialization crashes when the document is turned
    into a pydantic model or returned to the client.
    """
    db = get_db()
    projection: dict = {"_id": 0}
    if extra_projection:
        projection.update(extra_projection)
    return await getattr(db, collection_name).find_one(query, projection)
