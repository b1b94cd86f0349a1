"""MongoDB Client - Connection and Collection Management"""
from typing import Any, Dict, Optional
from pymongo import MongoClient as PyMongoClient
from pymongo.database import Database
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure

from ..config.settings import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Global client instance
_client: Optional[PyMongoClient] = None
_database: Optional[Database] = None


def get_client() -> PyMongoClient:
    """Get or create MongoDB client"""
    global _client
    if _client is None:
        logger.info(f"Connecting to MongoDB: {settings.mongo_uri}")
        _client = PyMongoClient(
            settings.mongo_uri,
            tz_aware=True,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            socketTimeoutMS=30000,
        )
        try:
            _client.admin.command("ping")
            logger.info("MongoDB connection successful")
        except ConnectionFailure as e:
            logger.error(f"MongoDB connection failed: {e}")
            raise
    return _client


def get_database() -> Database:
    """Get the application database"""
    global _database
    if _database is None:
        client = get_client()
        _database = client[settings.mongo_db]
        logger.info(f"Using database: {settings.mongo_db}")
    return _database


def get_collection(name: str) -> Collection:
    """Get a collection from the database"""
    db = get_database()
    return db[name]


def close_connection() -> None:
    """Close MongoDB connection"""
    global _client, _database
    if _client is not None:
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


def create_indexes() -> None:
    """Create all required indexes"""
    db = get_database()
    logger.info("Creating MongoDB indexes...")

    # Credentials collection
    credentials = db["credentials"]
    credentials.create_index("account_id", unique=True)
    credentials.create_index("email")

    # Forms collection
    forms = db["forms"]
    forms.create_index("form_id", unique=True)
    forms.create_index([("owner_id", ASCENDING), ("created_at", DESCENDING)])
    forms.create_index([("base_id", ASCENDING), ("table_id", ASCENDING)])
    forms.create_index("is_active")

    # Submissions collection
    submissions = db["submissions"]
    submissions.create_index("response_id", unique=True)
    submissions.create_index("external_record_id", unique=True)
    submissions.create_index([("form_id", ASCENDING), ("created_at", DESCENDING)])
    submissions.create_index([("deleted_externally", ASCENDING), ("form_id", ASCENDING)])

    # Subscriptions collection
    subscriptions = db["subscriptions"]
    subscriptions.create_index("external_id", unique=True)
    subscriptions.create_index("form_id")
    subscriptions.create_index([("active", ASCENDING), ("last_ping_at", ASCENDING)])
    subscriptions.create_index([("base_id", ASCENDING), ("table_id", ASCENDING)])

    # Pending authorizations expire on their own
    auth_states = db["auth_states"]
    auth_states.create_index("state", unique=True)
    auth_states.create_index("expires_at", expireAfterSeconds=0)

    logger.info("MongoDB indexes created successfully")


def health_check() -> Dict[str, Any]:
    """Check MongoDB health"""
    try:
        client = get_client()
        client.admin.command("ping")
        return {
            "status": "healthy",
            "database": settings.mongo_db,
            "connection": "ok"
        }
    except Exception as e:
        logger.error(f"MongoDB health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": settings.mongo_db,
            "error": str(e)
        }
