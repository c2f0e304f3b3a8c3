"""
MongoDB access layer.

A single MongoClient is shared by the whole process. It is created lazily on
first use (or at startup by the app lifespan) and closed on shutdown.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import get_settings
from errors import PersistenceError

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db = None


def init_database():
    """Connect once and return the database handle (None when unconfigured)."""
    global _client, db
    if db is not None:
        return db
    settings = get_settings()
    if not settings.database_url or not settings.database_name:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, database disabled")
        return None
    _client = MongoClient(
        settings.database_url,
        tz_aware=True,
        serverSelectionTimeoutMS=5000,
    )
    db = _client[settings.database_name]
    logger.info("Connected to MongoDB database %s", settings.database_name)
    return db


def close_database() -> None:
    global _client, db
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    db = None


def collection(name: str):
    if init_database() is None:
        raise PersistenceError("Database not configured")
    return db[name]


def ensure_indexes() -> None:
    collection("user").create_index("email", unique=True)
    collection("note").create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    collection("test").create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse a client supplied id; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
