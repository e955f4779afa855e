"""
MongoDB handle for the Classmates API.

`db` stays None when DATABASE_URL / DATABASE_NAME are not set; callers go
through get_db() so that case surfaces as a ServerError.
"""
import logging
from typing import Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL
from errors import ServerError, ValidationError

logger = logging.getLogger(__name__)

db = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db():
    if db is None:
        raise ServerError("Database not configured")
    return db


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["conversation"].create_index("participants")
    database["message"].create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
    database["memory"].create_index([("created_at", DESCENDING)])
    database["memory"].create_index("author")
    database["memory"].create_index("tagged_friends")
    logger.info("MongoDB indexes ensured")


def parse_object_id(value: Optional[str], label: str = "ID") -> ObjectId:
    """Turn a client-supplied id into an ObjectId or raise ValidationError."""
    if not value or not ObjectId.is_valid(str(value)):
        raise ValidationError(f"Invalid {label} format")
    return ObjectId(str(value))
