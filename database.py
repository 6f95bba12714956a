"""
MongoDB access for Hubly Desk.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; routes
receive the handle through the `get_db` dependency so tests can swap it.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import DeskError, NotFound

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL, tz_aware=True)
    db = client[DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise DeskError("Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Stored datetimes may come back naive depending on the client's tz_aware flag."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def object_id(value, what: str = "Document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found!")


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict],
                    now: Optional[datetime] = None) -> ObjectId:
    """Insert a schema model (or plain dict) stamped with created_at / updated_at."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now or utcnow()
    doc.update({"created_at": stamp, "updated_at": stamp})
    res = database[collection_name].insert_one(doc)
    return res.inserted_id


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["user"].create_index("refresh_token")
    database["session"].create_index("token", unique=True)
    database["session"].create_index("user_id")
    database["lead"].create_index("ticket_id", unique=True)
    database["lead"].create_index([("created_at", DESCENDING)])
    database["lead"].create_index("assignee_list")
    database["conversation"].create_index([("lead_id", ASCENDING), ("created_at", ASCENDING)])
    database["conversation"].create_index(
        [("lead_id", ASCENDING), ("idempotency_key", ASCENDING)],
        unique=True,
        partialFilterExpression={"idempotency_key": {"$exists": True}},
    )
    logger.debug("Indexes ensured on %s", database.name)
