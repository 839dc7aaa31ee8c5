import logging
from typing import Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import GEOSPHERE, MongoClient
from pymongo.database import Database

from settings import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = MongoClient(DATABASE_URL) if DATABASE_URL else None
db: Optional[Database] = client[DATABASE_NAME] if client is not None else None


def get_db() -> Database:
    if db is None:
        raise RuntimeError("Database not configured; set DATABASE_URL")
    return db


def ensure_indexes(database: Database) -> None:
    database["property"].create_index([("address.coordinates", GEOSPHERE)])
    database["user"].create_index("email", unique=True)
    database["host"].create_index("user_id", unique=True)
    database["booking"].create_index([("property_id", 1), ("status", 1)])
    database["review"].create_index("booking_id", unique=True)
    logger.info("Indexes ensured on %s", database.name)


def object_id(value: str, detail: str = "Not found") -> ObjectId:
    """Parse a path id; malformed ids are reported as missing entities."""
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=404, detail=detail)
    return ObjectId(value)


def with_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    doc["id"] = str(doc.pop("_id"))
    return doc


def list_with_id(cursor):
    items = []
    for d in cursor:
        d["id"] = str(d.pop("_id"))
        items.append(d)
    return items
