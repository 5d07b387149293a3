"""
MongoDB access for the marketplace.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; endpoints
get the handle through `get_db` so tests can swap in another database.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import settings
from errors import NotFoundError

client = None
db = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    client = MongoClient(settings.DATABASE_URL)
    db = client[settings.DATABASE_NAME]


def get_db():
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: Any, resource: str = "Resource") -> ObjectId:
    """Parse an id, treating a malformed one the same as a missing record."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFoundError(resource, str(id_str))


def create_document(database, collection_name: str, data) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    data = dict(data)
    now = utcnow()
    data.setdefault("created_at", now)
    data["updated_at"] = now
    result = database[collection_name].insert_one(data)
    return str(result.inserted_id)


def get_documents(
    database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, list):
            doc[k] = [serialize_doc(x) if isinstance(x, dict) else (str(x) if isinstance(x, ObjectId) else x) for x in v]
        elif isinstance(v, dict):
            doc[k] = serialize_doc(v)
    return doc


def ensure_indexes(database) -> None:
    database["product"].create_index([("seller_id", ASCENDING), ("created_at", DESCENDING)])
    database["product"].create_index([("category", ASCENDING), ("price", ASCENDING)])
    database["product"].create_index("sku", unique=True, sparse=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index("status")
    database["order"].create_index("items.seller_id")
    database["review"].create_index([("product_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    database["review"].create_index([("product_id", ASCENDING), ("rating", ASCENDING)])
