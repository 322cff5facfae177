"""
MongoDB access for the storefront.

`db` is a pymongo Database when DATABASE_URL is set, otherwise None. Store
modules go through `get_collection` so a missing database surfaces as a
clean 500 instead of an AttributeError.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection

import settings
from errors import ConcurrentUpdateError, DatabaseUnavailableError

logger = structlog.get_logger(__name__)

client = MongoClient(settings.DATABASE_URL, tz_aware=True) if settings.DATABASE_URL else None
db = client[settings.DATABASE_NAME] if client is not None else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_collection(name: str) -> Collection:
    if db is None:
        raise DatabaseUnavailableError()
    return db[name]


def parse_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[Dict[str, Any], Any]) -> Dict[str, Any]:
    """Insert a document stamped with created_at/updated_at and return it with its `_id`."""
    if hasattr(data, "model_dump"):
        data = data.model_dump()
    now = utcnow()
    doc = {**data, "created_at": now, "updated_at": now}
    doc["_id"] = get_collection(collection_name).insert_one(doc).inserted_id
    return doc


def next_sequence(name: str) -> int:
    """Atomically increment and return the named counter."""
    doc = get_collection("counter").find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(doc["seq"])


def compare_and_swap(
    collection_name: str,
    doc_id: ObjectId,
    mutate: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
    max_attempts: Optional[int] = None,
) -> Optional[Dict[str, Any]]:
    """Read-modify-write a document under optimistic concurrency.

    `mutate` receives the current document and returns the top-level fields to
    `$set` (or None for no change). The write only lands if the document's
    `version` is still the one that was read; otherwise the document is
    re-read and `mutate` runs again. Exceptions raised by `mutate` propagate
    without writing anything.

    Returns the updated document, or None if the document does not exist.
    """
    coll = get_collection(collection_name)
    attempts = max_attempts or settings.CAS_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        doc = coll.find_one({"_id": doc_id})
        if doc is None:
            return None
        changes = mutate(doc)
        if not changes:
            return doc

        version = doc.get("version")
        if version is None:
            query = {"_id": doc_id, "version": {"$exists": False}}
        else:
            query = {"_id": doc_id, "version": version}
        new_version = (version or 0) + 1
        changes = {**changes, "updated_at": utcnow(), "version": new_version}

        res = coll.update_one(query, {"$set": changes})
        if res.matched_count == 1:
            doc.update(changes)
            return doc
        logger.warning("cas_conflict", collection=collection_name, doc_id=str(doc_id), attempt=attempt)

    raise ConcurrentUpdateError(collection_name, str(doc_id), attempts)


def serialize(value: Any) -> Any:
    """Make a document JSON friendly: `_id` -> `id`, ObjectId -> str, datetime -> ISO."""
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            out["id" if k == "_id" else k] = serialize(v)
        return out
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def ensure_indexes() -> None:
    if db is None:
        return
    db["user"].create_index([("email", ASCENDING)], unique=True)

    db["product"].create_index([("slug", ASCENDING)], unique=True)
    db["product"].create_index([("sku", ASCENDING)], unique=True)
    db["product"].create_index([("category", ASCENDING), ("price", ASCENDING)])
    db["product"].create_index([("brand", ASCENDING), ("category", ASCENDING)])
    db["product"].create_index([("ratings.average", DESCENDING)])
    db["product"].create_index([("sales_count", DESCENDING)])
    db["product"].create_index([("created_at", DESCENDING)])

    db["review"].create_index([("product_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    db["review"].create_index([("product_id", ASCENDING), ("rating", DESCENDING)])
    db["review"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    db["order"].create_index([("order_number", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index([("status", ASCENDING)])
    logger.info("indexes_ensured", database=db.name)


def paginate(page: int, limit: int, total: int) -> Dict[str, int]:
    pages = -(-total // limit) if limit else 0
    return {"page": page, "limit": limit, "total": total, "pages": pages}
