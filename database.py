"""
MongoDB access helpers.

The client is opened once from DATABASE_URL / DATABASE_NAME. ``db`` stays None
when the database is not configured so the API can report it instead of
crashing at import time.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import Config
from errors import ConcurrentModification, InvalidInput, PersistenceError

_client = None
db = None

if Config.DATABASE_URL and Config.DATABASE_NAME:
    _client = MongoClient(Config.DATABASE_URL)
    db = _client[Config.DATABASE_NAME]


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise InvalidInput(f"Invalid id format: {id_str!r}")


def with_id(doc):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _resolve(database):
    target = database if database is not None else db
    if target is None:
        raise PersistenceError("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return target


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    target = _resolve(database)
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    data_dict["created_at"] = now()
    data_dict["updated_at"] = now()
    try:
        result = target[collection_name].insert_one(data_dict)
    except PyMongoError as e:
        raise PersistenceError(f"Failed to create {collection_name}: {e}")
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    database=None,
) -> List[dict]:
    target = _resolve(database)
    cursor = target[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_by_id(collection_name: str, id_str: Any, database=None) -> Optional[dict]:
    target = _resolve(database)
    return target[collection_name].find_one({"_id": oid(id_str)})


def commit_revision(
    collection_name: str,
    doc: dict,
    changes: Dict[str, Any],
    history_entry: Optional[dict] = None,
    database=None,
) -> dict:
    """
    Apply ``changes`` to ``doc`` only if nobody has written it since it was read.

    The write is conditioned on the revision the caller saw; on success the
    revision is bumped and the audit entry appended. Returns the document as
    stored after the write.
    """
    target = _resolve(database)
    revision = doc.get("revision", 0)
    update: Dict[str, Any] = {
        "$set": {**changes, "updated_at": now()},
        "$inc": {"revision": 1},
    }
    if history_entry is not None:
        update["$push"] = {"history": history_entry}
    try:
        result = target[collection_name].update_one({"_id": doc["_id"], "revision": revision}, update)
    except PyMongoError as e:
        raise PersistenceError(f"Failed to update {collection_name} {doc['_id']}: {e}")
    if result.matched_count == 0:
        raise ConcurrentModification(collection_name, str(doc["_id"]))
    return target[collection_name].find_one({"_id": doc["_id"]})
