"""
MongoDB access for the marketplace.

Collections are named after the lowercased schema class (``user``,
``customorder``, ``conversation`` ...). ``client`` and ``db`` stay ``None``
when no database is configured so the app can still boot and report it.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import config
from errors import TransientStoreFailure, ValidationFailure

logger = logging.getLogger(__name__)

client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]


def utcnow() -> datetime:
    # MongoDB hands datetimes back as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _require_db():
    if db is None:
        raise TransientStoreFailure("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return db


def collection(name: str):
    return _require_db()[name]


def object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationFailure(f"Invalid {label}")
    return ObjectId(value)


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    database = _require_db()
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict, session=session)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


@contextmanager
def transaction():
    """Yield a session with a started transaction.

    The transaction commits when the block exits normally and aborts when it
    raises, so nothing written inside a failed block becomes visible.
    """
    if client is None:
        raise TransientStoreFailure("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    with client.start_session() as session:
        with session.start_transaction():
            yield session


def fetch_projection(collection_name: str, ref_id: str, fields: Iterable[str], session=None) -> Optional[dict]:
    """Resolve one reference into a lightweight projection of the target."""
    database = _require_db()
    if not ObjectId.is_valid(ref_id):
        return None
    doc = database[collection_name].find_one(
        {"_id": ObjectId(ref_id)}, {f: 1 for f in fields}, session=session
    )
    return serialize(doc)


def fetch_projections(collection_name: str, ids: Iterable[str], fields: Iterable[str],
                      session=None) -> Dict[str, dict]:
    """Batch variant of fetch_projection, keyed by id string."""
    database = _require_db()
    oids = [ObjectId(i) for i in set(ids) if ObjectId.is_valid(i)]
    if not oids:
        return {}
    docs = database[collection_name].find({"_id": {"$in": oids}}, {f: 1 for f in fields}, session=session)
    return {str(d["_id"]): serialize(d) for d in docs}


def ensure_indexes() -> None:
    if db is None:
        logger.warning("No database configured, skipping index creation")
        return
    orders = db["customorder"]
    orders.create_index([("order_id", ASCENDING)], unique=True)
    orders.create_index([("period", ASCENDING), ("sequence", DESCENDING)])
    orders.create_index([("designer_id", ASCENDING)])
    orders.create_index([("user_id", ASCENDING)])
    orders.create_index([("status", ASCENDING)])
    orders.create_index([("created_at", DESCENDING)])
    db["conversation"].create_index([("participants", ASCENDING)])
    logger.info("Indexes ensured on %s", db.name)
