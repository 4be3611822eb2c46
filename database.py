"""
MongoDB access for the marketplace.

The client is created lazily by pymongo, so importing this module never blocks
on the server. Routes receive the database through ``get_db`` so tests can
swap in another handle.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def as_object_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or None when it cannot be one."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Optional[Database] = None) -> str:
    """Insert one document, stamping created_at/updated_at, and return its id."""
    target = database if database is not None else db
    doc = data.model_dump(by_alias=True) if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    inserted_id = target[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[Sequence[Tuple[str, int]]] = None, database: Optional[Database] = None) -> List[Dict[str, Any]]:
    target = database if database is not None else db
    cursor = target[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    return list(cursor)
