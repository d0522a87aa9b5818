"""
MongoDB connection and document helpers.

``db`` is ``None`` unless ``DATABASE_URL`` is set, in which case the app stores
everything in the ``DATABASE_NAME`` database.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "kamio_store")

db = None
if DATABASE_URL:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert a document with timestamps and return its id as a string."""
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not configured")
    data_dict = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None, sort=None, database=None) -> List[Dict[str, Any]]:
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not configured")
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
