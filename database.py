"""
Database helpers: pymongo client plus small document utilities.

Each collection is named after the lowercase pydantic schema in schemas.py.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_URL, DATABASE_NAME

logger = logging.getLogger(__name__)

db = None

if DATABASE_URL:
    try:
        _client = MongoClient(DATABASE_URL)
        db = _client[DATABASE_NAME]
    except Exception as e:
        logger.error("MongoDB connection error: %s", e)
        db = None


def get_db():
    """FastAPI dependency returning the active database."""
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def utcnow() -> datetime:
    # naive UTC, matching what pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def serialize(doc):
    if not doc:
        return None
    doc["id"] = str(doc.pop("_id"))
    doc.pop("password_hash", None)
    return doc


def create_document(database, collection_name: str, data) -> str:
    """Insert a pydantic model or dict, stamping created_at/updated_at."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    if not data_dict.get("created_at"):
        data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def ensure_indexes(database):
    database["user"].create_index("email", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["product"].create_index([("is_active", 1), ("category", 1)])
    database["product"].create_index([("is_active", 1), ("brand", 1)])
    database["product"].create_index([("is_active", 1), ("price", 1)])
    database["order"].create_index([("user_id", 1), ("created_at", -1)])
    database["order"].create_index("created_at")


def get_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
