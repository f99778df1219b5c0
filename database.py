"""
MongoDB access for the storefront.

The connection is opened once at import time from DATABASE_URL and
DATABASE_NAME. Route handlers receive the handle through ``get_db`` so tests
can swap in another database.
"""
import math
import os
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from errors import NotFound, Unexpected, ValidationError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise Unexpected("Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: str, label: str = "Resource") -> ObjectId:
    """Parse a path/body id. Malformed ids are reported as missing documents."""
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFound(f"{label} not found")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    doc.pop("password_hash", None)
    return doc


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> dict:
    """Insert a document with timestamps and return it with its new ``_id``."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    data_dict["_id"] = result.inserted_id
    return data_dict


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort: Optional[list] = None, skip: int = 0, limit: Optional[int] = None) -> list:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(database: Database, collection_name: str, filter_dict: dict, page: int, limit: int,
             sort: Optional[list] = None) -> tuple:
    """Return one page of documents plus the pagination block used by list endpoints."""
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    skip = (page - 1) * limit
    items = get_documents(database, collection_name, filter_dict, sort=sort, skip=skip, limit=limit)
    total = database[collection_name].count_documents(filter_dict)
    pagination = {
        "current_page": page,
        "total_pages": math.ceil(total / limit),
        "total": total,
        "has_next": skip + limit < total,
        "has_prev": page > 1,
    }
    return items, pagination
