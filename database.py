"""
Database helpers

Each entity type lives in its own MongoDB collection:
- user, product, order, comment

There are no cross-collection constraints. References between documents
(order -> user, comment -> product) are checked by explicit lookups at
write time.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from fastapi import HTTPException, Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings

logger = logging.getLogger(__name__)


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url, tz_aware=True)
    logger.info("Connected to MongoDB database %s", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING)])
    db["comment"].create_index([("product_id", ASCENDING)])


def get_db(request: Request) -> Database:
    return request.app.state.db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc["created_at"] = now
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def oid(id_str: str) -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise HTTPException(status_code=400, detail="Invalid id")
    return ObjectId(id_str)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, datetime) and v.tzinfo is None:
            d[k] = v.replace(tzinfo=timezone.utc)
    return d
