from __future__ import annotations
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from config import settings
from errors import InvalidIdError

logger = logging.getLogger(__name__)

PRODUCTS = "product"
ORDERS = "order"

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


def utcnow() -> datetime:
    # Naive UTC, matching what motor hands back by default
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
        logger.info("Connected to MongoDB database %s", settings.DATABASE_NAME)
    return _db


def close_db() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db[PRODUCTS].create_index([("lifecycle", ASCENDING), ("category", ASCENDING)])
    await db[PRODUCTS].create_index("sku", sparse=True)
    await db[ORDERS].create_index("order_number", unique=True)
    await db[ORDERS].create_index("payment_session_id", unique=True, sparse=True)
    await db[ORDERS].create_index("payment_intent_id", sparse=True)
    await db[ORDERS].create_index([("created_at", DESCENDING)])


def parse_object_id(value: str, kind: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidIdError(kind, value)


def to_client(doc: dict[str, Any]) -> dict[str, Any]:
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
    now = utcnow()
    data_with_meta = {**data, "created_at": now, "updated_at": now}
    result = await db[collection_name].insert_one(data_with_meta)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    return to_client(inserted) if inserted else {}


async def get_documents(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: dict[str, Any] | None = None,
    limit: int = 0,
    sort: list[tuple[str, int]] | None = None,
    skip: int = 0,
) -> list[dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}, sort=sort, skip=skip, limit=limit)
    docs = []
    async for d in cursor:
        docs.append(to_client(d))
    return docs


async def paginate(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: dict[str, Any],
    sort: list[tuple[str, int]],
    page: int,
    limit: int,
    total_key: str = "total",
) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    skip = (page - 1) * limit
    docs = await get_documents(db, collection_name, filter_dict, limit=limit, sort=sort, skip=skip)
    total = await db[collection_name].count_documents(filter_dict)
    pagination = {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
        total_key: total,
        "has_next_page": skip + len(docs) < total,
        "has_previous_page": page > 1,
    }
    return docs, pagination
