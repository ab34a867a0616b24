"""Catalog queries and admin product maintenance."""
from __future__ import annotations
import logging
import re
from typing import Any, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import PRODUCTS, create_document, paginate, parse_object_id, to_client, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import ProductCreate, ProductLifecycle, ProductOut, ProductUpdate, SortOrder

logger = logging.getLogger(__name__)

# Accepted sort keys -> stored field
SORT_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "title": "title",
    "name": "title",
    "price": "price",
}


def product_out(doc: dict[str, Any]) -> ProductOut:
    if "_id" in doc:
        doc = to_client(doc)
    return ProductOut(**{**doc, "in_stock": int(doc.get("stock", 0)) > 0})


def _icontains(text: str) -> dict[str, str]:
    return {"$regex": re.escape(text), "$options": "i"}


def build_product_filter(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: bool = False,
    lifecycle: Optional[ProductLifecycle] = ProductLifecycle.ACTIVE,
    search_fields: tuple[str, ...] = ("title", "description", "tags"),
) -> dict[str, Any]:
    filt: dict[str, Any] = {}
    if lifecycle is not None:
        filt["lifecycle"] = lifecycle.value
    if category:
        filt["category"] = _icontains(category)
    if search:
        filt["$or"] = [{field: _icontains(search)} for field in search_fields]
    if min_price is not None or max_price is not None:
        filt["price"] = {}
        if min_price is not None:
            filt["price"]["$gte"] = min_price
        if max_price is not None:
            filt["price"]["$lte"] = max_price
    if in_stock:
        filt["stock"] = {"$gt": 0}
    return filt


def sort_spec(sort_by: str, sort_order: SortOrder) -> list[tuple[str, int]]:
    field = SORT_FIELDS.get(sort_by)
    if field is None:
        raise ValidationError(f"Cannot sort by '{sort_by}'", valid_sort_keys=sorted(SORT_FIELDS))
    direction = ASCENDING if sort_order == SortOrder.ASC else DESCENDING
    return [(field, direction), ("_id", direction)]


async def list_products(
    db: AsyncIOMotorDatabase,
    *,
    page: int = 1,
    limit: int = 12,
    sort_by: str = "created_at",
    sort_order: SortOrder = SortOrder.DESC,
    **filters: Any,
) -> tuple[list[ProductOut], dict[str, Any]]:
    filt = build_product_filter(**filters)
    docs, pagination = await paginate(
        db, PRODUCTS, filt, sort_spec(sort_by, sort_order), page, limit, total_key="total_products"
    )
    return [product_out(d) for d in docs], pagination


async def list_categories(db: AsyncIOMotorDatabase) -> list[str]:
    categories = await db[PRODUCTS].distinct("category", {"lifecycle": ProductLifecycle.ACTIVE.value})
    return sorted(categories)


async def get_product(db: AsyncIOMotorDatabase, product_id: str, include_inactive: bool = False) -> ProductOut:
    filt: dict[str, Any] = {"_id": parse_object_id(product_id, "product")}
    if not include_inactive:
        filt["lifecycle"] = ProductLifecycle.ACTIVE.value
    doc = await db[PRODUCTS].find_one(filt)
    if not doc:
        raise NotFoundError("product")
    return product_out(doc)


async def _ensure_unique_sku(db: AsyncIOMotorDatabase, sku: str, exclude_id=None) -> None:
    filt: dict[str, Any] = {"sku": sku, "lifecycle": ProductLifecycle.ACTIVE.value}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if await db[PRODUCTS].find_one(filt):
        raise ConflictError("Product with this SKU already exists")


async def create_product(db: AsyncIOMotorDatabase, payload: ProductCreate) -> ProductOut:
    if payload.sku:
        await _ensure_unique_sku(db, payload.sku)
    data = payload.model_dump(exclude_none=True)
    data["lifecycle"] = ProductLifecycle.ACTIVE.value
    doc = await create_document(db, PRODUCTS, data)
    logger.info("Created product %s (%s)", doc["id"], doc["title"])
    return product_out(doc)


async def update_product(db: AsyncIOMotorDatabase, product_id: str, payload: ProductUpdate) -> ProductOut:
    oid = parse_object_id(product_id, "product")
    current = await db[PRODUCTS].find_one({"_id": oid})
    if not current:
        raise NotFoundError("product")

    changes = payload.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    # Checked against the product as it will be after the update, so reactivation is covered too
    sku = changes.get("sku", current.get("sku"))
    lifecycle = changes.get("lifecycle", current.get("lifecycle"))
    if sku and lifecycle == ProductLifecycle.ACTIVE.value:
        await _ensure_unique_sku(db, sku, exclude_id=oid)
    changes["updated_at"] = utcnow()

    doc = await db[PRODUCTS].find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not doc:
        raise NotFoundError("product")
    return product_out(doc)


async def soft_delete_product(db: AsyncIOMotorDatabase, product_id: str) -> None:
    oid = parse_object_id(product_id, "product")
    result = await db[PRODUCTS].update_one(
        {"_id": oid},
        {"$set": {"lifecycle": ProductLifecycle.INACTIVE.value, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("product")
    logger.info("Deactivated product %s", product_id)
