"""Order queries, admin status updates and summary statistics."""
from __future__ import annotations
import logging
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from analytics import paid_orders, sales_series, summarize, window_start
from database import ORDERS, get_documents, paginate, parse_object_id, to_client, utcnow
from errors import NotFoundError, ValidationError
from schemas import (
    OrderOut,
    OrderStatus,
    PaymentStatus,
    PaymentStatusUpdate,
    SalesGrouping,
    SortOrder,
    StatusUpdate,
    Timeframe,
)

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "total": "total",
    "order_number": "order_number",
    "status": "status",
}


def order_out(doc: dict[str, Any]) -> OrderOut:
    if "_id" in doc:
        doc = to_client(doc)
    return OrderOut(**doc)


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def build_order_filter(
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Both ends of the date range are inclusive: ``start <= created_at <= end``.
    Offset-aware bounds are converted to naive UTC, the way dates are stored.
    """
    start_date = _as_naive_utc(start_date)
    end_date = _as_naive_utc(end_date)
    filt: dict[str, Any] = {}
    if status is not None:
        filt["status"] = status.value
    if payment_status is not None:
        filt["payment_status"] = payment_status.value
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [
            {"order_number": pattern},
            {"customer_email": pattern},
            {"customer_name": pattern},
        ]
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must not be after end_date")
    if start_date or end_date:
        filt["created_at"] = {}
        if start_date:
            filt["created_at"]["$gte"] = start_date
        if end_date:
            filt["created_at"]["$lte"] = end_date
    return filt


async def list_orders(
    db: AsyncIOMotorDatabase,
    *,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "created_at",
    sort_order: SortOrder = SortOrder.DESC,
    **filters: Any,
) -> tuple[list[OrderOut], dict[str, Any]]:
    field = SORT_FIELDS.get(sort_by)
    if field is None:
        raise ValidationError(f"Cannot sort by '{sort_by}'", valid_sort_keys=sorted(SORT_FIELDS))
    direction = ASCENDING if sort_order == SortOrder.ASC else DESCENDING
    docs, pagination = await paginate(
        db,
        ORDERS,
        build_order_filter(**filters),
        [(field, direction), ("_id", direction)],
        page,
        limit,
        total_key="total_orders",
    )
    return [order_out(d) for d in docs], pagination


async def get_order(db: AsyncIOMotorDatabase, order_id: str) -> OrderOut:
    doc = await db[ORDERS].find_one({"_id": parse_object_id(order_id, "order")})
    if not doc:
        raise NotFoundError("order")
    return order_out(doc)


async def lookup_order(db: AsyncIOMotorDatabase, order_number: str, email: Optional[str]) -> OrderOut:
    """Customer self-service lookup; the email acts as a lightweight proof of ownership."""
    if not email or not email.strip():
        raise ValidationError("Email is required to lookup order")
    doc = await db[ORDERS].find_one({
        "order_number": order_number,
        "customer_email": email.strip().lower(),
    })
    if not doc:
        raise NotFoundError("order")
    return order_out(doc)


async def _update_order(db: AsyncIOMotorDatabase, order_id: str, changes: dict[str, Any]) -> OrderOut:
    # Last writer wins
    changes["updated_at"] = utcnow()
    doc = await db[ORDERS].find_one_and_update(
        {"_id": parse_object_id(order_id, "order")},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("order")
    return order_out(doc)


async def update_status(db: AsyncIOMotorDatabase, order_id: str, payload: StatusUpdate) -> OrderOut:
    # Any status may follow any other; admins are trusted with the order of steps.
    changes: dict[str, Any] = {"status": payload.status.value}
    if payload.tracking_number is not None:
        changes["tracking_number"] = payload.tracking_number
    if payload.notes is not None:
        changes["notes"] = payload.notes
    order = await _update_order(db, order_id, changes)
    logger.info("Order %s status -> %s", order.order_number, payload.status.value)
    return order


async def update_payment_status(db: AsyncIOMotorDatabase, order_id: str, payload: PaymentStatusUpdate) -> OrderOut:
    order = await _update_order(db, order_id, {"payment_status": payload.payment_status.value})
    logger.info("Order %s payment status -> %s", order.order_number, payload.payment_status.value)
    return order


async def summary_stats(db: AsyncIOMotorDatabase, timeframe: Timeframe = Timeframe.MONTH, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    start = window_start(timeframe, now)

    paid = await paid_orders(db, start, now)
    totals = summarize(paid)
    recent = sum(1 for o in paid if o["created_at"] >= now - timedelta(hours=24))

    in_window = await get_documents(db, ORDERS, {"created_at": {"$gte": start, "$lte": now}})
    by_status = Counter(o.get("status") for o in in_window)

    return {
        "summary": {
            "total_orders": totals["orders"],
            "total_revenue": totals["revenue"],
            "recent_orders": recent,
            "average_order_value": totals["average_order_value"],
        },
        "orders_by_status": dict(by_status),
        "revenue_by_month": [
            {"month": b["date"], "revenue": b["revenue"], "orders": b["orders"]}
            for b in sales_series(paid, SalesGrouping.MONTH)
        ],
    }
