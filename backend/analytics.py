"""
Read-only reporting over orders and the catalog.

Windows are trailing: a ``30d`` report covers ``[now - 30 days, now]`` and is
compared against the window of the same length right before it. Only paid
orders count towards revenue figures. Aggregation happens in Python over the
orders of the window, which keeps bucketing (ISO weeks in particular) identical
across MongoDB versions.
"""
from __future__ import annotations
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from config import settings
from database import ORDERS, PRODUCTS, get_documents, parse_object_id, utcnow
from errors import InvalidIdError
from schemas import PaymentStatus, ProductLifecycle, SalesGrouping, Timeframe

logger = logging.getLogger(__name__)

TIMEFRAME_DAYS = {
    Timeframe.WEEK: 7,
    Timeframe.MONTH: 30,
    Timeframe.QUARTER: 90,
    Timeframe.YEAR: 365,
}


def window_start(timeframe: Timeframe, now: Optional[datetime] = None, periods: int = 1) -> datetime:
    now = now or utcnow()
    return now - timedelta(days=TIMEFRAME_DAYS[timeframe] * periods)


def percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def bucket_key(created_at: datetime, grouping: SalesGrouping) -> str:
    if grouping == SalesGrouping.WEEK:
        year, week, _ = created_at.isocalendar()
        return f"{year}-W{week:02d}"
    if grouping == SalesGrouping.MONTH:
        return created_at.strftime("%Y-%m")
    return created_at.strftime("%Y-%m-%d")


async def paid_orders(
    db: AsyncIOMotorDatabase, start: datetime, end: datetime, include_end: bool = True
) -> list[dict[str, Any]]:
    created = {"$gte": start, ("$lte" if include_end else "$lt"): end}
    return await get_documents(
        db,
        ORDERS,
        {"created_at": created, "payment_status": PaymentStatus.PAID.value},
        sort=[("created_at", ASCENDING)],
    )


def summarize(orders: list[dict[str, Any]]) -> dict[str, float]:
    revenue = sum(float(o.get("total", 0)) for o in orders)
    count = len(orders)
    return {
        "revenue": round(revenue, 2),
        "orders": count,
        "average_order_value": round(revenue / count, 2) if count else 0.0,
    }


def sales_series(orders: Iterable[dict[str, Any]], grouping: SalesGrouping) -> list[dict[str, Any]]:
    buckets: dict[str, dict[str, Any]] = {}
    for order in orders:
        key = bucket_key(order["created_at"], grouping)
        bucket = buckets.setdefault(key, {"date": key, "revenue": 0.0, "orders": 0, "total_items": 0})
        bucket["revenue"] += float(order.get("total", 0))
        bucket["orders"] += 1
        bucket["total_items"] += sum(int(i.get("quantity", 0)) for i in order.get("items", []))

    series = []
    for key in sorted(buckets):
        bucket = buckets[key]
        bucket["revenue"] = round(bucket["revenue"], 2)
        bucket["average_order_value"] = round(bucket["revenue"] / bucket["orders"], 2)
        series.append(bucket)
    return series


def product_performance(orders: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    stats: dict[str, dict[str, Any]] = {}
    for order in orders:
        for item in order.get("items", []):
            entry = stats.setdefault(item["product_id"], {
                "product_id": item["product_id"],
                "title": item.get("title"),
                "total_quantity": 0,
                "total_revenue": 0.0,
                "price_sum": 0.0,
                "order_count": 0,
            })
            quantity = int(item.get("quantity", 0))
            price = float(item.get("price", 0))
            entry["total_quantity"] += quantity
            entry["total_revenue"] += price * quantity
            entry["price_sum"] += price
            entry["order_count"] += 1

    performance = []
    for entry in stats.values():
        price_sum = entry.pop("price_sum")
        entry["total_revenue"] = round(entry["total_revenue"], 2)
        entry["average_price"] = round(price_sum / entry["order_count"], 2)
        performance.append(entry)
    return performance


def top_products(performance: list[dict[str, Any]], key: str, limit: int) -> list[dict[str, Any]]:
    return sorted(performance, key=lambda p: (-p[key], p["title"] or ""))[:limit]


async def category_performance(db: AsyncIOMotorDatabase, orders: list[dict[str, Any]]) -> list[dict[str, Any]]:
    product_ids = set()
    for order in orders:
        for item in order.get("items", []):
            try:
                product_ids.add(parse_object_id(item["product_id"], "product"))
            except InvalidIdError:
                continue
    products = await get_documents(db, PRODUCTS, {"_id": {"$in": list(product_ids)}})
    category_of = {p["id"]: p.get("category") for p in products}

    rollup: dict[str, dict[str, Any]] = defaultdict(lambda: {"total_quantity": 0, "total_revenue": 0.0, "products": set()})
    for order in orders:
        for item in order.get("items", []):
            category = category_of.get(item["product_id"])
            if category is None:
                continue
            quantity = int(item.get("quantity", 0))
            entry = rollup[category]
            entry["total_quantity"] += quantity
            entry["total_revenue"] += float(item.get("price", 0)) * quantity
            entry["products"].add(item["product_id"])

    result = [
        {
            "category": category,
            "total_quantity": entry["total_quantity"],
            "total_revenue": round(entry["total_revenue"], 2),
            "product_count": len(entry["products"]),
        }
        for category, entry in rollup.items()
    ]
    return sorted(result, key=lambda c: (-c["total_revenue"], c["category"]))


async def inventory_status(db: AsyncIOMotorDatabase) -> dict[str, Any]:
    threshold = settings.LOW_STOCK_THRESHOLD
    products = await get_documents(db, PRODUCTS, {"lifecycle": ProductLifecycle.ACTIVE.value})
    return {
        "total_products": len(products),
        "low_stock": sum(1 for p in products if int(p.get("stock", 0)) < threshold),
        "out_of_stock": sum(1 for p in products if int(p.get("stock", 0)) == 0),
        "total_value": round(sum(float(p.get("price", 0)) * int(p.get("stock", 0)) for p in products), 2),
    }


async def low_stock_products(db: AsyncIOMotorDatabase, limit: int = 10) -> list[dict[str, Any]]:
    docs = await get_documents(
        db,
        PRODUCTS,
        {"stock": {"$lt": settings.LOW_STOCK_THRESHOLD}, "lifecycle": ProductLifecycle.ACTIVE.value},
        sort=[("stock", ASCENDING), ("_id", ASCENDING)],
        limit=limit,
    )
    return [{k: d.get(k) for k in ("id", "title", "stock", "category", "price")} for d in docs]


async def recent_orders(db: AsyncIOMotorDatabase, limit: int = 5) -> list[dict[str, Any]]:
    docs = await get_documents(
        db,
        ORDERS,
        {"payment_status": PaymentStatus.PAID.value},
        sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
        limit=limit,
    )
    return [
        {k: d.get(k) for k in ("id", "order_number", "customer_name", "total", "status", "created_at")}
        for d in docs
    ]


async def dashboard(db: AsyncIOMotorDatabase, timeframe: Timeframe = Timeframe.MONTH, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    start = window_start(timeframe, now)
    previous_start = window_start(timeframe, now, periods=2)

    current_orders = await paid_orders(db, start, now)
    previous_orders = await paid_orders(db, previous_start, start, include_end=False)
    current = summarize(current_orders)
    previous = summarize(previous_orders)

    stats = {
        key: {
            "current": current[key],
            "previous": previous[key],
            "change": round(percent_change(current[key], previous[key]), 2),
        }
        for key in ("revenue", "orders", "average_order_value")
    }
    chart_data = [
        {"date": b["date"], "revenue": b["revenue"], "orders": b["orders"]}
        for b in sales_series(current_orders, SalesGrouping.DAY)
    ]
    return {
        "timeframe": timeframe.value,
        "stats": stats,
        "chart_data": chart_data,
        "top_products": top_products(product_performance(current_orders), "total_quantity", 10),
        "recent_orders": await recent_orders(db),
        "low_stock_products": await low_stock_products(db),
    }


async def sales_report(
    db: AsyncIOMotorDatabase,
    timeframe: Timeframe = Timeframe.MONTH,
    group_by: SalesGrouping = SalesGrouping.DAY,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or utcnow()
    orders = await paid_orders(db, window_start(timeframe, now), now)
    series = sales_series(orders, group_by)
    summary = summarize(orders)
    return {
        "sales_data": series,
        "summary": {
            "total_revenue": summary["revenue"],
            "total_orders": summary["orders"],
            "total_items": sum(b["total_items"] for b in series),
            "average_order_value": summary["average_order_value"],
        },
    }


async def product_report(db: AsyncIOMotorDatabase, timeframe: Timeframe = Timeframe.MONTH, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    orders = await paid_orders(db, window_start(timeframe, now), now)
    return {
        "product_performance": top_products(product_performance(orders), "total_revenue", 20),
        "category_performance": await category_performance(db, orders),
        "inventory_status": await inventory_status(db),
    }
