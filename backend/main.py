from __future__ import annotations
import logging
import os
from datetime import datetime
from typing import Optional
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

import analytics
import catalog
import checkout
import orders
from auth import require_admin
from config import configure_logging, settings
from database import close_db, ensure_indexes, get_db
from errors import (
    ConflictError,
    InvalidIdError,
    NotFoundError,
    PaymentGatewayError,
    StorefrontError,
    ValidationError,
    WebhookSignatureError,
)
from payments import StripeGateway, get_gateway
from schemas import (
    CheckoutRequest,
    CheckoutSession,
    OrderMessage,
    OrderOut,
    OrderPage,
    OrderStatus,
    PaymentStatus,
    PaymentStatusUpdate,
    ProductCreate,
    ProductLifecycle,
    ProductMessage,
    ProductOut,
    ProductPage,
    ProductUpdate,
    SalesGrouping,
    SortOrder,
    StatusUpdate,
    Timeframe,
)
from seed import seed_products

logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

admin = [Depends(require_admin)]


@app.on_event("startup")
async def startup():
    configure_logging()
    db = await get_db()
    await ensure_indexes(db)


@app.on_event("shutdown")
def shutdown():
    close_db()


# ---------- Errors ----------

ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    InvalidIdError: 400,
    WebhookSignatureError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    PaymentGatewayError: 500,
}


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, ValidationError):
        content.update(exc.extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------- Health ----------

@app.get("/")
def health():
    return {"message": "Storefront API running"}


@app.get("/test")
async def test_database(db: AsyncIOMotorDatabase = Depends(get_db)):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
        "database_name": "Set" if os.getenv("DATABASE_NAME") else "Not Set",
        "collections": [],
    }
    try:
        response["collections"] = (await db.list_collection_names())[:10]
        response["database"] = "Connected & Working"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"Connected but Error: {str(e)[:50]}"
    return response


@app.post("/api/seed", dependencies=admin)
async def seed(db: AsyncIOMotorDatabase = Depends(get_db)):
    inserted = await seed_products(db)
    return {"seeded": inserted > 0, "inserted": inserted}


# ---------- Products ----------

@app.get("/api/products", response_model=ProductPage)
async def get_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    in_stock: bool = False,
    sort_by: str = "created_at",
    sort_order: SortOrder = SortOrder.DESC,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    products, pagination = await catalog.list_products(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        category=category,
        search=search,
        min_price=min_price,
        max_price=max_price,
        in_stock=in_stock,
    )
    return {"products": products, "pagination": pagination}


@app.get("/api/products/categories", response_model=list[str])
async def get_categories(db: AsyncIOMotorDatabase = Depends(get_db)):
    return await catalog.list_categories(db)


@app.get("/api/products/admin/all", response_model=ProductPage, dependencies=admin)
async def get_all_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    lifecycle: Optional[ProductLifecycle] = None,
    sort_by: str = "created_at",
    sort_order: SortOrder = SortOrder.DESC,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    products, pagination = await catalog.list_products(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        category=category,
        search=search,
        lifecycle=lifecycle,
        search_fields=("title", "description", "sku"),
    )
    return {"products": products, "pagination": pagination}


@app.get("/api/products/{product_id}", response_model=ProductOut)
async def get_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await catalog.get_product(db, product_id)


@app.post("/api/products", response_model=ProductMessage, status_code=201, dependencies=admin)
async def create_product(payload: ProductCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await catalog.create_product(db, payload)
    return {"message": "Product created successfully", "product": product}


@app.put("/api/products/{product_id}", response_model=ProductMessage, dependencies=admin)
async def update_product(product_id: str, payload: ProductUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await catalog.update_product(db, product_id, payload)
    return {"message": "Product updated successfully", "product": product}


@app.delete("/api/products/{product_id}", dependencies=admin)
async def delete_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    await catalog.soft_delete_product(db, product_id)
    return {"message": "Product deleted successfully"}


# ---------- Checkout ----------

@app.post("/api/checkout/create-session", response_model=CheckoutSession)
async def create_checkout_session(
    payload: CheckoutRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    return await checkout.initiate_checkout(db, gateway, payload)


@app.post("/api/checkout/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    # Signature is checked against the raw body, before any JSON parsing
    payload = await request.body()
    await checkout.handle_webhook(db, gateway, payload, stripe_signature)
    return {"received": True}


@app.get("/api/checkout/session/{session_id}")
async def get_checkout_session(
    session_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    return await checkout.get_session_summary(db, gateway, session_id)


# ---------- Orders ----------

@app.get("/api/orders", response_model=OrderPage, dependencies=admin)
async def get_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = "created_at",
    sort_order: SortOrder = SortOrder.DESC,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    items, pagination = await orders.list_orders(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        status=status,
        payment_status=payment_status,
        search=search,
        start_date=start_date,
        end_date=end_date,
    )
    return {"orders": items, "pagination": pagination}


@app.get("/api/orders/stats/summary", dependencies=admin)
async def get_order_stats(timeframe: Timeframe = Timeframe.MONTH, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await orders.summary_stats(db, timeframe)


@app.get("/api/orders/number/{order_number}", response_model=OrderOut)
async def get_order_by_number(
    order_number: str, email: Optional[str] = None, db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await orders.lookup_order(db, order_number, email)


@app.get("/api/orders/{order_id}", response_model=OrderOut, dependencies=admin)
async def get_order(order_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await orders.get_order(db, order_id)


@app.put("/api/orders/{order_id}/status", response_model=OrderMessage, dependencies=admin)
async def update_order_status(order_id: str, payload: StatusUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    order = await orders.update_status(db, order_id, payload)
    return {"message": "Order status updated successfully", "order": order}


@app.put("/api/orders/{order_id}/payment-status", response_model=OrderMessage, dependencies=admin)
async def update_payment_status(
    order_id: str, payload: PaymentStatusUpdate, db: AsyncIOMotorDatabase = Depends(get_db)
):
    order = await orders.update_payment_status(db, order_id, payload)
    return {"message": "Payment status updated successfully", "order": order}


# ---------- Analytics ----------

@app.get("/api/analytics/dashboard", dependencies=admin)
async def get_dashboard(timeframe: Timeframe = Timeframe.MONTH, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await analytics.dashboard(db, timeframe)


@app.get("/api/analytics/sales", dependencies=admin)
async def get_sales(
    timeframe: Timeframe = Timeframe.MONTH,
    group_by: SalesGrouping = SalesGrouping.DAY,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return await analytics.sales_report(db, timeframe, group_by)


@app.get("/api/analytics/products", dependencies=admin)
async def get_product_analytics(timeframe: Timeframe = Timeframe.MONTH, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await analytics.product_report(db, timeframe)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
