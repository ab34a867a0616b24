"""
Checkout orchestration.

A cart is validated against the live catalog and priced server side, then
handed to Stripe as a hosted checkout session. The validated order travels in
the session metadata, so when Stripe later reports the session as completed the
order is rebuilt from that snapshot rather than from the current catalog.

Webhook processing after signature verification never fails the callback:
the money has already moved, and redelivery cannot fix a bad payload. A paid
session whose order could not be written is only visible in the logs and has
to be reconciled by hand against the Stripe dashboard.
"""
from __future__ import annotations
import json
import logging
import random
import time
from typing import Any, Optional
import stripe
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError
from starlette.concurrency import run_in_threadpool

from config import settings
from database import ORDERS, PRODUCTS, create_document, parse_object_id, utcnow
from errors import InvalidIdError, NotFoundError, PaymentGatewayError, ValidationError, WebhookSignatureError
from payments import StripeGateway
from pricing import compute_totals, unit_amount
from schemas import (
    CheckoutRequest,
    CheckoutSession,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ProductLifecycle,
)

logger = logging.getLogger(__name__)

SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 999):03d}"


async def validate_items(db: AsyncIOMotorDatabase, request: CheckoutRequest) -> list[dict[str, Any]]:
    if not request.items:
        raise ValidationError("Items are required")
    if not request.customer_email.strip() or not request.customer_name.strip():
        raise ValidationError("Customer email and name are required")

    # Repeated lines for one product are merged so stock is checked on the total
    requested: dict[str, int] = {}
    for item in request.items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

    validated = []
    for product_id, quantity in requested.items():
        try:
            oid = parse_object_id(product_id, "product")
        except InvalidIdError:
            product = None
        else:
            product = await db[PRODUCTS].find_one({"_id": oid})

        if not product or product.get("lifecycle") != ProductLifecycle.ACTIVE.value:
            raise ValidationError(f"Product {product_id} not found or unavailable")
        stock = int(product.get("stock", 0))
        if stock < quantity:
            raise ValidationError(f"Insufficient stock for {product['title']}. Available: {stock}")

        validated.append({
            "product_id": str(product["_id"]),
            "title": product["title"],
            "price": float(product["price"]),
            "quantity": quantity,
            "image": product.get("image"),
        })
    return validated


def _line_item(name: str, amount: float, quantity: int = 1, image: Optional[str] = None) -> dict[str, Any]:
    product_data: dict[str, Any] = {"name": name}
    if image:
        product_data["images"] = [image]
    return {
        "price_data": {
            "currency": settings.CURRENCY,
            "product_data": product_data,
            "unit_amount": unit_amount(amount),
        },
        "quantity": quantity,
    }


async def initiate_checkout(
    db: AsyncIOMotorDatabase, gateway: StripeGateway, request: CheckoutRequest
) -> CheckoutSession:
    items = await validate_items(db, request)
    totals = compute_totals((i["price"], i["quantity"]) for i in items)

    line_items = [_line_item(i["title"], i["price"], i["quantity"], i["image"]) for i in items]
    if totals.shipping > 0:
        line_items.append(_line_item("Shipping", totals.shipping))
    if totals.tax > 0:
        line_items.append(_line_item("Tax", totals.tax))

    order_data = json.dumps({"items": items, **totals._asdict()}, separators=(",", ":"))
    customer_email = request.customer_email.strip()
    customer_name = request.customer_name.strip()

    try:
        session = await run_in_threadpool(
            gateway.create_checkout_session,
            payment_method_types=["card"],
            line_items=line_items,
            mode="payment",
            success_url=f"{settings.FRONTEND_URL}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.FRONTEND_URL}/cart",
            customer_email=customer_email,
            metadata={
                "customer_name": customer_name,
                "customer_email": customer_email,
                "order_data": order_data,
            },
            shipping_address_collection={"allowed_countries": settings.SHIPPING_COUNTRIES},
        )
    except stripe.StripeError:
        logger.exception("Create checkout session failed")
        raise PaymentGatewayError("creating checkout session")

    logger.info("Created checkout session %s for %s (total %.2f)", session["id"], customer_email, totals.total)
    return CheckoutSession(session_id=session["id"], url=session.get("url"))


def _shipping_address(session: dict[str, Any]) -> Optional[dict[str, Any]]:
    details = session.get("shipping_details") or (session.get("collected_information") or {}).get("shipping_details")
    if not details:
        return None
    return details.get("address")


async def handle_session_completed(db: AsyncIOMotorDatabase, session: dict[str, Any]) -> Optional[dict[str, Any]]:
    session_id = session["id"]
    if await db[ORDERS].find_one({"payment_session_id": session_id}):
        logger.info("Order for session %s already exists, ignoring redelivery", session_id)
        return None

    metadata = session.get("metadata") or {}
    order_data = json.loads(metadata["order_data"])
    order = Order(
        order_number=generate_order_number(),
        customer_email=metadata["customer_email"].lower(),
        customer_name=metadata["customer_name"],
        items=[OrderItem(**item) for item in order_data["items"]],
        subtotal=order_data["subtotal"],
        tax=order_data["tax"],
        shipping=order_data["shipping"],
        total=order_data["total"],
        status=OrderStatus.PROCESSING,
        payment_status=PaymentStatus.PAID,
        payment_session_id=session_id,
        payment_intent_id=session.get("payment_intent"),
        shipping_address=_shipping_address(session),
    )
    try:
        doc = await create_document(db, ORDERS, order.model_dump(mode="json"))
    except DuplicateKeyError:
        logger.info("Order for session %s was created concurrently, ignoring", session_id)
        return None

    for item in order.items:
        result = await db[PRODUCTS].update_one(
            {"_id": parse_object_id(item.product_id, "product"), "stock": {"$gte": item.quantity}},
            {"$inc": {"stock": -item.quantity}, "$set": {"updated_at": utcnow()}},
        )
        if result.modified_count == 0:
            logger.warning(
                "Could not decrement stock of product %s by %d for order %s",
                item.product_id, item.quantity, order.order_number,
            )

    logger.info("Order created successfully: %s", order.order_number)
    return doc


async def _set_payment_status(db: AsyncIOMotorDatabase, payment_intent: dict[str, Any], status: PaymentStatus) -> None:
    result = await db[ORDERS].update_one(
        {"payment_intent_id": payment_intent["id"]},
        {"$set": {"payment_status": status.value, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        logger.debug("No order for payment intent %s", payment_intent["id"])


async def handle_payment_intent_succeeded(db: AsyncIOMotorDatabase, payment_intent: dict[str, Any]) -> None:
    await _set_payment_status(db, payment_intent, PaymentStatus.PAID)


async def handle_payment_failed(db: AsyncIOMotorDatabase, payment_intent: dict[str, Any]) -> None:
    await _set_payment_status(db, payment_intent, PaymentStatus.FAILED)


EVENT_HANDLERS = {
    SESSION_COMPLETED: handle_session_completed,
    PAYMENT_SUCCEEDED: handle_payment_intent_succeeded,
    PAYMENT_FAILED: handle_payment_failed,
}


async def handle_event(db: AsyncIOMotorDatabase, event: dict[str, Any]) -> None:
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug("Unhandled event type: %s", event_type)
        return
    try:
        await handler(db, event["data"]["object"])
    except Exception:
        logger.exception("Error handling %s event %s", event_type, event.get("id"))


async def handle_webhook(
    db: AsyncIOMotorDatabase, gateway: StripeGateway, payload: bytes, sig_header: Optional[str]
) -> None:
    try:
        event = gateway.construct_event(payload, sig_header)
    except WebhookSignatureError as e:
        logger.warning("Webhook signature verification failed: %s", e.reason)
        raise
    logger.info("Received %s event %s", event.get("type"), event.get("id"))
    await handle_event(db, event)


async def get_session_summary(db: AsyncIOMotorDatabase, gateway: StripeGateway, session_id: str) -> dict[str, Any]:
    try:
        session = await run_in_threadpool(gateway.retrieve_session, session_id)
    except stripe.StripeError:
        logger.exception("Retrieve checkout session %s failed", session_id)
        raise PaymentGatewayError("retrieving session")
    if session is None:
        raise NotFoundError("session")

    order = await db[ORDERS].find_one({"payment_session_id": session["id"]})
    return {
        "session": {
            "id": session["id"],
            "payment_status": session.get("payment_status"),
            "customer_email": session.get("customer_email"),
        },
        "order": {
            "order_number": order["order_number"],
            "status": order["status"],
            "total": order["total"],
        } if order else None,
    }
