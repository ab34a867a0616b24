"""Pytest fixtures for storefront tests."""

import asyncio
import hashlib
import hmac
import json
import time
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from config import settings
from database import get_db
from main import app
from payments import StripeGateway, get_gateway

ADMIN_TOKEN = "test-admin-token"
WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(StripeGateway):
    """Records session requests instead of calling Stripe; signature checks stay real."""

    def __init__(self):
        super().__init__("sk_test", WEBHOOK_SECRET)
        self.created = []
        self.sessions = {}

    def create_checkout_session(self, **params):
        self.created.append(params)
        session_id = f"cs_test_{len(self.created)}"
        self.sessions[session_id] = {
            "id": session_id,
            "payment_status": "unpaid",
            "customer_email": params.get("customer_email"),
        }
        return {"id": session_id, "url": f"https://checkout.stripe.test/pay/{session_id}"}

    def retrieve_session(self, session_id):
        return self.sessions.get(session_id)


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def run():
    """Run a coroutine to completion from a synchronous test."""
    return asyncio.run


@pytest.fixture
def db():
    return AsyncMongoMockClient()["storefront_test"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", ADMIN_TOKEN)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def make_product(client, admin_headers):
    """Create a product through the admin API and return its JSON."""

    def _make(**overrides):
        data = {
            "title": "Ceramic Mug",
            "description": "Handmade stoneware mug.",
            "price": 20.0,
            "category": "Home & Kitchen",
            "stock": 10,
        }
        data.update(overrides)
        response = client.post("/api/products", json=data, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["product"]

    return _make


@pytest.fixture
def insert_order(db, run):
    """Insert an order document directly, bypassing checkout."""
    counter = {"n": 0}

    def _insert(created_at: datetime, total: float = 100.0, **fields):
        counter["n"] += 1
        n = counter["n"]
        doc = {
            "order_number": f"ORD-TEST-{n:03d}",
            "customer_email": f"customer{n}@example.com",
            "customer_name": f"Customer {n}",
            "items": [],
            "subtotal": total,
            "tax": 0.0,
            "shipping": 0.0,
            "total": total,
            "status": "processing",
            "payment_status": "paid",
            "payment_session_id": f"cs_seed_{n}",
            "payment_intent_id": f"pi_seed_{n}",
            "created_at": created_at,
            "updated_at": created_at,
        }
        doc.update(fields)
        result = run(db["order"].insert_one(doc))
        return str(result.inserted_id)

    return _insert


@pytest.fixture
def send_event(client):
    """Post a signed webhook event."""

    def _send(event_type: str, obj: dict, event_id: str = "evt_test"):
        payload = json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})
        return client.post(
            "/api/checkout/webhook",
            content=payload,
            headers={"Stripe-Signature": sign(payload), "Content-Type": "application/json"},
        )

    return _send
