"""Tests for checkout session creation and Stripe webhook handling."""

import json
from datetime import datetime

import pytest
import stripe
from bson import ObjectId

from conftest import sign


@pytest.fixture
def start_checkout(client):
    def _start(items, email="Jane@Example.com", name="Jane Doe"):
        return client.post(
            "/api/checkout/create-session",
            json={"items": items, "customer_email": email, "customer_name": name},
        )

    return _start


def completed_session(gateway, session_id="cs_test_1", payment_intent="pi_1"):
    """The checkout.session.completed payload Stripe sends for a recorded session."""
    index = int(session_id.rsplit("_", 1)[1]) - 1
    return {
        "id": session_id,
        "object": "checkout.session",
        "payment_intent": payment_intent,
        "metadata": gateway.created[index]["metadata"],
        "shipping_details": {"address": {"line1": "1 Main St", "city": "Springfield", "country": "US"}},
    }


def stock_of(client, admin_headers, product_id):
    data = client.get("/api/products/admin/all", headers=admin_headers).json()
    return next(p["stock"] for p in data["products"] if p["id"] == product_id)


def all_orders(client, admin_headers):
    return client.get("/api/orders", headers=admin_headers).json()["orders"]


class TestCreateSession:
    def test_prices_from_catalog(self, start_checkout, make_product, gateway):
        product = make_product(title="Mug", price=50.0, stock=5)
        response = start_checkout([{"product_id": product["id"], "quantity": 2}])
        assert response.status_code == 200
        assert response.json() == {
            "session_id": "cs_test_1",
            "url": "https://checkout.stripe.test/pay/cs_test_1",
        }

        params = gateway.created[0]
        assert params["mode"] == "payment"
        assert params["customer_email"] == "Jane@Example.com"
        names = [li["price_data"]["product_data"]["name"] for li in params["line_items"]]
        assert names == ["Mug", "Tax"]
        assert params["line_items"][0]["price_data"]["unit_amount"] == 5000
        assert params["line_items"][0]["quantity"] == 2
        assert params["line_items"][1]["price_data"]["unit_amount"] == 800

        order_data = json.loads(params["metadata"]["order_data"])
        assert order_data["subtotal"] == 100.0
        assert order_data["tax"] == 8.0
        assert order_data["shipping"] == 0.0
        assert order_data["total"] == 108.0
        assert order_data["items"] == [{
            "product_id": product["id"],
            "title": "Mug",
            "price": 50.0,
            "quantity": 2,
            "image": product["image"],
        }]

    def test_small_order_pays_shipping(self, start_checkout, make_product, gateway):
        product = make_product(price=20.0)
        start_checkout([{"product_id": product["id"], "quantity": 1}])
        params = gateway.created[0]
        order_data = json.loads(params["metadata"]["order_data"])
        assert (order_data["subtotal"], order_data["tax"], order_data["shipping"], order_data["total"]) == (
            20.0, 1.6, 10.0, 31.6,
        )
        shipping_line = params["line_items"][1]
        assert shipping_line["price_data"]["product_data"]["name"] == "Shipping"
        assert shipping_line["price_data"]["unit_amount"] == 1000

    def test_empty_cart(self, start_checkout, gateway):
        response = start_checkout([])
        assert response.status_code == 400
        assert response.json()["detail"] == "Items are required"
        assert gateway.created == []

    def test_missing_customer(self, start_checkout, make_product, gateway):
        product = make_product()
        response = start_checkout([{"product_id": product["id"], "quantity": 1}], email="", name="")
        assert response.status_code == 400
        assert response.json()["detail"] == "Customer email and name are required"
        assert gateway.created == []

    def test_unknown_product(self, start_checkout, make_product, gateway):
        product = make_product()
        missing = str(ObjectId())
        response = start_checkout([
            {"product_id": product["id"], "quantity": 1},
            {"product_id": missing, "quantity": 1},
        ])
        assert response.status_code == 400
        assert response.json()["detail"] == f"Product {missing} not found or unavailable"
        assert gateway.created == []

    def test_malformed_product_id(self, start_checkout, gateway):
        response = start_checkout([{"product_id": "garbage", "quantity": 1}])
        assert response.status_code == 400
        assert gateway.created == []

    def test_inactive_product(self, client, admin_headers, start_checkout, make_product, gateway):
        product = make_product()
        client.delete(f"/api/products/{product['id']}", headers=admin_headers)
        response = start_checkout([{"product_id": product["id"], "quantity": 1}])
        assert response.status_code == 400
        assert "not found or unavailable" in response.json()["detail"]
        assert gateway.created == []

    def test_insufficient_stock(self, start_checkout, make_product, gateway):
        product = make_product(title="Lamp", stock=2)
        response = start_checkout([{"product_id": product["id"], "quantity": 3}])
        assert response.status_code == 400
        assert response.json()["detail"] == "Insufficient stock for Lamp. Available: 2"
        assert gateway.created == []

    def test_repeated_lines_count_against_stock_together(self, start_checkout, make_product, gateway):
        product = make_product(title="Lamp", stock=5)
        line = {"product_id": product["id"], "quantity": 3}
        response = start_checkout([line, line])
        assert response.status_code == 400
        assert response.json()["detail"] == "Insufficient stock for Lamp. Available: 5"
        assert gateway.created == []

    def test_repeated_lines_are_merged(
        self, client, admin_headers, start_checkout, make_product, gateway, send_event
    ):
        product = make_product(title="Lamp", price=20.0, stock=5)
        response = start_checkout([
            {"product_id": product["id"], "quantity": 2},
            {"product_id": product["id"], "quantity": 3},
        ])
        assert response.status_code == 200
        line_items = gateway.created[0]["line_items"]
        assert line_items[0]["quantity"] == 5
        assert [li["price_data"]["product_data"]["name"] for li in line_items] == ["Lamp", "Tax"]

        send_event("checkout.session.completed", completed_session(gateway))
        [order] = all_orders(client, admin_headers)
        assert [(i["product_id"], i["quantity"]) for i in order["items"]] == [(product["id"], 5)]
        assert stock_of(client, admin_headers, product["id"]) == 0

    def test_gateway_charge_matches_recorded_subtotal(self, start_checkout, make_product, gateway):
        product = make_product(price=0.125, stock=5)
        start_checkout([{"product_id": product["id"], "quantity": 2}])
        params = gateway.created[0]
        line = params["line_items"][0]
        charged = line["price_data"]["unit_amount"] * line["quantity"]
        order_data = json.loads(params["metadata"]["order_data"])
        assert charged == 26
        assert round(order_data["subtotal"] * 100) == charged

    def test_zero_quantity_rejected(self, start_checkout, make_product):
        product = make_product()
        response = start_checkout([{"product_id": product["id"], "quantity": 0}])
        assert response.status_code == 422

    def test_gateway_failure(self, start_checkout, make_product, gateway, monkeypatch):
        def boom(**params):
            raise stripe.APIConnectionError("network down")

        monkeypatch.setattr(gateway, "create_checkout_session", boom)
        product = make_product()
        response = start_checkout([{"product_id": product["id"], "quantity": 1}])
        assert response.status_code == 500
        assert response.json()["detail"] == "Server error creating checkout session"


class TestWebhookSignature:
    def test_bad_signature_rejected_before_processing(self, client, admin_headers, start_checkout, make_product, gateway):
        product = make_product(stock=5)
        start_checkout([{"product_id": product["id"], "quantity": 1}])
        payload = json.dumps({
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {"object": completed_session(gateway)},
        })

        response = client.post(
            "/api/checkout/webhook",
            content=payload,
            headers={"Stripe-Signature": sign(payload, secret="whsec_wrong")},
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "WebhookSignatureError"
        assert all_orders(client, admin_headers) == []
        assert stock_of(client, admin_headers, product["id"]) == 5

    def test_missing_signature(self, client):
        response = client.post("/api/checkout/webhook", content=b"{}")
        assert response.status_code == 400

    def test_tampered_body(self, client):
        payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}})
        header = sign(payload)
        response = client.post(
            "/api/checkout/webhook",
            content=payload.replace("pi_1", "pi_2"),
            headers={"Stripe-Signature": header},
        )
        assert response.status_code == 400

    def test_stale_timestamp(self, client):
        payload = json.dumps({"id": "evt_1", "type": "ping", "data": {"object": {}}})
        response = client.post(
            "/api/checkout/webhook",
            content=payload,
            headers={"Stripe-Signature": sign(payload, timestamp=1_000_000)},
        )
        assert response.status_code == 400


class TestSessionCompleted:
    def test_creates_order_and_decrements_stock(
        self, client, admin_headers, start_checkout, make_product, gateway, send_event
    ):
        mug = make_product(title="Mug", price=50.0, stock=5)
        lamp = make_product(title="Lamp", price=10.0, stock=4)
        start_checkout([
            {"product_id": mug["id"], "quantity": 2},
            {"product_id": lamp["id"], "quantity": 3},
        ])

        response = send_event("checkout.session.completed", completed_session(gateway))
        assert response.status_code == 200
        assert response.json() == {"received": True}

        orders = all_orders(client, admin_headers)
        assert len(orders) == 1
        order = orders[0]
        assert order["order_number"].startswith("ORD-")
        assert order["customer_email"] == "jane@example.com"
        assert order["customer_name"] == "Jane Doe"
        assert order["status"] == "processing"
        assert order["payment_status"] == "paid"
        assert order["payment_session_id"] == "cs_test_1"
        assert order["payment_intent_id"] == "pi_1"
        assert order["shipping_address"]["city"] == "Springfield"
        assert (order["subtotal"], order["tax"], order["shipping"], order["total"]) == (130.0, 10.4, 0.0, 140.4)
        assert [(i["title"], i["quantity"]) for i in order["items"]] == [("Mug", 2), ("Lamp", 3)]

        assert stock_of(client, admin_headers, mug["id"]) == 3
        assert stock_of(client, admin_headers, lamp["id"]) == 1

    def test_uses_snapshot_prices(self, client, admin_headers, start_checkout, make_product, gateway, send_event):
        product = make_product(price=20.0, stock=5)
        start_checkout([{"product_id": product["id"], "quantity": 1}])
        client.put(f"/api/products/{product['id']}", json={"price": 99.0}, headers=admin_headers)

        send_event("checkout.session.completed", completed_session(gateway))
        order = all_orders(client, admin_headers)[0]
        assert order["items"][0]["price"] == 20.0
        assert order["total"] == 31.6

    def test_redelivery_is_a_no_op(self, client, admin_headers, start_checkout, make_product, gateway, send_event):
        product = make_product(stock=5)
        start_checkout([{"product_id": product["id"], "quantity": 5}])
        session = completed_session(gateway)

        send_event("checkout.session.completed", session, event_id="evt_1")
        assert stock_of(client, admin_headers, product["id"]) == 0

        response = send_event("checkout.session.completed", session, event_id="evt_1")
        assert response.status_code == 200
        assert stock_of(client, admin_headers, product["id"]) == 0
        assert len(all_orders(client, admin_headers)) == 1

    def test_stock_never_goes_negative(self, client, admin_headers, start_checkout, make_product, gateway, send_event):
        product = make_product(stock=3)
        start_checkout([{"product_id": product["id"], "quantity": 3}])
        start_checkout([{"product_id": product["id"], "quantity": 2}])

        send_event("checkout.session.completed", completed_session(gateway, "cs_test_1", "pi_1"))
        send_event("checkout.session.completed", completed_session(gateway, "cs_test_2", "pi_2"))

        assert stock_of(client, admin_headers, product["id"]) == 0
        assert len(all_orders(client, admin_headers)) == 2

    def test_malformed_metadata_is_acknowledged(self, client, admin_headers, send_event):
        response = send_event(
            "checkout.session.completed",
            {"id": "cs_broken", "payment_intent": "pi_x", "metadata": {"order_data": "{not json"}},
        )
        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert all_orders(client, admin_headers) == []

    def test_soft_deleted_product_stays_on_order(
        self, client, admin_headers, start_checkout, make_product, gateway, send_event
    ):
        product = make_product(title="Vintage Mug", stock=2)
        start_checkout([{"product_id": product["id"], "quantity": 1}])
        send_event("checkout.session.completed", completed_session(gateway))
        client.delete(f"/api/products/{product['id']}", headers=admin_headers)

        order = all_orders(client, admin_headers)[0]
        assert order["items"][0]["product_id"] == product["id"]
        assert order["items"][0]["title"] == "Vintage Mug"
        assert client.get(f"/api/products/{product['id']}").status_code == 404


class TestPaymentIntentEvents:
    @pytest.fixture
    def order_id(self, insert_order):
        return insert_order(datetime(2024, 5, 1), payment_intent_id="pi_42", payment_status="pending")

    def order(self, client, admin_headers, order_id):
        return client.get(f"/api/orders/{order_id}", headers=admin_headers).json()

    def test_succeeded_is_idempotent(self, client, admin_headers, order_id, send_event):
        for _ in range(2):
            response = send_event("payment_intent.succeeded", {"id": "pi_42"})
            assert response.status_code == 200
            assert self.order(client, admin_headers, order_id)["payment_status"] == "paid"
        assert len(all_orders(client, admin_headers)) == 1

    def test_failed(self, client, admin_headers, order_id, send_event):
        send_event("payment_intent.payment_failed", {"id": "pi_42"})
        assert self.order(client, admin_headers, order_id)["payment_status"] == "failed"

    def test_unknown_intent_is_ignored(self, client, admin_headers, order_id, send_event):
        response = send_event("payment_intent.payment_failed", {"id": "pi_other"})
        assert response.status_code == 200
        assert self.order(client, admin_headers, order_id)["payment_status"] == "pending"

    def test_unhandled_event_type(self, send_event):
        response = send_event("customer.created", {"id": "cus_1"})
        assert response.status_code == 200
        assert response.json() == {"received": True}


class TestSessionSummary:
    def test_summary_with_order(self, client, start_checkout, make_product, gateway, send_event):
        product = make_product(price=20.0)
        start_checkout([{"product_id": product["id"], "quantity": 1}])
        send_event("checkout.session.completed", completed_session(gateway))

        data = client.get("/api/checkout/session/cs_test_1").json()
        assert data["session"] == {
            "id": "cs_test_1",
            "payment_status": "unpaid",
            "customer_email": "Jane@Example.com",
        }
        assert data["order"]["status"] == "processing"
        assert data["order"]["total"] == 31.6
        assert data["order"]["order_number"].startswith("ORD-")

    def test_summary_without_order(self, client, start_checkout, make_product):
        product = make_product()
        start_checkout([{"product_id": product["id"], "quantity": 1}])
        data = client.get("/api/checkout/session/cs_test_1").json()
        assert data["order"] is None

    def test_unknown_session(self, client):
        response = client.get("/api/checkout/session/cs_missing")
        assert response.status_code == 404
        assert response.json()["detail"] == "Session not found"
