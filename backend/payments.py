"""Stripe access for the checkout flow."""
from __future__ import annotations
import json
import logging
from typing import Any, Optional
import stripe

from config import settings
from errors import WebhookSignatureError

logger = logging.getLogger(__name__)


class StripeGateway:
    """
    Thin wrapper over the Stripe client.

    Network calls return plain dicts with only the fields the storefront reads,
    so the rest of the code never depends on Stripe's object model.
    """

    def __init__(self, api_key: str, webhook_secret: str):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_checkout_session(self, **params: Any) -> dict[str, Any]:
        session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        return {"id": session.id, "url": session.url}

    def retrieve_session(self, session_id: str) -> Optional[dict[str, Any]]:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.InvalidRequestError:
            return None
        return {
            "id": session.id,
            "payment_status": session.payment_status,
            "customer_email": session.customer_email,
        }

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> dict[str, Any]:
        """Verify the signature on the raw body, then decode it."""
        if not sig_header:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, sig_header, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise WebhookSignatureError(str(e))
        try:
            return json.loads(body)
        except ValueError:
            raise WebhookSignatureError("Invalid payload")


def get_gateway() -> StripeGateway:
    return StripeGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET)
