"""Stripe Checkout implementation of the payment provider interface."""
import json
from typing import Mapping, Optional

import stripe

from shop_payments.config import StripeSettings
from shop_payments.errors import ProviderError, SignatureInvalid
from shop_payments.logging_config import get_logger
from shop_payments.providers.base import (
    CheckoutSession,
    PaymentProvider,
    WebhookEvent,
    WebhookEventType,
    get_header,
    idempotency_key,
)

logger = get_logger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"

EVT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVT_PI_SUCCEEDED = "payment_intent.succeeded"
EVT_PI_FAILED = "payment_intent.payment_failed"

STRIPE_EVENT_TYPES = {
    EVT_CHECKOUT_COMPLETED: WebhookEventType.CHECKOUT_COMPLETED,
    EVT_PI_SUCCEEDED: WebhookEventType.PAYMENT_SUCCEEDED,
    EVT_PI_FAILED: WebhookEventType.PAYMENT_FAILED,
}


class StripeProvider(PaymentProvider):
    name = "stripe"

    def __init__(self, settings: StripeSettings):
        self.settings = settings
        # A timeout surfaces as APIConnectionError.
        self.client = stripe.StripeClient(
            settings.secret_key,
            http_client=stripe.RequestsClient(timeout=settings.timeout_seconds),
        )

    def create_checkout(self, payment, order) -> CheckoutSession:
        product_data = {"name": f"ORDER #{order.id.replace('-', '')}"}
        image_url = next((item.get("image_url") for item in order.items or [] if item.get("image_url")), None)
        if image_url:
            product_data["images"] = [image_url]

        metadata = {
            "paymentId": payment.id,
            "orderId": order.id,
            "userId": order.user_id,
        }
        params = {
            "mode": "payment",
            "success_url": self.settings.success_url,
            "cancel_url": self.settings.cancel_url,
            "payment_method_types": ["card"],
            "line_items": [{
                "quantity": 1,
                "price_data": {
                    "currency": payment.currency.lower(),
                    "unit_amount": payment.amount,
                    "product_data": product_data,
                },
            }],
            "metadata": metadata,
            # PaymentIntent events carry the intent id, not the session id.
            "payment_intent_data": {"metadata": metadata},
        }
        try:
            session = self.client.checkout.sessions.create(
                params=params,
                options={"idempotency_key": idempotency_key(payment.id)},
            )
        except stripe.StripeError as e:
            logger.error("stripe_checkout_failed", payment_id=payment.id, error=str(e))
            raise ProviderError(f"Stripe checkout session creation failed: {e}") from e

        return CheckoutSession(checkout_url=session.url, provider_payment_id=session.id)

    def parse_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> Optional[WebhookEvent]:
        sig_header = get_header(headers, SIGNATURE_HEADER)
        if not sig_header:
            raise SignatureInvalid("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(raw_body, sig_header, self.settings.webhook_secret)
            raw_json = raw_body.decode("utf-8")
            event = json.loads(raw_json)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(f"Invalid signature: {e}") from e
        except ValueError as e:
            raise SignatureInvalid(f"Invalid payload: {e}") from e
        if not isinstance(event, dict) or not event.get("id"):
            raise SignatureInvalid("Invalid payload: expected an event with an id")

        raw_type = event.get("type")
        event_type = STRIPE_EVENT_TYPES.get(raw_type)
        if event_type is None:
            logger.info("stripe_event_unhandled", event_id=event.get("id"), event_type=raw_type)
            return None

        obj = (event.get("data") or {}).get("object") or {}
        if event_type is WebhookEventType.CHECKOUT_COMPLETED:
            amount = obj.get("amount_total") or 0
        else:
            amount = obj.get("amount") or 0

        return WebhookEvent(
            id=event["id"],
            type=event_type,
            raw_type=raw_type,
            provider_payment_id=obj.get("id", ""),
            amount=int(amount),
            currency=obj.get("currency") or "vnd",
            raw_json=raw_json,
            metadata_payment_id=(obj.get("metadata") or {}).get("paymentId"),
        )
