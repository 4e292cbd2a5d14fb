"""In-memory provider for local development and tests."""
import hashlib
import hmac
import json
from typing import Dict, List, Mapping, Optional

from shop_payments.config import MockProviderSettings
from shop_payments.errors import ProviderError, SignatureInvalid
from shop_payments.providers.base import (
    CheckoutSession,
    PaymentProvider,
    WebhookEvent,
    WebhookEventType,
    get_header,
    idempotency_key,
)

SIGNATURE_HEADER = "X-Mock-Signature"

MOCK_EVENT_TYPES = {
    "checkout.completed": WebhookEventType.CHECKOUT_COMPLETED,
    "payment.succeeded": WebhookEventType.PAYMENT_SUCCEEDED,
    "payment.failed": WebhookEventType.PAYMENT_FAILED,
}


class MockProvider(PaymentProvider):
    """
    Hosted-checkout stand-in.

    Sessions are kept in memory and keyed by idempotency key, so a retried
    call for the same payment returns the same session. Webhooks are flat JSON
    bodies (``id``, ``type``, ``payment_id``, ``amount``, ``currency``) signed
    with a hex HMAC-SHA256 of the raw body.
    """

    name = "mock"

    def __init__(self, settings: MockProviderSettings):
        self.settings = settings
        self.sessions: Dict[str, CheckoutSession] = {}
        self.calls: List[str] = []
        self.fail_with: Optional[str] = None

    def create_checkout(self, payment, order) -> CheckoutSession:
        key = idempotency_key(payment.id)
        self.calls.append(key)
        if self.fail_with:
            raise ProviderError(self.fail_with)

        if key not in self.sessions:
            session_id = f"mock_sess_{len(self.sessions) + 1}_{key[4:16]}"
            self.sessions[key] = CheckoutSession(
                checkout_url=f"{self.settings.checkout_base_url}/{session_id}",
                provider_payment_id=session_id,
            )
        return self.sessions[key]

    def sign(self, raw_body: bytes) -> str:
        return hmac.new(self.settings.webhook_secret.encode(), raw_body, hashlib.sha256).hexdigest()

    def parse_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> Optional[WebhookEvent]:
        signature = get_header(headers, SIGNATURE_HEADER)
        # Header values arrive latin-1 decoded; compare raw bytes.
        if not signature or not hmac.compare_digest(
            self.sign(raw_body).encode(), signature.encode("latin-1", "replace")
        ):
            raise SignatureInvalid("Invalid mock signature")

        try:
            raw_json = raw_body.decode("utf-8")
            event = json.loads(raw_json)
        except ValueError as e:
            raise SignatureInvalid(f"Invalid payload: {e}") from e
        if not isinstance(event, dict) or not event.get("id"):
            raise SignatureInvalid("Invalid payload: expected an object with an id")
        try:
            amount = int(event.get("amount") or 0)
        except (TypeError, ValueError) as e:
            raise SignatureInvalid(f"Invalid payload amount: {e}") from e

        raw_type = str(event.get("type") or "")
        event_type = MOCK_EVENT_TYPES.get(raw_type)
        if event_type is None:
            return None

        return WebhookEvent(
            id=str(event["id"]),
            type=event_type,
            raw_type=raw_type,
            provider_payment_id=str(event.get("payment_id") or ""),
            amount=amount,
            currency=event.get("currency") or "vnd",
            raw_json=raw_json,
        )
