"""
Payment provider interface.

Every processor integration implements the same two operations: open a hosted
checkout session for a payment, and verify + normalize an inbound webhook.
"""
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional


class WebhookEventType(str, enum.Enum):
    """Webhook types the reconciliation flow acts on."""
    CHECKOUT_COMPLETED = "checkout_completed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"


@dataclass(frozen=True)
class CheckoutSession:
    checkout_url: str
    provider_payment_id: str


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: WebhookEventType
    raw_type: str
    provider_payment_id: str
    amount: int          # 0 when the provider did not report one
    currency: str
    raw_json: str
    # Local payment id echoed back through provider metadata, when present.
    metadata_payment_id: Optional[str] = None


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def idempotency_key(payment_id: str) -> str:
    return f"pay_{payment_id.replace('-', '')}"


class PaymentProvider(ABC):
    """Base adapter for payment processors."""

    name: str = "unknown"

    @abstractmethod
    def create_checkout(self, payment, order) -> CheckoutSession:
        """
        Open a hosted checkout session for ``payment.amount``.

        Implementations attach payment/order/user ids as metadata and derive
        their idempotency key from ``payment.id``.

        Raises:
            ProviderError: transport failure, timeout or processor rejection.
        """

    @abstractmethod
    def parse_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> Optional[WebhookEvent]:
        """
        Verify the webhook signature and normalize the event.

        Returns None for event types the service does not handle.

        Raises:
            SignatureInvalid: the payload's authenticity could not be proven.
        """

    def __repr__(self):
        return f"<{self.__class__.__name__}(provider={self.name})>"
