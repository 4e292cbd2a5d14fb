from functools import lru_cache
from typing import Dict, List

from shop_payments.config import load_mock_settings, load_stripe_settings
from shop_payments.errors import UnsupportedProvider
from shop_payments.logging_config import get_logger
from shop_payments.providers.base import (
    CheckoutSession,
    PaymentProvider,
    WebhookEvent,
    WebhookEventType,
)
from shop_payments.providers.mock_provider import MockProvider
from shop_payments.providers.stripe_provider import StripeProvider

logger = get_logger(__name__)

DEFAULT_PROVIDER = "stripe"

__all__ = [
    "CheckoutSession",
    "DEFAULT_PROVIDER",
    "MockProvider",
    "PaymentProvider",
    "ProviderRegistry",
    "StripeProvider",
    "WebhookEvent",
    "WebhookEventType",
    "build_registry",
    "get_provider_registry",
]


class ProviderRegistry:
    """Provider tag -> configured adapter."""

    def __init__(self, providers: Dict[str, PaymentProvider]):
        self._providers = {name.lower(): provider for name, provider in providers.items()}

    def get(self, name: str) -> PaymentProvider:
        provider = self._providers.get((name or "").lower())
        if provider is None:
            raise UnsupportedProvider(name)
        return provider

    def names(self) -> List[str]:
        return sorted(self._providers)


def build_registry() -> ProviderRegistry:
    providers: Dict[str, PaymentProvider] = {}

    stripe_settings = load_stripe_settings()
    if stripe_settings:
        providers[StripeProvider.name] = StripeProvider(stripe_settings)
    else:
        logger.warning("stripe_provider_disabled", reason="STRIPE_SECRET_KEY or STRIPE_WEBHOOK_SECRET not set")

    mock_settings = load_mock_settings()
    if mock_settings:
        providers[MockProvider.name] = MockProvider(mock_settings)

    return ProviderRegistry(providers)


@lru_cache()
def get_provider_registry() -> ProviderRegistry:
    return build_registry()
