import json

import pytest
import stripe

from conftest import (
    MOCK_WEBHOOK_SECRET,
    checkout_completed,
    make_order,
    mock_event,
    payment_intent,
    stripe_event,
    stripe_signature,
)
from shop_payments.config import StripeSettings
from shop_payments.errors import ProviderError, SignatureInvalid, UnsupportedProvider
from shop_payments.models import Payment
from shop_payments.providers import ProviderRegistry, StripeProvider, WebhookEventType


def _payment(order, amount=500000):
    return Payment(
        id="3f1c2a9e-0000-4000-8000-000000000001",
        order_id=order.id,
        provider="stripe",
        amount=amount,
        currency="VND",
        status="pending",
    )


def test_stripe_create_checkout(db, stripe_provider, mocker):
    order = make_order(db, 500000)
    session = mocker.Mock()
    session.id = "cs_test_1"
    session.url = "https://checkout.stripe.test/cs_test_1"
    create = mocker.patch("stripe.checkout.SessionService.create", return_value=session)

    result = stripe_provider.create_checkout(_payment(order), order)

    assert result.provider_payment_id == "cs_test_1"
    assert result.checkout_url == "https://checkout.stripe.test/cs_test_1"

    params = create.call_args.kwargs["params"]
    assert create.call_args.kwargs["options"] == {"idempotency_key": "pay_3f1c2a9e000040008000000000000001"}
    assert params["mode"] == "payment"
    line = params["line_items"][0]
    assert line["price_data"]["unit_amount"] == 500000
    assert line["price_data"]["currency"] == "vnd"
    assert line["price_data"]["product_data"]["name"] == f"ORDER #{order.id.replace('-', '')}"
    assert params["metadata"] == {
        "paymentId": "3f1c2a9e-0000-4000-8000-000000000001",
        "orderId": order.id,
        "userId": order.user_id,
    }


def test_stripe_provider_keeps_its_own_http_client():
    before = stripe.default_http_client

    fast = StripeProvider(StripeSettings("sk_test_a", "whsec_a", "https://s", "https://c", timeout_seconds=1))
    slow = StripeProvider(StripeSettings("sk_test_b", "whsec_b", "https://s", "https://c", timeout_seconds=60))

    assert stripe.default_http_client is before
    assert fast.client is not slow.client


def test_stripe_create_checkout_wraps_stripe_errors(db, stripe_provider, mocker):
    order = make_order(db, 500000)
    mocker.patch(
        "stripe.checkout.SessionService.create",
        side_effect=stripe.APIConnectionError("Request timed out"),
    )

    with pytest.raises(ProviderError):
        stripe_provider.create_checkout(_payment(order), order)


def test_stripe_parse_checkout_completed(stripe_provider):
    payload = checkout_completed("evt_1", "cs_test_1", 500000)

    evt = stripe_provider.parse_webhook({"Stripe-Signature": stripe_signature(payload)}, payload)

    assert evt.id == "evt_1"
    assert evt.type is WebhookEventType.CHECKOUT_COMPLETED
    assert evt.raw_type == "checkout.session.completed"
    assert evt.provider_payment_id == "cs_test_1"
    assert evt.amount == 500000
    assert evt.currency == "vnd"
    assert json.loads(evt.raw_json)["id"] == "evt_1"


def test_stripe_parse_payment_intent_failed_uses_metadata(stripe_provider):
    payload = payment_intent(
        "evt_2", "payment_intent.payment_failed", "pi_1", 500000, metadata={"paymentId": "local-1"},
    )

    evt = stripe_provider.parse_webhook({"stripe-signature": stripe_signature(payload)}, payload)

    assert evt.type is WebhookEventType.PAYMENT_FAILED
    assert evt.provider_payment_id == "pi_1"
    assert evt.metadata_payment_id == "local-1"


def test_stripe_parse_missing_amount_is_zero(stripe_provider):
    payload = stripe_event("evt_3", "checkout.session.completed", {"id": "cs_test_1", "amount_total": None})

    evt = stripe_provider.parse_webhook({"Stripe-Signature": stripe_signature(payload)}, payload)

    assert evt.amount == 0
    assert evt.currency == "vnd"


def test_stripe_parse_unhandled_type_returns_none(stripe_provider):
    payload = stripe_event("evt_4", "customer.created", {"id": "cus_1"})

    assert stripe_provider.parse_webhook({"Stripe-Signature": stripe_signature(payload)}, payload) is None


@pytest.mark.parametrize("headers", [
    {},
    {"Stripe-Signature": "t=1,v1=deadbeef"},
])
def test_stripe_parse_rejects_bad_signature(stripe_provider, headers):
    payload = checkout_completed("evt_5", "cs_test_1", 500000)

    with pytest.raises(SignatureInvalid):
        stripe_provider.parse_webhook(headers, payload)


def test_stripe_parse_rejects_signature_from_other_secret(stripe_provider):
    payload = checkout_completed("evt_6", "cs_test_1", 500000)
    headers = {"Stripe-Signature": stripe_signature(payload, secret="whsec_someone_else")}

    with pytest.raises(SignatureInvalid):
        stripe_provider.parse_webhook(headers, payload)


def test_mock_checkout_is_idempotent_per_payment(db, mock_provider):
    order = make_order(db, 500000)
    payment = _payment(order)

    first = mock_provider.create_checkout(payment, order)
    second = mock_provider.create_checkout(payment, order)

    assert first == second
    assert first.checkout_url.startswith("https://pay.test/mock/")
    assert len(mock_provider.sessions) == 1


def test_mock_checkout_failure(db, mock_provider):
    order = make_order(db, 500000)
    mock_provider.fail_with = "processor down"

    with pytest.raises(ProviderError):
        mock_provider.create_checkout(_payment(order), order)
    assert mock_provider.sessions == {}


def test_mock_parse_webhook(mock_provider):
    payload = mock_event("evt_m1", "payment.succeeded", "mock_sess_1", 20000)

    evt = mock_provider.parse_webhook({"X-Mock-Signature": mock_provider.sign(payload)}, payload)

    assert evt.type is WebhookEventType.PAYMENT_SUCCEEDED
    assert evt.provider_payment_id == "mock_sess_1"
    assert evt.amount == 20000


def test_mock_parse_webhook_rejects_bad_signature(mock_provider):
    payload = mock_event("evt_m2", "payment.succeeded", "mock_sess_1")

    with pytest.raises(SignatureInvalid):
        mock_provider.parse_webhook({"X-Mock-Signature": "0" * 64}, payload)


def test_mock_parse_webhook_rejects_non_ascii_signature(mock_provider):
    payload = mock_event("evt_m3", "payment.succeeded", "mock_sess_1")

    with pytest.raises(SignatureInvalid):
        mock_provider.parse_webhook({"X-Mock-Signature": "\xff" * 64}, payload)


@pytest.mark.parametrize("payload", [
    b'{"type": "payment.succeeded", "payment_id": "mock_sess_1"}',
    b"\xff\xfe not utf-8",
    b"[1, 2, 3]",
    b'{"id": "evt_m4", "type": "payment.succeeded", "amount": "lots"}',
])
def test_mock_parse_webhook_rejects_malformed_signed_body(mock_provider, payload):
    with pytest.raises(SignatureInvalid):
        mock_provider.parse_webhook({"X-Mock-Signature": mock_provider.sign(payload)}, payload)


def test_mock_signature_uses_shared_secret(mock_provider):
    import hashlib
    import hmac

    payload = b"{}"
    expected = hmac.new(MOCK_WEBHOOK_SECRET.encode(), payload, hashlib.sha256).hexdigest()

    assert mock_provider.sign(payload) == expected


def test_registry_lookup(stripe_provider, mock_provider):
    registry = ProviderRegistry({"stripe": stripe_provider, "mock": mock_provider})

    assert registry.get("STRIPE") is stripe_provider
    assert registry.names() == ["mock", "stripe"]
    with pytest.raises(UnsupportedProvider):
        registry.get("payos")
