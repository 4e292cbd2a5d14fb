"""
Payment creation and webhook reconciliation.

Nothing here keeps state between calls: every decision is re-read from the
database inside the caller's session, and every committed row is the source of
truth for the next request.
"""
import enum
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shop_payments.errors import Forbidden, InvalidState, NotFound
from shop_payments.logging_config import get_logger
from shop_payments.models import (
    UNMAPPED_PAYMENT_ID,
    Order,
    OrderStatus,
    Payment,
    PaymentEvent,
    PaymentStatus,
    new_id,
    utcnow,
)
from shop_payments.money import CURRENCY, chargeable_amount
from shop_payments.providers.base import PaymentProvider, WebhookEvent, WebhookEventType

logger = get_logger(__name__)


class WebhookOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"                  # verified but not a handled type
    UNMAPPED = "unmapped"                # no local payment
    ORPHANED = "orphaned"                # payment without its order
    AMOUNT_MISMATCH = "amount_mismatch"


def create_payment(db: Session, provider: PaymentProvider, user_id: str, order_id: str) -> Payment:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user_id:
        raise Forbidden("Order belongs to another user")
    if order.status != OrderStatus.PENDING.value:
        raise InvalidState("Order is not pending")

    amount = chargeable_amount(order.total_amount)

    payment = Payment(
        id=new_id(),
        order_id=order.id,
        provider=provider.name,
        amount=amount,
        currency=CURRENCY,
        status=PaymentStatus.PENDING.value,
    )

    # Remote session first; a failure here leaves nothing behind locally.
    session = provider.create_checkout(payment, order)
    payment.provider_payment_id = session.provider_payment_id
    payment.checkout_url = session.checkout_url

    db.add(payment)
    db.commit()
    db.refresh(payment)

    logger.info(
        "payment_created",
        payment_id=payment.id,
        order_id=order.id,
        provider=payment.provider,
        amount=amount,
    )
    return payment


def get_payment_for_user(db: Session, payment_id: str, user_id: str) -> Payment:
    payment = db.get(Payment, payment_id)
    if payment is None:
        raise NotFound("Payment not found")
    order = db.get(Order, payment.order_id)
    if order is None or order.user_id != user_id:
        raise Forbidden("Payment belongs to another user")
    return payment


def _find_payment(db: Session, provider: PaymentProvider, evt: WebhookEvent) -> Optional[Payment]:
    payment = (
        db.query(Payment)
        .filter(
            Payment.provider == provider.name,
            Payment.provider_payment_id == evt.provider_payment_id,
        )
        .with_for_update()
        .first()
    )
    if payment is None and evt.metadata_payment_id:
        payment = (
            db.query(Payment)
            .filter(Payment.id == evt.metadata_payment_id, Payment.provider == provider.name)
            .with_for_update()
            .first()
        )
    return payment


def _commit(db: Session, evt: WebhookEvent) -> bool:
    """Commit the pending writes. Returns False when a concurrent delivery won the event id."""
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        exists = db.query(PaymentEvent.id).filter(PaymentEvent.provider_event_id == evt.id).first()
        if exists is None:
            raise
        logger.info("webhook_duplicate_on_commit", event_id=evt.id)
        return False
    return True


def handle_webhook(
    db: Session,
    provider: PaymentProvider,
    headers: Mapping[str, str],
    raw_body: bytes,
) -> WebhookOutcome:
    """
    Reconcile one webhook delivery.

    Raises SignatureInvalid when the payload cannot be authenticated; in that
    case nothing is written. Every other business outcome is returned, not
    raised, so the caller can acknowledge the delivery. Database errors
    propagate so the provider redelivers.
    """
    logger.info("webhook_received", provider=provider.name, length=len(raw_body))

    evt = provider.parse_webhook(headers, raw_body)
    if evt is None:
        return WebhookOutcome.IGNORED

    log = logger.bind(event_id=evt.id, event_type=evt.raw_type, provider_payment_id=evt.provider_payment_id)

    already = db.query(PaymentEvent.id).filter(PaymentEvent.provider_event_id == evt.id).first()
    if already is not None:
        log.info("webhook_already_processed")
        return WebhookOutcome.DUPLICATE

    payment = _find_payment(db, provider, evt)

    # Recorded whether or not it maps to a payment, to keep the audit trail.
    db.add(PaymentEvent(
        id=new_id(),
        payment_id=payment.id if payment is not None else UNMAPPED_PAYMENT_ID,
        provider_event_id=evt.id,
        type=evt.raw_type,
        raw=evt.raw_json,
    ))

    if payment is None:
        if not _commit(db, evt):
            return WebhookOutcome.DUPLICATE
        log.warning("webhook_unmapped")
        return WebhookOutcome.UNMAPPED

    order = db.query(Order).filter(Order.id == payment.order_id).with_for_update().first()
    if order is None:
        if not _commit(db, evt):
            return WebhookOutcome.DUPLICATE
        log.warning("webhook_payment_without_order", payment_id=payment.id, order_id=payment.order_id)
        return WebhookOutcome.ORPHANED

    # 0 means the event type carries no amount: skip the check.
    if evt.amount > 0 and evt.amount != payment.amount:
        if not _commit(db, evt):
            return WebhookOutcome.DUPLICATE
        log.warning("webhook_amount_mismatch", payment_id=payment.id, event_amount=evt.amount, stored_amount=payment.amount)
        return WebhookOutcome.AMOUNT_MISMATCH

    old_payment_status, old_order_status = payment.status, order.status

    if evt.type in (WebhookEventType.CHECKOUT_COMPLETED, WebhookEventType.PAYMENT_SUCCEEDED):
        payment.status = PaymentStatus.PAID.value
        order.status = OrderStatus.PAID.value
    elif evt.type is WebhookEventType.PAYMENT_FAILED:
        # Order stays pending so the customer can pay again.
        payment.status = PaymentStatus.FAILED.value

    now = utcnow()
    payment.updated_at = now
    order.updated_at = now

    if not _commit(db, evt):
        return WebhookOutcome.DUPLICATE

    log.info(
        "webhook_applied",
        payment_id=payment.id,
        order_id=order.id,
        payment_status=f"{old_payment_status} -> {payment.status}",
        order_status=f"{old_order_status} -> {order.status}",
    )
    return WebhookOutcome.APPLIED
