import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from shop_payments.database import Base

# Stored on PaymentEvent rows whose webhook could not be matched to a payment.
UNMAPPED_PAYMENT_ID = "00000000-0000-0000-0000-000000000000"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (Index("ix_orders_user_created", "user_id", "created_at"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    items = Column(JSON, nullable=False, default=list)      # line snapshots
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Order {self.id} {self.status} {self.total_amount}>"


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("provider", "provider_payment_id", name="uq_payments_provider_payment_id"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(
        String(36), ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    provider = Column(String(20), nullable=False)                   # stripe | mock
    provider_payment_id = Column(String(100), nullable=False)       # checkout session id
    amount = Column(BigInteger, nullable=False)                     # minor units (VND => dong)
    currency = Column(String(10), nullable=False, default="VND")
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    checkout_url = Column(String(1000), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Payment {self.id} {self.provider}:{self.provider_payment_id} {self.status}>"


class PaymentEvent(Base):
    """Append-only ledger of verified webhooks, keyed for idempotency."""

    __tablename__ = "payment_events"

    id = Column(String(36), primary_key=True, default=new_id)
    payment_id = Column(String(36), nullable=False, index=True)
    provider_event_id = Column(String(200), nullable=False, unique=True)
    type = Column(String(100), nullable=False)
    raw = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<PaymentEvent {self.provider_event_id} {self.type}>"
