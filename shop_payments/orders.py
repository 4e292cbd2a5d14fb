from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from shop_payments.errors import Forbidden, InvalidState, NotFound
from shop_payments.logging_config import get_logger
from shop_payments.models import Order, OrderStatus, new_id

logger = get_logger(__name__)

# Statuses an administrator may move a pending order to. Paid is webhook-only.
ADMIN_TARGET_STATUSES = {OrderStatus.CANCELLED, OrderStatus.FAILED}


@dataclass
class OrderLine:
    """Priced line handed over by the catalog/cart side."""
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    image_url: Optional[str] = None


def create_order(db: Session, user_id: str, lines: Iterable[OrderLine]) -> Order:
    """Snapshot the lines and store a pending order whose total is fixed from here on."""
    lines = list(lines)
    if not lines:
        raise ValueError("Items required")
    if any(line.quantity < 1 for line in lines):
        raise ValueError("Quantity must be >= 1")
    if any(Decimal(line.unit_price) < 0 for line in lines):
        raise ValueError("Unit price must be >= 0")

    items = []
    total = Decimal(0)
    for line in lines:
        unit_price = Decimal(line.unit_price)
        line_total = unit_price * line.quantity
        total += line_total
        items.append({
            "product_id": line.product_id,
            "name": line.name,
            "unit_price": str(unit_price),
            "quantity": line.quantity,
            "line_total": str(line_total),
            "image_url": line.image_url,
        })

    order = Order(
        id=new_id(),
        user_id=user_id,
        total_amount=total,
        status=OrderStatus.PENDING.value,
        items=items,
    )
    db.add(order)
    db.commit()
    db.refresh(order)

    logger.info("order_created", order_id=order.id, user_id=user_id, total=str(total), items=len(items))
    return order


def get_order_for_user(db: Session, order_id: str, user_id: str) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user_id:
        raise Forbidden("Order belongs to another user")
    return order


def list_orders_for_user(db: Session, user_id: str) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .all()
    )


def update_order_status(db: Session, order_id: str, status: OrderStatus) -> Order:
    """Administrative transition. Only pending orders move, and never to paid."""
    status = OrderStatus(status)
    order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if order is None:
        raise NotFound("Order not found")
    if status not in ADMIN_TARGET_STATUSES:
        raise InvalidState(f"Order status cannot be set to '{status.value}' manually")
    if order.status != OrderStatus.PENDING.value:
        raise InvalidState(f"Order is '{order.status}', only pending orders can change status")

    previous = order.status
    order.status = status.value
    db.commit()
    db.refresh(order)

    logger.info("order_status_updated", order_id=order.id, old_status=previous, new_status=order.status)
    return order
