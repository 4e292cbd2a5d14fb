from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from shop_payments.auth import CurrentUser, get_current_user, require_admin
from shop_payments.database import get_db
from shop_payments.errors import (
    AmountTooLow,
    Forbidden,
    InvalidState,
    NotFound,
    PaymentServiceError,
    ProviderError,
    SignatureInvalid,
    UnsupportedProvider,
)
from shop_payments.logging_config import get_logger
from shop_payments.models import OrderStatus
from shop_payments.orders import (
    OrderLine,
    create_order,
    get_order_for_user,
    list_orders_for_user,
    update_order_status,
)
from shop_payments.payments import create_payment, get_payment_for_user, handle_webhook
from shop_payments.providers import DEFAULT_PROVIDER, ProviderRegistry, get_provider_registry

logger = get_logger(__name__)

router = APIRouter()

ERROR_STATUS = {
    NotFound: 404,
    Forbidden: 403,
    InvalidState: 400,
    AmountTooLow: 400,
    UnsupportedProvider: 400,
    ProviderError: 502,
}


def to_http_error(exc: PaymentServiceError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


class CreatePaymentRequest(BaseModel):
    order_id: str
    provider: str = DEFAULT_PROVIDER


class CreatePaymentResponse(BaseModel):
    payment_id: str
    checkout_url: str


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    provider: str
    provider_payment_id: str
    amount: int
    currency: str
    status: str
    checkout_url: Optional[str]
    created_at: datetime
    updated_at: datetime


class OrderLineOut(BaseModel):
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    image_url: Optional[str] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    total_amount: Decimal
    status: str
    items: List[OrderLineOut]
    created_at: datetime


class OrderLineIn(BaseModel):
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    image_url: Optional[str] = None


class CreateOrderRequest(BaseModel):
    """Lines already priced by the catalog side, on behalf of ``user_id``."""
    user_id: str
    items: List[OrderLineIn]


class UpdateStatusRequest(BaseModel):
    status: OrderStatus


@router.post("/api/v1/payments/create", response_model=CreatePaymentResponse)
def create_payment_api(
    request: CreatePaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    try:
        provider = registry.get(request.provider)
        payment = create_payment(db, provider, user.user_id, request.order_id)
    except PaymentServiceError as e:
        logger.info("payment_create_rejected", order_id=request.order_id, reason=str(e))
        raise to_http_error(e)

    return CreatePaymentResponse(payment_id=payment.id, checkout_url=payment.checkout_url)


async def _receive_webhook(request: Request, provider_name: str, db: Session, registry: ProviderRegistry):
    try:
        provider = registry.get(provider_name)
    except UnsupportedProvider:
        raise HTTPException(status_code=404, detail="Unknown webhook provider")

    payload = await request.body()
    headers = dict(request.headers)

    try:
        outcome = await run_in_threadpool(handle_webhook, db, provider, headers, payload)
    except SignatureInvalid as e:
        logger.warning("webhook_signature_invalid", provider=provider_name, reason=str(e))
        raise HTTPException(status_code=401, detail="Invalid signature")
    except SQLAlchemyError:
        logger.exception("webhook_persistence_failed", provider=provider_name)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return {"ok": True, "outcome": outcome.value}


@router.post("/api/v1/payments/webhook")
@router.post("/api/webhook")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    return await _receive_webhook(request, DEFAULT_PROVIDER, db, registry)


@router.post("/api/v1/payments/webhook/{provider}")
async def provider_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    return await _receive_webhook(request, provider, db, registry)


@router.get("/api/v1/payments/{payment_id}", response_model=PaymentOut)
def get_payment_api(
    payment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return get_payment_for_user(db, payment_id, user.user_id)
    except PaymentServiceError as e:
        raise to_http_error(e)


@router.post("/api/v1/orders", response_model=OrderOut, status_code=201)
def create_order_api(
    request: CreateOrderRequest,
    caller: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    lines = [OrderLine(**item.model_dump()) for item in request.items]
    try:
        order = create_order(db, request.user_id, lines)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("order_created_via_api", order_id=order.id, caller_id=caller.user_id)
    return order


@router.get("/api/v1/orders", response_model=List[OrderOut])
def list_orders_api(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return list_orders_for_user(db, user.user_id)


@router.get("/api/v1/orders/{order_id}", response_model=OrderOut)
def get_order_api(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return get_order_for_user(db, order_id, user.user_id)
    except PaymentServiceError as e:
        raise to_http_error(e)


@router.put("/api/v1/orders/{order_id}/status")
def update_order_status_api(
    order_id: str,
    request: UpdateStatusRequest,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        order = update_order_status(db, order_id, request.status)
    except PaymentServiceError as e:
        raise to_http_error(e)

    logger.info("order_status_set_by_admin", order_id=order.id, admin_id=admin.user_id, status=order.status)
    return {"id": order.id, "status": order.status}
