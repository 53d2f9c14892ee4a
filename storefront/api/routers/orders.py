# storefront/api/routers/orders.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import RequestContext, get_context, get_gateway_registry, get_store, http_error
from storefront.data.database import get_db
from storefront.domain.errors import DomainError
from storefront.domain.schemas import OrderOut, PaymentOut, ProcessPaymentIn
from storefront.gateways.registry import GatewayRegistry
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService
from storefront.services.session_store import SessionStore

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session):
    return OrderService(db)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    """
    Pobiera szczegoly zamowienia.
    """
    svc = get_service(db)
    try:
        return svc.get_order(order_id, ctx.require_user())
    except DomainError as e:
        raise http_error(e)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.cancel_order(order_id, ctx.require_user())
    except DomainError as e:
        raise http_error(e)


@router.post("/{order_id}/payments", response_model=PaymentOut, status_code=201)
def process_payment(
    order_id: int,
    payload: ProcessPaymentIn,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    """
    Platnosc zamowienia karta albo PSE.
    402 = odmowa bramki, 502 = wynik nieznany (platnosc zostaje PENDING).
    """
    svc = PaymentService(db, registry, cart_sessions=CartSessionManager(store))
    try:
        return svc.process_payment(order_id, ctx.require_user(), payload)
    except DomainError as e:
        raise http_error(e)
