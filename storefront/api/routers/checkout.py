# storefront/api/routers/checkout.py
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from storefront.api.deps import (
    CHECKOUT_SESSION_HEADER,
    RequestContext,
    get_context,
    get_gateway_registry,
    get_store,
    http_error,
)
from storefront.data.database import get_db
from storefront.domain.errors import DomainError
from storefront.domain.schemas import (
    CheckoutSessionOut,
    CheckoutStatusOut,
    DeliveryIn,
    OrderOut,
    PaymentMethodIn,
    PaymentOut,
    ProcessPaymentIn,
)
from storefront.gateways.registry import GatewayRegistry
from storefront.services.cart_service import CartService
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.checkout_service import CheckoutService
from storefront.services.lock_service import LockService
from storefront.services.payment_service import PaymentService
from storefront.services.session_store import SessionStore

router = APIRouter(prefix="/checkout", tags=["checkout"])


def get_service(db: Session, store: SessionStore):
    return CheckoutService(
        db=db,
        store=store,
        cart_service=CartService(db=db, cart_sessions=CartSessionManager(store)),
        lock_service=LockService(store),
    )


@router.post("/init", response_model=CheckoutSessionOut, status_code=201)
def initiate_checkout(
    response: Response,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    """
    Otwiera sesje checkoutu dla aktywnego, niepustego koszyka usera.
    Id sesji wraca w naglowku X-Checkout-Session.
    """
    svc = get_service(db, store)
    try:
        session = svc.initiate(ctx.require_user(), ctx.cart_token)
    except DomainError as e:
        raise http_error(e)
    response.headers[CHECKOUT_SESSION_HEADER] = session["id"]
    return session


@router.put("/delivery", response_model=CheckoutSessionOut)
def set_delivery(
    payload: DeliveryIn,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        return svc.set_delivery(
            ctx.require_checkout(),
            ctx.require_user(),
            payload.delivery_type,
            address_id=payload.address_id,
            agency_id=payload.agency_id,
        )
    except DomainError as e:
        raise http_error(e)


@router.put("/payment-method", response_model=CheckoutSessionOut)
def set_payment_method(
    payload: PaymentMethodIn,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        return svc.set_payment_method(ctx.require_checkout(), ctx.require_user(), payload.payment_method_id)
    except DomainError as e:
        raise http_error(e)


@router.post("/order", response_model=OrderOut, status_code=201)
def create_order(
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    """Idempotentne: ponowne wywolanie zwraca to samo zamowienie."""
    svc = get_service(db, store)
    try:
        return svc.create_order(ctx.require_checkout(), ctx.require_user())
    except DomainError as e:
        raise http_error(e)


@router.get("/status", response_model=CheckoutStatusOut)
def get_status(
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        return svc.get_status(ctx.require_checkout(), ctx.require_user())
    except DomainError as e:
        raise http_error(e)


@router.delete("", status_code=204)
def cancel_checkout(
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        svc.cancel(ctx.require_checkout(), ctx.require_user())
    except DomainError as e:
        raise http_error(e)
    return Response(status_code=204)


@router.post("/process-payment", response_model=PaymentOut, status_code=201)
def process_payment(
    payload: ProcessPaymentIn,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    """Platnosc zamowienia utworzonego w tej sesji checkoutu."""
    svc = get_service(db, store)
    try:
        order_id = svc.order_for_payment(ctx.require_checkout(), ctx.require_user())
        payments = PaymentService(db, registry, cart_sessions=CartSessionManager(store))
        return payments.process_payment(order_id, ctx.require_user(), payload)
    except DomainError as e:
        raise http_error(e)
