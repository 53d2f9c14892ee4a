# storefront/api/routers/payments.py
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from storefront.api.deps import RequestContext, get_context, get_gateway_registry, get_store, http_error
from storefront.data.database import get_db
from storefront.domain.errors import DomainError
from storefront.domain.schemas import (
    BankOut,
    CardTokenIn,
    CardTokenOut,
    PaymentMethodOut,
    TransactionStatusOut,
)
from storefront.gateways.registry import GatewayRegistry
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.payment_service import PaymentService
from storefront.services.session_store import SessionStore
from storefront.services.webhook_service import WebhookService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def get_service(db: Session, registry: GatewayRegistry, store: SessionStore):
    return PaymentService(db, registry, cart_sessions=CartSessionManager(store))


@router.get("/methods", response_model=List[PaymentMethodOut])
def list_payment_methods(
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    return get_service(db, registry, store).list_payment_methods()


@router.get("/methods/{payment_method_id}")
def get_payment_method(
    payment_method_id: int,
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    svc = get_service(db, registry, store)
    try:
        result = svc.get_payment_method(payment_method_id)
    except DomainError as e:
        raise http_error(e)
    return {
        "method": PaymentMethodOut.model_validate(result["method"]),
        "gateway": result["gateway"],
    }


@router.post("/tokens", response_model=CardTokenOut, status_code=201)
def create_card_token(
    payload: CardTokenIn,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    svc = get_service(db, registry, store)
    try:
        ctx.require_user()
        return svc.create_card_token(payload)
    except DomainError as e:
        raise http_error(e)


@router.get("/banks", response_model=List[BankOut])
def get_banks(
    payment_method_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    """Lista bankow PSE z bramki."""
    svc = get_service(db, registry, store)
    try:
        return svc.get_banks(payment_method_id)
    except DomainError as e:
        raise http_error(e)


@router.get("/transactions/{transaction_id}", response_model=TransactionStatusOut)
def verify_transaction(
    transaction_id: str,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    svc = get_service(db, registry, store)
    try:
        return svc.verify_transaction(transaction_id, ctx.require_user())
    except DomainError as e:
        raise http_error(e)


@router.post("/webhooks/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    """
    Powiadomienie bramki. Podpis liczony z surowego body, dlatego czytamy
    bajty zamiast modelu pydantic.
    """
    body = await request.body()
    svc = WebhookService(registry, get_service(db, registry, store))
    try:
        return await run_in_threadpool(svc.handle, provider, body, request.headers)
    except DomainError as e:
        if e.status_code < 500:
            logger.warning(f"Webhook from {provider} rejected: {e.code} {e.message}")
        raise http_error(e)
