# storefront/api/routers/carts.py
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from storefront.api.deps import (
    CART_SESSION_HEADER,
    RequestContext,
    get_context,
    get_store,
    http_error,
)
from storefront.data.database import get_db
from storefront.domain.errors import DomainError
from storefront.domain.schemas import CartOut, CartSessionOut, ItemIn, ItemUpdateIn
from storefront.services.cart_service import CartService, empty_cart_view
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.session_store import SessionStore, public_session

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session, store: SessionStore):
    return CartService(db=db, cart_sessions=CartSessionManager(store))


def _respond(svc: CartService, cart, response: Response):
    if cart is None:
        return empty_cart_view()
    response.headers[CART_SESSION_HEADER] = cart.session_token
    return svc.render(cart, svc.get_summary(cart))


@router.get("", response_model=CartOut)
def get_cart(
    response: Response,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    """
    Aktualny koszyk (usera albo z X-Cart-Session). Odczyt niczego nie tworzy,
    brak koszyka to pusty widok z cart_id = null.
    """
    svc = get_service(db, store)
    try:
        view = svc.get_cart_view(ctx.user_id, ctx.cart_token)
    except DomainError as e:
        raise http_error(e)
    if view["session_token"]:
        response.headers[CART_SESSION_HEADER] = view["session_token"]
    return view


@router.post("/items", response_model=CartOut)
def add_item(
    payload: ItemIn,
    response: Response,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        cart = svc.add_item(ctx.user_id, ctx.cart_token, payload.product_id, payload.quantity)
        return _respond(svc, cart, response)
    except DomainError as e:
        raise http_error(e)


@router.put("/items/{product_id}", response_model=CartOut)
def update_item(
    product_id: int,
    payload: ItemUpdateIn,
    response: Response,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    """Ustawia ilosc pozycji; 0 usuwa pozycje."""
    svc = get_service(db, store)
    try:
        cart = svc.update_item(ctx.user_id, ctx.cart_token, product_id, payload.quantity)
        return _respond(svc, cart, response)
    except DomainError as e:
        raise http_error(e)


@router.delete("/items/{product_id}", response_model=CartOut)
def remove_item(
    product_id: int,
    response: Response,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        cart = svc.remove_item(ctx.user_id, ctx.cart_token, product_id)
        return _respond(svc, cart, response)
    except DomainError as e:
        raise http_error(e)


@router.post("/merge", response_model=CartOut)
def merge_cart(
    response: Response,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    """Scala koszyk goscia z X-Cart-Session z koszykiem zalogowanego usera."""
    svc = get_service(db, store)
    try:
        user_id = ctx.require_user()
        if ctx.cart_token:
            cart = svc.merge_guest_into_user(user_id, ctx.cart_token)
        else:
            cart = svc.resolve_cart(user_id, None)
        return _respond(svc, cart, response)
    except DomainError as e:
        raise http_error(e)


@router.get("/sessions", response_model=List[CartSessionOut])
def list_cart_sessions(
    ctx: RequestContext = Depends(get_context),
    store: SessionStore = Depends(get_store),
):
    try:
        user_id = ctx.require_user()
    except DomainError as e:
        raise http_error(e)
    return [public_session(s) for s in CartSessionManager(store).find_sessions_by_user(user_id)]
