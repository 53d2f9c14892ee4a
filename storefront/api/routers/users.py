# storefront/api/routers/users.py
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from storefront.api.deps import RequestContext, get_context, get_store, http_error
from storefront.data.database import get_db
from storefront.domain.errors import DomainError
from storefront.domain.schemas import LoginIn, SessionOut, TokenOut, UserCreate, UserRead
from storefront.services.cart_service import CartService
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.session_store import SessionStore
from storefront.services.user_service import UserService
from storefront.services.user_session_manager import UserSessionManager

router = APIRouter(prefix="/users", tags=["users"])


def get_service(db: Session, store: SessionStore):
    return UserService(
        db=db,
        user_sessions=UserSessionManager(store),
        cart_service=CartService(db=db, cart_sessions=CartSessionManager(store)),
    )


@router.post("/register", response_model=TokenOut, status_code=201)
def register(
    payload: UserCreate,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    """Rejestracja; koszyk goscia z X-Cart-Session przechodzi na nowego usera."""
    svc = get_service(db, store)
    try:
        return svc.register(payload, ctx.cart_token)
    except DomainError as e:
        raise http_error(e)


@router.post("/login", response_model=TokenOut)
def login(
    payload: LoginIn,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        return svc.login(payload, ctx.cart_token)
    except DomainError as e:
        raise http_error(e)


@router.get("/me", response_model=UserRead)
def me(
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        return svc.get_user(ctx.require_user())
    except DomainError as e:
        raise http_error(e)


@router.get("/me/sessions", response_model=List[SessionOut])
def list_sessions(
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        return svc.list_sessions(ctx.require_user())
    except DomainError as e:
        raise http_error(e)


@router.post("/logout", status_code=204)
def logout(
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        ctx.require_user()
    except DomainError as e:
        raise http_error(e)
    svc.logout(ctx.access_token)
    return Response(status_code=204)


@router.post("/logout-all")
def logout_everywhere(
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
):
    svc = get_service(db, store)
    try:
        removed = svc.logout_everywhere(ctx.require_user())
    except DomainError as e:
        raise http_error(e)
    return {"removed": removed}
