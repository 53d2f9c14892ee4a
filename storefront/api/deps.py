# storefront/api/deps.py
from dataclasses import dataclass
from typing import Mapping

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.domain.errors import AuthenticationError, CheckoutSessionNotFoundError, DomainError
from storefront.domain.types import GatewayProvider
from storefront.gateways.registry import PROVIDERS, GatewayFactory, GatewayRegistry
from storefront.repos.catalog_repo import CatalogRepo
from storefront.services.cart_service import CartService
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.session_store import SessionStore
from storefront.services.user_session_manager import UserSessionManager
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

CART_SESSION_HEADER = "X-Cart-Session"
CHECKOUT_SESSION_HEADER = "X-Checkout-Session"


def http_error(e: DomainError) -> HTTPException:
    if e.status_code >= 500:
        logger.error(f"{e.code}: {e.message}")
    headers = {"WWW-Authenticate": "Bearer"} if e.status_code == 401 else None
    return HTTPException(status_code=e.status_code, detail=e.to_detail(), headers=headers)


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_gateway_factories() -> Mapping[GatewayProvider, GatewayFactory]:
    return PROVIDERS


@dataclass(frozen=True)
class RequestContext:
    """Tozsamosc i tokeny sesji, rozwiazane raz na request."""

    user_id: int | None
    access_token: str | None
    cart_token: str | None
    checkout_session_id: str | None

    def require_user(self) -> int:
        if self.user_id is None:
            raise AuthenticationError()
        return self.user_id

    def require_checkout(self) -> str:
        # sesja checkoutu zawsze nalezy do zalogowanego usera
        self.require_user()
        if not self.checkout_session_id:
            raise CheckoutSessionNotFoundError(f"Missing {CHECKOUT_SESSION_HEADER} header")
        return self.checkout_session_id


def get_context(
    authorization: str | None = Header(None),
    x_cart_session: str | None = Header(None),
    x_checkout_session: str | None = Header(None),
    store: SessionStore = Depends(get_store),
) -> RequestContext:
    user_id = None
    token = None
    if authorization:
        scheme, _, token = authorization.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise http_error(AuthenticationError("Malformed Authorization header"))
        user_id = UserSessionManager(store).get_user_id(token)
        if user_id is None:
            raise http_error(AuthenticationError("Session expired or invalid"))
    return RequestContext(
        user_id=user_id,
        access_token=token,
        cart_token=x_cart_session or None,
        checkout_session_id=x_checkout_session or None,
    )


def get_cart_service(db: Session = Depends(get_db), store: SessionStore = Depends(get_store)) -> CartService:
    return CartService(db=db, cart_sessions=CartSessionManager(store))


def get_gateway_registry(
    db: Session = Depends(get_db),
    factories: Mapping[GatewayProvider, GatewayFactory] = Depends(get_gateway_factories),
) -> GatewayRegistry:
    return GatewayRegistry(CatalogRepo(db), factories=factories)
