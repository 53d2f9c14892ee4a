# storefront/services/checkout_service.py
import math
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderLineModel, OrderModel
from storefront.domain.errors import (
    AccessDeniedError,
    CheckoutAlreadyCompletedError,
    CheckoutInProgressError,
    CheckoutSessionNotFoundError,
    EmptyCartError,
    IncompleteCheckoutError,
    InsufficientStockError,
    InvalidDeliveryTargetError,
    NoActiveCartError,
    OrderNotFoundError,
    PaymentMethodUnavailableError,
    SessionExpiredError,
)
from storefront.domain.types import CartStatus, CheckoutStep, DeliveryType, OrderState
from storefront.repos.cart_repo import CartRepo
from storefront.repos.catalog_repo import CatalogRepo
from storefront.repos.order_repo import OrderRepo
from storefront.services.cart_service import CartService
from storefront.services.lock_service import LockService
from storefront.services.pricing import price_cart
from storefront.services.session_store import SessionStore
from storefront.utils.logging import get_logger
from storefront.utils.retry import lock_wait_retry
from storefront.utils.settings import (
    CHECKOUT_SESSION_GRACE_SECONDS,
    CHECKOUT_SESSION_TTL_SECONDS,
    ORDER_CURRENCY,
)

logger = get_logger(__name__)

CHECKOUT_SESSION_PREFIX = "checkout_session:"

_NEXT_STEP = {
    CheckoutStep.INITIATED: "delivery",
    CheckoutStep.DELIVERY_SET: "payment_method",
    CheckoutStep.PAYMENT_SET: "create_order",
    CheckoutStep.ORDER_CREATED: "process_payment",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def session_step(session: Dict[str, Any]) -> CheckoutStep:
    """Krok wynika z wypelnionych pol, nie jest przechowywany osobno."""
    if session.get("order_id"):
        return CheckoutStep.ORDER_CREATED
    if session.get("delivery_type") and session.get("payment_method_id"):
        return CheckoutStep.PAYMENT_SET
    if session.get("delivery_type"):
        return CheckoutStep.DELIVERY_SET
    return CheckoutStep.INITIATED


def next_step(session: Dict[str, Any]) -> str:
    if not session.get("order_id"):
        if not session.get("delivery_type"):
            return "delivery"
        if not session.get("payment_method_id"):
            return "payment_method"
    return _NEXT_STEP[session_step(session)]


class CheckoutService:
    """
    Sesja checkoutu w store: INITIATED -> DELIVERY_SET -> PAYMENT_SET -> ORDER_CREATED.

    Kazda operacja najpierw sprawdza expires_at. Wygasla sesja nigdy nie jest
    przedluzana, trzeba zaczac od nowa.
    """

    def __init__(
        self,
        db: Session,
        store: SessionStore,
        cart_service: CartService,
        lock_service: LockService,
    ):
        self.store = store
        self.cart_service = cart_service
        self.lock_service = lock_service
        self.cart_repo = CartRepo(db)
        self.catalog = CatalogRepo(db)
        self.order_repo = OrderRepo(db)

    # ---------------- store ----------------
    def _key(self, session_id: str) -> str:
        return f"{CHECKOUT_SESSION_PREFIX}{session_id}"

    def _save(self, session: Dict[str, Any]) -> None:
        # rekord zyje w store jeszcze chwile po wygasnieciu, zeby status zwrocil EXPIRED
        remaining = (datetime.fromisoformat(session["expires_at"]) - _now()).total_seconds()
        ttl = max(math.ceil(remaining), 0) + CHECKOUT_SESSION_GRACE_SECONDS
        self.store.set(self._key(session["id"]), session, ttl)

    def _load(self, session_id: str, user_id: int) -> Dict[str, Any]:
        session = self.store.get(self._key(session_id))
        if session is None:
            raise CheckoutSessionNotFoundError(session_id=session_id)
        if session["user_id"] != user_id:
            raise AccessDeniedError("Checkout session belongs to another user")
        if datetime.fromisoformat(session["expires_at"]) <= _now():
            raise SessionExpiredError(session_id=session_id)
        return session

    def _load_open(self, session_id: str, user_id: int) -> Dict[str, Any]:
        session = self._load(session_id, user_id)
        if session.get("order_id"):
            raise CheckoutAlreadyCompletedError(order_id=session["order_id"])
        return session

    @staticmethod
    def view(session: Dict[str, Any]) -> Dict[str, Any]:
        step = session_step(session)
        return {
            **session,
            "step": step.value,
            "next_step": next_step(session),
        }

    # ---------------- steps ----------------
    def initiate(self, user_id: int, cart_token: str | None = None) -> Dict[str, Any]:
        cart = self.cart_service.resolve_cart(user_id, None, create=False)
        if cart is None and cart_token:
            cart = self.cart_service.merge_guest_into_user(user_id, cart_token)
        if cart is None:
            raise NoActiveCartError()
        if not self.cart_repo.get_cart_items(cart.id):
            raise EmptyCartError(cart_id=cart.id)

        now = _now()
        session = {
            "id": uuid.uuid4().hex,
            "cart_id": cart.id,
            "user_id": user_id,
            "delivery_type": None,
            "delivery_address_id": None,
            "pickup_agency_id": None,
            "payment_method_id": None,
            "order_id": None,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=CHECKOUT_SESSION_TTL_SECONDS)).isoformat(),
        }
        self._save(session)
        logger.info(f"Checkout {session['id']} started for cart {cart.id} (user {user_id})")
        return self.view(session)

    def set_delivery(
        self,
        session_id: str,
        user_id: int,
        delivery_type: DeliveryType,
        address_id: int | None = None,
        agency_id: int | None = None,
    ) -> Dict[str, Any]:
        session = self._load_open(session_id, user_id)
        delivery_type = DeliveryType(delivery_type)

        if delivery_type == DeliveryType.SHIPPING:
            if address_id is None or agency_id is not None:
                raise InvalidDeliveryTargetError("Shipping requires address_id only")
            address = self.catalog.get_address(address_id)
            if address is None or address.user_id != user_id:
                raise InvalidDeliveryTargetError("Address not found for user", address_id=address_id)
        else:
            if agency_id is None or address_id is not None:
                raise InvalidDeliveryTargetError("Pickup requires agency_id only")
            agency = self.catalog.get_agency(agency_id)
            if agency is None or not agency.is_active:
                raise InvalidDeliveryTargetError("Agency not found or inactive", agency_id=agency_id)

        session.update(
            delivery_type=delivery_type.value,
            delivery_address_id=address_id,
            pickup_agency_id=agency_id,
        )
        self._save(session)
        return self.view(session)

    def set_payment_method(self, session_id: str, user_id: int, payment_method_id: int) -> Dict[str, Any]:
        session = self._load_open(session_id, user_id)
        method = self._available_payment_method(payment_method_id)

        cart = self.cart_repo.get_cart(session["cart_id"])
        if cart is None or cart.status != CartStatus.ACTIVE.value:
            raise NoActiveCartError()
        total = self.cart_service.get_summary(cart).total
        if (method.min_amount is not None and total < Decimal(str(method.min_amount))) or (
            method.max_amount is not None and total > Decimal(str(method.max_amount))
        ):
            raise PaymentMethodUnavailableError(
                "Cart total outside payment method limits",
                payment_method_id=payment_method_id,
                total=str(total),
                min_amount=str(method.min_amount) if method.min_amount is not None else None,
                max_amount=str(method.max_amount) if method.max_amount is not None else None,
            )

        session["payment_method_id"] = payment_method_id
        self._save(session)
        return self.view(session)

    def create_order(self, session_id: str, user_id: int) -> OrderModel:
        session = self._load(session_id, user_id)
        if session.get("order_id"):
            return self._existing_order(session["order_id"])

        missing = [f for f in ("delivery_type", "payment_method_id") if not session.get(f)]
        if missing:
            raise IncompleteCheckoutError(missing=missing, next_step=next_step(session))

        owner = uuid.uuid4().hex
        if not self.lock_service.acquire_checkout_lock(session_id, owner):
            raise CheckoutInProgressError(session_id=session_id)
        try:
            # ponowny odczyt pod lockiem
            session = self._load(session_id, user_id)
            if session.get("order_id"):
                return self._existing_order(session["order_id"])

            order = self.order_repo.get_by_checkout_session(session_id)
            if order is None:
                order = self._materialize_order(session)

            session["order_id"] = order.id
            self._save(session)
            return order
        finally:
            self.lock_service.release_checkout_lock(session_id, owner)

    def get_status(self, session_id: str, user_id: int) -> Dict[str, Any]:
        session = self._load(session_id, user_id)
        view = self.view(session)
        return {"status": view["step"], "next_step": view["next_step"], "session": view}

    def order_for_payment(self, session_id: str, user_id: int) -> int:
        session = self._load(session_id, user_id)
        if not session.get("order_id"):
            raise IncompleteCheckoutError(missing=["order_id"], next_step=next_step(session))
        return session["order_id"]

    def cancel(self, session_id: str, user_id: int) -> None:
        self._load_open(session_id, user_id)
        self.store.delete(self._key(session_id))
        logger.info(f"Checkout {session_id} cancelled by user {user_id}")

    # ---------------- helpers ----------------
    def _available_payment_method(self, payment_method_id: int):
        method = self.catalog.get_payment_method(payment_method_id)
        if (
            method is None
            or not method.enabled
            or method.gateway_config is None
            or not method.gateway_config.is_active
        ):
            raise PaymentMethodUnavailableError(payment_method_id=payment_method_id)
        return method

    def _existing_order(self, order_id: int) -> OrderModel:
        order = self.order_repo.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id=order_id)
        return order

    @lock_wait_retry()
    def _materialize_order(self, session: Dict[str, Any]) -> OrderModel:
        """Jedna transakcja: blokada koszyka, walidacja stanow, zamowienie + snapshot pozycji."""
        try:
            cart = self.cart_repo.get_cart(session["cart_id"], for_update=True)
            if cart is None or cart.status != CartStatus.ACTIVE.value or cart.user_id != session["user_id"]:
                raise NoActiveCartError(cart_id=session["cart_id"])

            items = self.cart_repo.get_cart_items(cart.id)
            if not items:
                raise EmptyCartError(cart_id=cart.id)

            method = self._available_payment_method(session["payment_method_id"])

            product_ids = [i.product_id for i in items]
            products = self.catalog.get_products(product_ids)
            for item in items:
                product = products.get(item.product_id)
                available = product.stock if product is not None and product.is_active else 0
                if item.quantity > available:
                    raise InsufficientStockError(
                        product_id=item.product_id, requested=item.quantity, available=available
                    )

            now = _now()
            summary = price_cart(items, products, self.catalog.get_active_promotions(product_ids, now), now)

            order = OrderModel(
                cart_id=cart.id,
                user_id=session["user_id"],
                checkout_session_id=session["id"],
                delivery_type=session["delivery_type"],
                delivery_address_id=session.get("delivery_address_id"),
                pickup_agency_id=session.get("pickup_agency_id"),
                payment_method_id=method.id,
                state=OrderState.PENDING.value,
                subtotal_amount=summary.subtotal,
                discount_amount=summary.discount,
                shipping_amount=summary.shipping,
                tax_amount=summary.tax,
                total_amount=summary.total,
                currency=ORDER_CURRENCY,
                lines=[
                    OrderLineModel(
                        product_id=line.product_id,
                        promotion_id=line.promotion_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        subtotal=line.subtotal,
                        discount_amount=line.discount_amount,
                        final_amount=line.final_amount,
                    )
                    for line in summary.lines
                ],
            )
            self.order_repo.add_order(order)
            self.order_repo.commit()
        except IntegrityError:
            # unikalny checkout_session_id: zamowienie juz istnieje
            self.order_repo.rollback()
            existing = self.order_repo.get_by_checkout_session(session["id"])
            if existing is None:
                raise
            return existing
        except Exception:
            self.order_repo.rollback()
            raise

        logger.info(f"Order {order.id} created from cart {order.cart_id} (checkout {session['id']})")
        return order
