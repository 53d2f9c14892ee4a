# storefront/services/cart_service.py
from dataclasses import asdict
from datetime import datetime, timezone, timedelta
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import (
    CartItemNotFoundError,
    InactiveProductError,
    InsufficientStockError,
    InvalidQuantityError,
    NoActiveCartError,
)
from storefront.domain.types import CartStatus
from storefront.repos.cart_repo import CartRepo
from storefront.repos.catalog_repo import CatalogRepo
from storefront.services.cart_session_manager import CartSessionManager, new_session_token
from storefront.services.pricing import CartSummary, price_cart
from storefront.utils.logging import get_logger
from storefront.utils.settings import CART_SESSION_TTL_SECONDS

logger = get_logger(__name__)


def empty_cart_view() -> Dict[str, Any]:
    return CartService.render(None, CartSummary())


class CartService:
    """
    Use case'y koszyka.
    query (resolve bez tworzenia, summary) tylko odczyt
    commands (add, update, remove, merge) pod blokada wiersza koszyka
    """

    def __init__(self, db: Session, cart_sessions: CartSessionManager):
        self.repo = CartRepo(db)
        self.catalog = CatalogRepo(db)
        self.cart_sessions = cart_sessions

    # query
    def resolve_cart(
        self,
        user_id: int | None,
        session_token: str | None,
        create: bool = False,
    ) -> CartModel | None:
        """
        Kolejnosc: aktywny koszyk usera, potem koszyk z tokenu (gosc albo ten sam user).
        create=False (odczyt) niczego nie zapisuje i moze zwrocic None.
        """
        if user_id is not None:
            cart = self.repo.get_active_cart_by_user(user_id)
            if cart:
                return cart

        if session_token:
            cart = self._cart_for_token(session_token)
            if cart is not None and cart.user_id in (None, user_id):
                if create and user_id is not None and cart.user_id is None:
                    # zalogowany user bez koszyka pisze do koszyka goscia -> przejmuje go
                    merged = self.merge_guest_into_user(user_id, session_token)
                    if merged is not None:
                        return merged
                    # koszyk goscia zniknal w miedzyczasie (rownolegly merge)
                    return self._create_cart(user_id)
                return cart

        if not create:
            return None
        return self._create_cart(user_id)

    def get_summary(self, cart: CartModel) -> CartSummary:
        items = self.repo.get_cart_items(cart.id)
        product_ids = [i.product_id for i in items]
        now = datetime.now(timezone.utc)
        return price_cart(
            items,
            self.catalog.get_products(product_ids),
            self.catalog.get_active_promotions(product_ids, now),
            now,
        )

    def get_cart_view(self, user_id: int | None, session_token: str | None) -> Dict[str, Any]:
        cart = self.resolve_cart(user_id, session_token, create=False)
        if cart is None:
            return empty_cart_view()
        self.ensure_session_consistency(cart.id, cart.session_token, cart.user_id)
        return self.render(cart, self.get_summary(cart))

    @staticmethod
    def render(cart: CartModel | None, summary: CartSummary) -> Dict[str, Any]:
        return {
            "cart_id": cart.id if cart else None,
            "session_token": cart.session_token if cart else None,
            "user_id": cart.user_id if cart else None,
            "status": cart.status if cart else None,
            "items": [asdict(line) for line in summary.lines],
            "item_count": summary.item_count,
            "subtotal": summary.subtotal,
            "discount": summary.discount,
            "total": summary.total,
            "expires_at": cart.expires_at if cart else None,
        }

    # commands
    def add_item(
        self,
        user_id: int | None,
        session_token: str | None,
        product_id: int,
        quantity: int,
    ) -> CartModel:
        if quantity <= 0:
            raise InvalidQuantityError(quantity=quantity)

        # walidacja produktu zanim cokolwiek powstanie
        product = self._require_product(product_id)
        if quantity > product.stock:
            raise InsufficientStockError(product_id=product_id, requested=quantity, available=product.stock)

        cart = self.resolve_cart(user_id, session_token, create=True)

        try:
            cart = self.repo.get_cart(cart.id, for_update=True)
            item = self.repo.get_cart_item(cart.id, product_id)
            new_quantity = quantity + (item.quantity if item else 0)

            product = self._require_product(product_id)
            if new_quantity > product.stock:
                raise InsufficientStockError(
                    product_id=product_id, requested=new_quantity, available=product.stock
                )

            if item:
                logger.info(
                    f"Produkt {product_id} juz jest w koszyku {cart.id}, "
                    f"zwiekszam ilosc z {item.quantity} do {new_quantity}"
                )
                item.quantity = new_quantity
            else:
                logger.info(f"Dodaje produkt {product_id} do koszyka {cart.id}")
                self.repo.add_cart_item(
                    CartItemModel(cart_id=cart.id, product_id=product_id, quantity=quantity)
                )

            self._touch(cart)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        self.cart_sessions.ensure_session(cart.id, cart.session_token, cart.user_id)
        self.cart_sessions.extend_session(cart.session_token)
        return cart

    def update_item(
        self,
        user_id: int | None,
        session_token: str | None,
        product_id: int,
        quantity: int,
    ) -> CartModel:
        """quantity = 0 usuwa pozycje."""
        if quantity < 0:
            raise InvalidQuantityError(quantity=quantity)

        cart = self.resolve_cart(user_id, session_token, create=False)
        if cart is None:
            raise NoActiveCartError()

        try:
            cart = self.repo.get_cart(cart.id, for_update=True)
            item = self.repo.get_cart_item(cart.id, product_id)
            if item is None:
                raise CartItemNotFoundError(product_id=product_id)

            if quantity == 0:
                logger.info(f"Usuwanie produktu {product_id} z koszyka {cart.id}")
                self.repo.delete_cart_item(item)
            else:
                product = self._require_product(product_id)
                if quantity > product.stock:
                    raise InsufficientStockError(
                        product_id=product_id, requested=quantity, available=product.stock
                    )
                item.quantity = quantity

            self._touch(cart)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        self.cart_sessions.extend_session(cart.session_token)
        return cart

    def remove_item(self, user_id: int | None, session_token: str | None, product_id: int) -> CartModel:
        return self.update_item(user_id, session_token, product_id, 0)

    def merge_guest_into_user(self, user_id: int, guest_session_token: str) -> CartModel | None:
        """
        Brak aktywnego koszyka usera -> koszyk goscia przechodzi na usera (ten sam wiersz).
        Jest koszyk usera -> pozycje goscia dodawane ilosciowo, gosc = abandoned,
        jego token uniewazniony. Wskaznik w store zmieniamy dopiero po commit.
        """
        guest = self.repo.get_cart_by_token(guest_session_token)
        user_cart = self.repo.get_active_cart_by_user(user_id)

        if guest is None or guest.status != CartStatus.ACTIVE.value or guest.user_id is not None:
            if guest is not None and guest.user_id not in (None, user_id):
                logger.warning(f"Token koszyka {guest.id} nalezy do innego usera, pomijam merge")
            return user_cart

        if user_cart is None:
            return self._reown(user_id, guest)
        return self._merge_lines(user_id, guest, user_cart)

    def ensure_session_consistency(self, cart_id: int, token: str, user_id: int | None) -> None:
        self.cart_sessions.ensure_session(cart_id, token, user_id)

    # helpers
    def _reown(self, user_id: int, guest: CartModel) -> CartModel | None:
        try:
            guest = self.repo.get_cart(guest.id, for_update=True)
            if guest.status != CartStatus.ACTIVE.value or guest.user_id is not None:
                # ktos zdazyl przed nami
                self.repo.rollback()
                return self.repo.get_active_cart_by_user(user_id)
            guest.user_id = user_id
            self._touch(guest)
            self.repo.commit()
        except IntegrityError:
            # rownolegle powstal aktywny koszyk usera, scalamy do niego
            self.repo.rollback()
            user_cart = self.repo.get_active_cart_by_user(user_id)
            guest = self.repo.get_cart(guest.id)
            if user_cart is None or guest is None:
                raise
            return self._merge_lines(user_id, guest, user_cart)
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Koszyk goscia {guest.id} przejety przez usera {user_id}")
        self.cart_sessions.create_session(guest.session_token, guest.id, user_id)
        return guest

    def _merge_lines(self, user_id: int, guest: CartModel, user_cart: CartModel) -> CartModel:
        try:
            locked = {c.id: c for c in self.repo.lock_carts([guest.id, user_cart.id])}
            guest, user_cart = locked[guest.id], locked[user_cart.id]
            if guest.status != CartStatus.ACTIVE.value or user_cart.status != CartStatus.ACTIVE.value:
                self.repo.rollback()
                return self.repo.get_active_cart_by_user(user_id)

            for line in self.repo.get_cart_items(guest.id):
                target = self.repo.get_cart_item(user_cart.id, line.product_id)
                if target:
                    target.quantity += line.quantity
                else:
                    self.repo.add_cart_item(
                        CartItemModel(cart_id=user_cart.id, product_id=line.product_id, quantity=line.quantity)
                    )

            guest.status = CartStatus.ABANDONED.value
            self._touch(user_cart)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Koszyk goscia {guest.id} scalony do koszyka {user_cart.id} usera {user_id}")
        self.cart_sessions.delete_session(guest.session_token)
        self.cart_sessions.ensure_session(user_cart.id, user_cart.session_token, user_id)
        return user_cart

    def _create_cart(self, user_id: int | None) -> CartModel:
        cart = CartModel(
            user_id=user_id,
            session_token=new_session_token(),
            status=CartStatus.ACTIVE.value,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=CART_SESSION_TTL_SECONDS),
        )
        try:
            self.repo.create_cart(cart)
            self.repo.commit()
        except IntegrityError:
            # wyscig: rownolegle zapytanie tego usera utworzylo koszyk
            self.repo.rollback()
            existing = self.repo.get_active_cart_by_user(user_id) if user_id is not None else None
            if existing is None:
                raise
            return existing

        logger.info(f"Utworzono koszyk {cart.id} (user {user_id})")
        self.cart_sessions.create_session(cart.session_token, cart.id, user_id)
        return cart

    def _cart_for_token(self, token: str) -> CartModel | None:
        session = self.cart_sessions.get_session(token)
        cart = None
        if session is not None:
            cart = self.repo.get_cart(session["cart_id"])
            if cart is not None and cart.session_token != token:
                cart = None
        if cart is None:
            # store to tylko cache, zrodlem prawdy jest tabela
            cart = self.repo.get_cart_by_token(token)
        if cart is None or cart.status != CartStatus.ACTIVE.value:
            return None
        return cart

    def _require_product(self, product_id: int):
        product = self.catalog.get_product(product_id)
        if product is None or not product.is_active:
            raise InactiveProductError(product_id=product_id)
        return product

    @staticmethod
    def _touch(cart: CartModel) -> None:
        cart.expires_at = datetime.now(timezone.utc) + timedelta(seconds=CART_SESSION_TTL_SECONDS)
