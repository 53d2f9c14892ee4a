# storefront/services/payment_service.py
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.data.models.payment import PaymentModel, WebhookEventModel
from storefront.data.models.payment_config import PaymentMethodConfigModel
from storefront.domain.errors import (
    AccessDeniedError,
    GatewayNotConfiguredError,
    InvalidPaymentDataError,
    OrderNotFoundError,
    OrderNotPayableError,
    PaymentDeclinedError,
    PaymentGatewayError,
    PaymentInProgressError,
    PaymentMethodNotConfiguredError,
    PaymentMethodUnavailableError,
    PaymentNotFoundError,
    UnsupportedCapabilityError,
)
from storefront.domain.schemas import CardTokenIn, ProcessPaymentIn
from storefront.domain.types import (
    FINAL_PAYMENT_STATES,
    PAYABLE_ORDER_STATES,
    CartStatus,
    OrderState,
    PaymentMethodType,
    PaymentState,
    can_transition,
    order_state_for_payment,
    payment_accepts,
)
from storefront.gateways.base import (
    CHARGE_CARD,
    PROCESS_PSE_PAYMENT,
    VERIFY_TRANSACTION,
    Bank,
    CardChargeRequest,
    CardToken,
    CardTokenRequest,
    Customer,
    PaymentResult,
    PSEPaymentRequest,
    WebhookEvent,
)
from storefront.gateways.registry import GatewayRegistry
from storefront.repos.cart_repo import CartRepo
from storefront.repos.catalog_repo import CatalogRepo
from storefront.repos.order_repo import OrderRepo
from storefront.repos.payment_repo import PaymentRepo
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import transition_order
from storefront.utils.logging import get_logger
from storefront.utils.settings import PAYMENT_RECONCILE_AFTER_SECONDS, PAYMENT_UNRESOLVED_AFTER_SECONDS

logger = get_logger(__name__)

DECLINED_PAYMENT_STATES = frozenset({PaymentState.REJECTED, PaymentState.FAILED, PaymentState.CANCELLED})
MANUAL_REVIEW_DESCRIPTION = "Unresolved at gateway, manual review required"


def payment_view(payment: PaymentModel, order: OrderModel | None = None) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "order_id": payment.order_id,
        "reference": payment.reference,
        "transaction_id": payment.transaction_id,
        "gateway": payment.gateway,
        "state": payment.state,
        "state_description": payment.state_description,
        "amount": payment.amount,
        "currency": payment.currency,
        "redirect_url": payment.redirect_url,
        "order_state": order.state if order is not None else None,
    }


class PaymentService:
    """
    Platnosc zamowienia w trzech krokach:
    1. transakcja: blokada zamowienia, nowa proba platnosci w PENDING
    2. wywolanie bramki (z timeoutem, poza transakcja)
    3. transakcja: wynik bramki -> platnosc + stan zamowienia (jedna tablica)

    Wynik niejednoznaczny (timeout, blad sieci) zostawia PENDING do webhooka
    albo reconcile.
    """

    def __init__(
        self,
        db: Session,
        registry: GatewayRegistry,
        cart_sessions: CartSessionManager | None = None,
        notifications: NotificationService | None = None,
    ):
        self.registry = registry
        self.cart_sessions = cart_sessions
        self.notifications = notifications or NotificationService()
        self.orders = OrderRepo(db)
        self.payments = PaymentRepo(db)
        self.carts = CartRepo(db)
        self.catalog = CatalogRepo(db)

    # ---------------- metody platnosci ----------------
    def list_payment_methods(self) -> List[PaymentMethodConfigModel]:
        return self.catalog.list_enabled_payment_methods()

    def get_payment_method(self, payment_method_id: int) -> Dict[str, Any]:
        method = self._enabled_method(payment_method_id)
        gateway = self.registry.get_gateway(method.type, method.payment_gateway)
        return {"method": method, "gateway": gateway.get_gateway_info()}

    def create_card_token(self, card: CardTokenIn) -> CardToken:
        method = self._enabled_method(card.payment_method_id, PaymentMethodType.CREDIT_CARD)
        gateway = self.registry.get_gateway(PaymentMethodType.CREDIT_CARD, method.payment_gateway)
        token = gateway.create_card_token(
            CardTokenRequest(
                card_number=card.card_number,
                holder_name=card.holder_name,
                expiration_year=card.expiration_year,
                expiration_month=card.expiration_month,
                cvv2=card.cvv2,
                address=card.address.model_dump(exclude_none=True) if card.address else None,
            )
        )
        logger.info(f"Card token created via {gateway.provider.value}")
        return token

    def get_banks(self, payment_method_id: int | None = None) -> List[Bank]:
        if payment_method_id is not None:
            method = self._enabled_method(payment_method_id, PaymentMethodType.PSE)
        else:
            method = next(
                (m for m in self.catalog.list_enabled_payment_methods() if m.type == PaymentMethodType.PSE.value),
                None,
            )
            if method is None:
                raise PaymentMethodUnavailableError("No PSE payment method available")
        gateway = self.registry.get_gateway(PaymentMethodType.PSE, method.payment_gateway)
        return gateway.get_banks()

    # ---------------- platnosc ----------------
    def process_payment(self, order_id: int, user_id: int | None, payment_data: ProcessPaymentIn) -> Dict[str, Any]:
        order = self.orders.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id=order_id)
        if user_id is not None and order.user_id != user_id:
            raise AccessDeniedError("Order belongs to another user")

        method = self.catalog.get_payment_method(order.payment_method_id)
        if method is None:
            raise PaymentMethodNotConfiguredError(order_id=order_id)
        method_type = PaymentMethodType(method.type)
        if payment_data.method_type != method_type:
            raise InvalidPaymentDataError(expected=method_type.value, received=payment_data.method_type.value)

        gateway = self.registry.get_gateway(method_type, method.payment_gateway)
        gateway.require(CHARGE_CARD if method_type == PaymentMethodType.CREDIT_CARD else PROCESS_PSE_PAYMENT)

        payment = self._open_attempt(order_id, method)
        description = f"Order {order_id}"

        try:
            if payment_data.card is not None:
                card = payment_data.card
                result = gateway.charge_card(
                    CardChargeRequest(
                        reference=payment.reference,
                        amount=payment.amount,
                        currency=payment.currency,
                        description=description,
                        token_id=card.token_id,
                        device_session_id=card.device_session_id,
                        customer=self._customer(card.customer),
                    )
                )
            else:
                pse = payment_data.pse
                result = gateway.process_pse_payment(
                    PSEPaymentRequest(
                        reference=payment.reference,
                        amount=payment.amount,
                        currency=payment.currency,
                        description=description,
                        redirect_url=pse.redirect_url,
                        customer=self._customer(pse.customer),
                    )
                )
        except PaymentDeclinedError as e:
            logger.info(f"Payment {payment.reference} declined by {e.provider}")
            self._apply_state(
                payment.id,
                PaymentState.REJECTED,
                description=e.details.get("provider_message"),
                error_message=e.message,
            )
            raise
        except PaymentGatewayError as e:
            # wynik nieznany: platnosc i zamowienie zostaja w PENDING
            logger.warning(f"Payment {payment.reference} outcome unknown: {e.message}")
            self._record_error(payment.id, e.message)
            raise

        payment, order, _ = self._apply_result(payment.id, result)
        if PaymentState(payment.state) in DECLINED_PAYMENT_STATES:
            # odmowa w tresci odpowiedzi 200, zapisana jak kazda inna
            logger.info(f"Payment {payment.reference} declined by {gateway.provider.value}: {payment.state}")
            raise PaymentDeclinedError(
                "Payment rejected by gateway",
                provider=gateway.provider.value,
                provider_status=payment.state,
                provider_message=payment.state_description,
            )
        return payment_view(payment, order)

    def verify_transaction(self, transaction_id: str, user_id: int | None = None) -> Dict[str, Any]:
        payment = self.payments.get_by_transaction_id(transaction_id)
        if payment is None:
            raise PaymentNotFoundError(transaction_id=transaction_id)
        if user_id is not None and payment.user_id != user_id:
            raise AccessDeniedError("Payment belongs to another user")

        gateway = self.registry.for_provider(payment.gateway)
        gateway.require(VERIFY_TRANSACTION)
        result = gateway.verify_transaction(transaction_id)
        payment, order, _ = self._apply_result(payment.id, result)
        return {
            "transaction_id": transaction_id,
            "status": result.state.value,
            "order_id": order.id,
            "order_state": order.state,
        }

    def apply_webhook_event(self, event: WebhookEvent) -> bool:
        """False = zdarzenie juz przetworzone wczesniej."""
        payment = self.payments.get_by_transaction_id(event.transaction_id)
        if payment is None:
            raise PaymentNotFoundError(transaction_id=event.transaction_id)
        _, _, applied = self._apply_state(
            payment.id,
            event.state,
            description=event.description,
            raw=event.raw,
            webhook_event=event,
        )
        return applied

    def reconcile_pending(self, now: datetime | None = None) -> int:
        """Dopytuje bramki o platnosci wiszace w PENDING. Zwraca liczbe rozstrzygnietych."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=PAYMENT_RECONCILE_AFTER_SECONDS)
        # wiek liczony w bazie, sqlite zwraca daty bez strefy
        unresolved_cutoff = now - timedelta(seconds=PAYMENT_UNRESOLVED_AFTER_SECONDS)
        unresolved = {p.id for p in self.payments.list_pending_before(unresolved_cutoff)}
        resolved = 0

        for payment in self.payments.list_pending_before(cutoff):
            try:
                gateway = self.registry.for_provider(payment.gateway)
                if payment.transaction_id:
                    result = gateway.verify_transaction(payment.transaction_id)
                else:
                    result = gateway.find_by_reference(payment.reference)
                    if result is None:
                        # bramka nie zna obciazenia, mozna bezpiecznie zamknac probe
                        self._apply_state(
                            payment.id, PaymentState.FAILED, description="Charge not found at gateway"
                        )
                        resolved += 1
                        continue
            except (PaymentGatewayError, UnsupportedCapabilityError, GatewayNotConfiguredError) as e:
                if payment.id not in unresolved:
                    logger.warning(f"Reconcile of payment {payment.id} skipped: {e.message}")
                    continue
                logger.warning(f"Payment {payment.reference} closed for manual review: {e.message}")
                self._apply_state(
                    payment.id,
                    PaymentState.FAILED,
                    description=MANUAL_REVIEW_DESCRIPTION,
                    error_message=e.message,
                )
                resolved += 1
                continue

            self._apply_result(payment.id, result)
            if result.state in FINAL_PAYMENT_STATES:
                resolved += 1

        logger.info(f"Reconciled {resolved} pending payments")
        return resolved

    # ---------------- transakcje ----------------
    def _open_attempt(self, order_id: int, method: PaymentMethodConfigModel) -> PaymentModel:
        try:
            order = self.orders.get_order(order_id, for_update=True)
            if OrderState(order.state) not in PAYABLE_ORDER_STATES:
                raise OrderNotPayableError(order_id=order_id, state=order.state)
            if self.payments.get_pending_for_order(order_id) is not None:
                raise PaymentInProgressError(order_id=order_id)

            payment = PaymentModel(
                order_id=order.id,
                user_id=order.user_id,
                payment_method_id=method.id,
                gateway=method.payment_gateway,
                reference=f"{order.id}-{uuid.uuid4().hex[:16]}",
                amount=order.total_amount,
                currency=order.currency,
                state=PaymentState.PENDING.value,
                attempts=1,
            )
            self.payments.add_payment(payment)
            self.payments.commit()
        except Exception:
            self.payments.rollback()
            raise
        logger.info(f"Payment {payment.reference} opened for order {order_id}")
        return payment

    def _record_error(self, payment_id: int, message: str) -> None:
        try:
            payment = self.payments.get_payment(payment_id, for_update=True)
            payment.error_message = message
            self.payments.commit()
        except Exception:
            self.payments.rollback()
            raise

    def _apply_result(self, payment_id: int, result: PaymentResult) -> Tuple[PaymentModel, OrderModel, bool]:
        return self._apply_state(
            payment_id,
            result.state,
            transaction_id=result.transaction_id,
            description=result.description,
            raw=result.raw,
            redirect_url=result.redirect_url,
        )

    def _apply_state(
        self,
        payment_id: int,
        state: PaymentState,
        transaction_id: str | None = None,
        description: str | None = None,
        raw: Dict[str, Any] | None = None,
        redirect_url: str | None = None,
        error_message: str | None = None,
        webhook_event: WebhookEvent | None = None,
    ) -> Tuple[PaymentModel, OrderModel, bool]:
        """Platnosc i zamowienie w jednej transakcji; blokady: zamowienie, potem platnosc."""
        state = PaymentState(state)
        converted_token = None
        completed = False

        try:
            payment = self.payments.get_payment(payment_id)
            order = self.orders.get_order(payment.order_id, for_update=True)
            payment = self.payments.get_payment(payment_id, for_update=True)

            if webhook_event is not None:
                provider = webhook_event.provider.value
                if self.payments.has_webhook_event(provider, webhook_event.dedup_key):
                    self.payments.rollback()
                    logger.info(f"Webhook {webhook_event.dedup_key} already processed")
                    return payment, order, False
                self.payments.add_webhook_event(
                    WebhookEventModel(
                        provider=provider,
                        dedup_key=webhook_event.dedup_key,
                        event_type=webhook_event.event_type,
                        transaction_id=webhook_event.transaction_id,
                    )
                )
                payment.attempts = (payment.attempts or 0) + 1

            if not payment_accepts(payment.state, state):
                # spozniony albo sprzeczny wynik po stanie koncowym
                logger.warning(f"Payment {payment.reference} is {payment.state}, ignoring {state.value}")
                self.payments.commit()
                return payment, order, True

            if transaction_id:
                payment.transaction_id = transaction_id
            if redirect_url:
                payment.redirect_url = redirect_url
            if description:
                payment.state_description = description[:255]
            if error_message:
                payment.error_message = error_message
            if raw:
                payment.gateway_response = json.dumps(raw, default=str)
            payment.state = state.value

            target = order_state_for_payment(state)
            if target is not None and order.state != target.value:
                if can_transition(order.state, target):
                    transition_order(order, target)
                    order.last_payment_id = payment.id
                    if target == OrderState.PAYMENT_COMPLETED:
                        completed = True
                        converted_token = self._convert_cart(order.cart_id)
                else:
                    # np. spozniona porazka starej proby po udanej platnosci
                    logger.warning(
                        f"Payment {payment.reference} is {state.value}, order {order.id} stays {order.state}"
                    )

            self.payments.commit()
        except IntegrityError:
            self.payments.rollback()
            if webhook_event is None:
                raise
            # rownolegle przetworzony ten sam webhook
            logger.info(f"Webhook {webhook_event.dedup_key} processed concurrently")
            return self.payments.get_payment(payment_id), self.orders.get_order(order.id), False
        except Exception:
            self.payments.rollback()
            raise

        # platnosc jest juz zapisana, bledy ponizej tylko logujemy
        if converted_token and self.cart_sessions is not None:
            try:
                self.cart_sessions.delete_session(converted_token)
            except Exception as e:
                logger.warning(f"Cart session of order {order.id} not removed: {e}")
        if completed:
            try:
                self.notifications.send_order_notification(order.user_id, order.id, order.state)
            except Exception as e:
                logger.warning(f"Notification for order {order.id} not dispatched: {e}")
        return payment, order, True

    # ---------------- helpers ----------------
    def _convert_cart(self, cart_id: int) -> str | None:
        cart = self.carts.get_cart(cart_id, for_update=True)
        if cart is None or cart.status != CartStatus.ACTIVE.value:
            return None
        cart.status = CartStatus.CONVERTED.value
        logger.info(f"Cart {cart.id} converted")
        return cart.session_token

    def _enabled_method(
        self, payment_method_id: int, expected: PaymentMethodType | None = None
    ) -> PaymentMethodConfigModel:
        method = self.catalog.get_payment_method(payment_method_id)
        if method is None or not method.enabled:
            raise PaymentMethodNotConfiguredError(payment_method_id=payment_method_id)
        if expected is not None and method.type != expected.value:
            raise InvalidPaymentDataError(
                f"Payment method {payment_method_id} is not {expected.value}",
                payment_method_id=payment_method_id,
            )
        return method

    @staticmethod
    def _customer(customer) -> Customer:
        return Customer(
            name=customer.name,
            last_name=customer.last_name,
            email=customer.email,
            phone_number=customer.phone_number,
            requires_account=customer.requires_account,
            address=customer.address.model_dump() if customer.address else None,
        )
