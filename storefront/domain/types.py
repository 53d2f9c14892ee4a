# storefront/domain/types.py
from enum import Enum


class CartStatus(str, Enum):
    ACTIVE = "active"
    ABANDONED = "abandoned"
    CONVERTED = "converted"


class DeliveryType(str, Enum):
    SHIPPING = "SHIPPING"
    PICKUP = "PICKUP"


class CheckoutStep(str, Enum):
    INITIATED = "INITIATED"
    DELIVERY_SET = "DELIVERY_SET"
    PAYMENT_SET = "PAYMENT_SET"
    ORDER_CREATED = "ORDER_CREATED"
    EXPIRED = "EXPIRED"


class PaymentMethodType(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    PSE = "PSE"
    TRANSFER = "TRANSFER"
    CASH = "CASH"


class GatewayProvider(str, Enum):
    OPENPAY = "OPENPAY"
    GOU = "GOU"


class PaymentState(str, Enum):
    """Wspolny slownik statusow platnosci, kazda bramka mapuje swoj na ten."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class OrderState(str, Enum):
    PENDING = "PENDING"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PROCESSING = "PROCESSING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    SHIPPING = "SHIPPING"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# wynik bramki -> stan zamowienia. PENDING/PROCESSING to brak rozstrzygniecia
# (np. przekierowanie PSE), zamowienie zostaje w PENDING do webhooka/reconcile
ORDER_STATE_BY_PAYMENT_STATE = {
    PaymentState.APPROVED: OrderState.PAYMENT_COMPLETED,
    PaymentState.REJECTED: OrderState.PAYMENT_FAILED,
    PaymentState.FAILED: OrderState.PAYMENT_FAILED,
    PaymentState.CANCELLED: OrderState.PAYMENT_FAILED,
    PaymentState.REFUNDED: OrderState.REFUNDED,
    PaymentState.PENDING: None,
    PaymentState.PROCESSING: None,
}

FINAL_PAYMENT_STATES = frozenset(
    state for state, order_state in ORDER_STATE_BY_PAYMENT_STATE.items() if order_state is not None
)

# dozwolone przejscia zamowienia, nigdy z powrotem do PENDING
ORDER_TRANSITIONS = {
    OrderState.PENDING: {OrderState.PAYMENT_COMPLETED, OrderState.PAYMENT_FAILED, OrderState.CANCELLED},
    OrderState.PAYMENT_FAILED: {OrderState.PAYMENT_COMPLETED, OrderState.PAYMENT_FAILED, OrderState.CANCELLED},
    OrderState.PAYMENT_COMPLETED: {
        OrderState.PROCESSING,
        OrderState.COMPLETED,
        OrderState.CANCELLED,
        OrderState.REFUNDED,
    },
    OrderState.PROCESSING: {OrderState.READY_FOR_PICKUP, OrderState.SHIPPING, OrderState.CANCELLED},
    OrderState.READY_FOR_PICKUP: {OrderState.DELIVERED},
    OrderState.SHIPPING: {OrderState.DELIVERED},
    OrderState.DELIVERED: {OrderState.COMPLETED},
    OrderState.COMPLETED: {OrderState.REFUNDED},
    OrderState.CANCELLED: set(),
    OrderState.REFUNDED: set(),
}

# stany, w ktorych mozna (ponownie) probowac platnosci
PAYABLE_ORDER_STATES = frozenset({OrderState.PENDING, OrderState.PAYMENT_FAILED})


def order_state_for_payment(state: PaymentState) -> OrderState | None:
    return ORDER_STATE_BY_PAYMENT_STATE[PaymentState(state)]


def can_transition(current: OrderState, target: OrderState) -> bool:
    return OrderState(target) in ORDER_TRANSITIONS[OrderState(current)]


# platnosc w stanie koncowym moze juz tylko zostac zwrocona
PAYMENT_TRANSITIONS_FROM_FINAL = {
    PaymentState.APPROVED: {PaymentState.REFUNDED},
}


def payment_accepts(current: PaymentState, new: PaymentState) -> bool:
    current, new = PaymentState(current), PaymentState(new)
    if current not in FINAL_PAYMENT_STATES or current == new:
        return True
    return new in PAYMENT_TRANSITIONS_FROM_FINAL.get(current, set())
