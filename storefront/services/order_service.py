# storefront/services/order_service.py
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.errors import (
    AccessDeniedError,
    InvalidOrderTransitionError,
    OrderNotFoundError,
    PaymentInProgressError,
)
from storefront.domain.types import OrderState, can_transition
from storefront.repos.order_repo import OrderRepo
from storefront.repos.payment_repo import PaymentRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def transition_order(order: OrderModel, target: OrderState) -> None:
    """Zmiana stanu tylko wg tablicy przejsc, nigdy z powrotem do PENDING."""
    target = OrderState(target)
    if not can_transition(order.state, target):
        raise InvalidOrderTransitionError(order_id=order.id, current=order.state, target=target.value)
    logger.info(f"Order {order.id}: {order.state} -> {target.value}")
    order.state = target.value


class OrderService:
    def __init__(self, db: Session):
        self.repo = OrderRepo(db)
        self.payments = PaymentRepo(db)

    def get_order(self, order_id: int, user_id: int) -> OrderModel:
        order = self.repo.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id=order_id)
        if order.user_id != user_id:
            raise AccessDeniedError("Order belongs to another user")
        return order

    def cancel_order(self, order_id: int, user_id: int) -> OrderModel:
        try:
            order = self.repo.get_order(order_id, for_update=True)
            if order is None:
                raise OrderNotFoundError(order_id=order_id)
            if order.user_id != user_id:
                raise AccessDeniedError("Order belongs to another user")
            # nie anulujemy, gdy obciazenie moze wlasnie przechodzic
            if self.payments.get_pending_for_order(order.id) is not None:
                raise PaymentInProgressError(order_id=order.id)
            transition_order(order, OrderState.CANCELLED)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise
        return order
