from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.data.models.order import OrderModel
from storefront.domain.errors import (
    AccessDeniedError,
    CheckoutAlreadyCompletedError,
    CheckoutInProgressError,
    EmptyCartError,
    IncompleteCheckoutError,
    InsufficientStockError,
    InvalidDeliveryTargetError,
    NoActiveCartError,
    PaymentMethodUnavailableError,
    SessionExpiredError,
)
from storefront.domain.types import CheckoutStep, OrderState
from storefront.services.checkout_service import CHECKOUT_SESSION_PREFIX
from storefront.services.lock_service import LockService


def _expire(store, session_id):
    past = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
    store.patch(f"{CHECKOUT_SESSION_PREFIX}{session_id}", expires_at=past)


def test_initiate_requires_non_empty_cart(checkout_service, cart_service, catalog, user):
    with pytest.raises(NoActiveCartError):
        checkout_service.initiate(user.id)

    cart_service.add_item(user.id, None, catalog["a"].id, 1)
    cart_service.remove_item(user.id, None, catalog["a"].id)
    with pytest.raises(EmptyCartError):
        checkout_service.initiate(user.id)


def test_initiate_adopts_guest_cart_from_token(checkout_service, cart_service, catalog, user):
    guest = cart_service.add_item(None, None, catalog["a"].id, 1)

    session = checkout_service.initiate(user.id, guest.session_token)

    assert session["cart_id"] == guest.id
    assert session["step"] == CheckoutStep.INITIATED.value
    assert session["next_step"] == "delivery"


def test_steps_advance_in_order(checkout_service, cart_service, catalog, seed, user):
    cart_service.add_item(user.id, None, catalog["a"].id, 1)
    session = checkout_service.initiate(user.id)

    with pytest.raises(IncompleteCheckoutError):
        checkout_service.create_order(session["id"], user.id)

    address = seed.address(user)
    session = checkout_service.set_delivery(session["id"], user.id, "SHIPPING", address_id=address.id)
    assert session["step"] == CheckoutStep.DELIVERY_SET.value
    assert session["next_step"] == "payment_method"

    session = checkout_service.set_payment_method(session["id"], user.id, catalog["card"].id)
    assert session["step"] == CheckoutStep.PAYMENT_SET.value
    assert session["next_step"] == "create_order"


def test_payment_method_before_delivery_still_needs_delivery(checkout_service, cart_service, catalog, user):
    cart_service.add_item(user.id, None, catalog["a"].id, 1)
    session = checkout_service.initiate(user.id)

    session = checkout_service.set_payment_method(session["id"], user.id, catalog["card"].id)

    assert session["step"] == CheckoutStep.INITIATED.value
    assert session["next_step"] == "delivery"
    with pytest.raises(IncompleteCheckoutError) as exc:
        checkout_service.create_order(session["id"], user.id)
    assert exc.value.details["missing"] == ["delivery_type"]


def test_delivery_target_validation(checkout_service, cart_service, catalog, seed, user):
    cart_service.add_item(user.id, None, catalog["a"].id, 1)
    session = checkout_service.initiate(user.id)
    foreign_address = seed.address(seed.user(email="otro@example.com"))
    closed = seed.agency(is_active=False)

    with pytest.raises(InvalidDeliveryTargetError):
        checkout_service.set_delivery(session["id"], user.id, "SHIPPING")
    with pytest.raises(InvalidDeliveryTargetError):
        checkout_service.set_delivery(session["id"], user.id, "SHIPPING", address_id=foreign_address.id)
    with pytest.raises(InvalidDeliveryTargetError):
        checkout_service.set_delivery(session["id"], user.id, "PICKUP", agency_id=closed.id)
    with pytest.raises(InvalidDeliveryTargetError):
        checkout_service.set_delivery(
            session["id"], user.id, "PICKUP", agency_id=catalog["agency"].id, address_id=foreign_address.id
        )


def test_payment_method_amount_limits(checkout_service, cart_service, catalog, seed, user):
    cart_service.add_item(user.id, None, catalog["a"].id, 1)
    session = checkout_service.initiate(user.id)
    gateway = catalog["card"].gateway_config
    too_small = seed.payment_method(gateway, "CREDIT_CARD", min_amount="50.00")
    disabled = seed.payment_method(gateway, "CREDIT_CARD", enabled=False)

    with pytest.raises(PaymentMethodUnavailableError):
        checkout_service.set_payment_method(session["id"], user.id, too_small.id)
    with pytest.raises(PaymentMethodUnavailableError):
        checkout_service.set_payment_method(session["id"], user.id, disabled.id)


def test_create_order_snapshots_cart(checkout_service, ready_checkout, db, catalog, user):
    order = checkout_service.create_order(ready_checkout["id"], user.id)

    assert order.state == OrderState.PENDING.value
    assert order.total_amount == Decimal("20.00")
    assert order.pickup_agency_id == catalog["agency"].id
    assert order.delivery_address_id is None
    assert [(line.product_id, line.quantity) for line in order.lines] == [(catalog["a"].id, 2)]

    status = checkout_service.get_status(ready_checkout["id"], user.id)
    assert status["status"] == CheckoutStep.ORDER_CREATED.value
    assert status["session"]["order_id"] == order.id


def test_create_order_is_idempotent(checkout_service, ready_checkout, db, user):
    first = checkout_service.create_order(ready_checkout["id"], user.id)
    second = checkout_service.create_order(ready_checkout["id"], user.id)

    assert first.id == second.id
    assert db.query(OrderModel).count() == 1


def test_create_order_rechecks_stock(checkout_service, ready_checkout, db, catalog, user):
    catalog["a"].stock = 1
    db.commit()

    with pytest.raises(InsufficientStockError):
        checkout_service.create_order(ready_checkout["id"], user.id)
    assert db.query(OrderModel).count() == 0


def test_concurrent_create_order_is_rejected_while_locked(checkout_service, ready_checkout, store, user):
    LockService(store).acquire_checkout_lock(ready_checkout["id"], "other-worker")

    with pytest.raises(CheckoutInProgressError):
        checkout_service.create_order(ready_checkout["id"], user.id)


def test_mutations_after_order_conflict(checkout_service, ready_checkout, catalog, user):
    checkout_service.create_order(ready_checkout["id"], user.id)

    with pytest.raises(CheckoutAlreadyCompletedError):
        checkout_service.set_payment_method(ready_checkout["id"], user.id, catalog["pse"].id)
    with pytest.raises(CheckoutAlreadyCompletedError):
        checkout_service.cancel(ready_checkout["id"], user.id)


def test_expired_session_is_never_extended(checkout_service, ready_checkout, store, catalog, user):
    _expire(store, ready_checkout["id"])

    with pytest.raises(SessionExpiredError) as exc:
        checkout_service.get_status(ready_checkout["id"], user.id)
    assert exc.value.to_detail()["status"] == CheckoutStep.EXPIRED.value
    with pytest.raises(SessionExpiredError):
        checkout_service.set_delivery(ready_checkout["id"], user.id, "PICKUP", agency_id=catalog["agency"].id)
    with pytest.raises(SessionExpiredError):
        checkout_service.create_order(ready_checkout["id"], user.id)


def test_session_of_another_user_is_denied(checkout_service, ready_checkout, seed):
    intruder = seed.user(email="intruso@example.com")
    with pytest.raises(AccessDeniedError):
        checkout_service.get_status(ready_checkout["id"], intruder.id)


def test_cancel_drops_session(checkout_service, ready_checkout, store, user):
    checkout_service.cancel(ready_checkout["id"], user.id)
    assert store.get(f"{CHECKOUT_SESSION_PREFIX}{ready_checkout['id']}") is None
