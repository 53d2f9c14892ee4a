from datetime import datetime, timedelta, timezone

import pytest

from storefront.data.models.payment import PaymentModel
from storefront.domain.errors import (
    AccessDeniedError,
    InvalidPaymentDataError,
    OrderNotPayableError,
    PaymentDeclinedError,
    PaymentGatewayError,
    PaymentInProgressError,
    UnsupportedCapabilityError,
)
from storefront.domain.schemas import ProcessPaymentIn
from storefront.domain.types import CartStatus, GatewayProvider, OrderState, PaymentState
from storefront.gateways.base import FIND_BY_REFERENCE, PaymentResult, WebhookEvent
from storefront.services.order_service import OrderService
from storefront.services.payment_service import MANUAL_REVIEW_DESCRIPTION

LATER = datetime.now(timezone.utc) + timedelta(hours=1)
MUCH_LATER = datetime.now(timezone.utc) + timedelta(days=2)


@pytest.fixture()
def order(checkout_service, ready_checkout, user):
    return checkout_service.create_order(ready_checkout["id"], user.id)


def _pse_payload():
    return ProcessPaymentIn.model_validate(
        {
            "pse": {
                "redirect_url": "https://shop.example.com/return",
                "customer": {
                    "name": "Ana",
                    "last_name": "Lopez",
                    "email": "ana@example.com",
                    "phone_number": "3001234567",
                    "address": {"department": "Antioquia", "city": "Medellin", "additional": "Cra 1"},
                },
            }
        }
    )


def test_approved_charge_completes_order_and_converts_cart(
    payment_service, order, card_payload, cart_sessions, notifications, db, user
):
    result = payment_service.process_payment(order.id, user.id, card_payload)

    assert result["state"] == PaymentState.APPROVED.value
    assert result["order_state"] == OrderState.PAYMENT_COMPLETED.value
    assert result["transaction_id"].startswith("tr-")

    cart = payment_service.carts.get_cart(order.cart_id)
    assert cart.status == CartStatus.CONVERTED.value
    assert cart_sessions.get_session(cart.session_token) is None
    assert notifications.sent == [(user.id, order.id, OrderState.PAYMENT_COMPLETED.value)]


def test_charge_amount_comes_from_order(payment_service, order, card_payload, script, user):
    payment_service.process_payment(order.id, user.id, card_payload)

    request = script.requests[-1]
    assert request.amount == order.total_amount
    assert request.currency == order.currency
    assert request.reference.startswith(f"{order.id}-")


def test_declined_charge_fails_order_and_allows_retry(payment_service, order, card_payload, script, user):
    script.charge = PaymentDeclinedError("Card declined", provider="OPENPAY", provider_status=402)

    with pytest.raises(PaymentDeclinedError):
        payment_service.process_payment(order.id, user.id, card_payload)

    payment = payment_service.payments.get_pending_for_order(order.id)
    assert payment is None
    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_FAILED.value

    script.charge = lambda request: PaymentResult(f"tr-{request.reference}", PaymentState.APPROVED)
    result = payment_service.process_payment(order.id, user.id, card_payload)
    assert result["order_state"] == OrderState.PAYMENT_COMPLETED.value


def test_ambiguous_error_leaves_payment_pending(payment_service, order, card_payload, script, db, user):
    script.charge = PaymentGatewayError("Payment gateway timeout", provider="OPENPAY")

    with pytest.raises(PaymentGatewayError) as exc:
        payment_service.process_payment(order.id, user.id, card_payload)
    assert exc.value.ambiguous

    payment = payment_service.payments.get_pending_for_order(order.id)
    assert payment.state == PaymentState.PENDING.value
    assert payment.error_message == "Payment gateway timeout"
    assert payment_service.orders.get_order(order.id).state == OrderState.PENDING.value

    with pytest.raises(PaymentInProgressError):
        payment_service.process_payment(order.id, user.id, card_payload)
    with pytest.raises(PaymentInProgressError):
        OrderService(db).cancel_order(order.id, user.id)


def test_pse_redirect_keeps_order_pending(
    payment_service, cart_service, checkout_service, catalog, script, user
):
    cart_service.add_item(user.id, None, catalog["b"].id, 1)
    session = checkout_service.initiate(user.id)
    checkout_service.set_delivery(session["id"], user.id, "PICKUP", agency_id=catalog["agency"].id)
    checkout_service.set_payment_method(session["id"], user.id, catalog["pse"].id)
    order = checkout_service.create_order(session["id"], user.id)
    script.charge = lambda request: PaymentResult(
        f"tr-{request.reference}", PaymentState.PENDING, redirect_url="https://bank.example.com/pse"
    )

    result = payment_service.process_payment(order.id, user.id, _pse_payload())

    assert result["state"] == PaymentState.PENDING.value
    assert result["redirect_url"] == "https://bank.example.com/pse"
    assert result["order_state"] == OrderState.PENDING.value
    assert script.requests[-1].customer.address["city"] == "Medellin"


def test_payment_data_must_match_method(payment_service, order, user):
    with pytest.raises(InvalidPaymentDataError):
        payment_service.process_payment(order.id, user.id, _pse_payload())


def test_foreign_order_is_denied(payment_service, order, card_payload, seed):
    intruder = seed.user(email="intruso@example.com")
    with pytest.raises(AccessDeniedError):
        payment_service.process_payment(order.id, intruder.id, card_payload)


def test_paid_order_is_not_payable_again(payment_service, order, card_payload, user):
    payment_service.process_payment(order.id, user.id, card_payload)
    with pytest.raises(OrderNotPayableError):
        payment_service.process_payment(order.id, user.id, card_payload)


def test_late_failure_does_not_undo_completed_order(payment_service, order, card_payload, user):
    result = payment_service.process_payment(order.id, user.id, card_payload)

    event = WebhookEvent(GatewayProvider.OPENPAY, "charge.failed", result["transaction_id"], PaymentState.FAILED)
    assert payment_service.apply_webhook_event(event)

    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_COMPLETED.value


def test_webhook_is_applied_once(payment_service, order, card_payload, script, notifications, user):
    script.charge = lambda request: PaymentResult(f"tr-{request.reference}", PaymentState.PENDING)
    result = payment_service.process_payment(order.id, user.id, card_payload)
    event = WebhookEvent(GatewayProvider.OPENPAY, "charge.succeeded", result["transaction_id"], PaymentState.APPROVED)

    assert payment_service.apply_webhook_event(event) is True
    assert payment_service.apply_webhook_event(event) is False

    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_COMPLETED.value
    assert len(notifications.sent) == 1


def test_verify_transaction_applies_gateway_state(payment_service, order, card_payload, script, user):
    script.charge = lambda request: PaymentResult(f"tr-{request.reference}", PaymentState.PENDING)
    result = payment_service.process_payment(order.id, user.id, card_payload)
    script.verify = lambda transaction_id: PaymentResult(transaction_id, PaymentState.APPROVED)

    status = payment_service.verify_transaction(result["transaction_id"], user.id)

    assert status == {
        "transaction_id": result["transaction_id"],
        "status": PaymentState.APPROVED.value,
        "order_id": order.id,
        "order_state": OrderState.PAYMENT_COMPLETED.value,
    }


def test_reconcile_resolves_stuck_payments(payment_service, order, card_payload, script, db, user):
    script.charge = PaymentGatewayError("Payment gateway timeout", provider="OPENPAY")
    with pytest.raises(PaymentGatewayError):
        payment_service.process_payment(order.id, user.id, card_payload)
    script.lookup = lambda reference: PaymentResult(f"tr-{reference}", PaymentState.APPROVED)

    assert payment_service.reconcile_pending(now=LATER) == 1

    payment = db.query(PaymentModel).filter_by(order_id=order.id).one()
    assert payment.state == PaymentState.APPROVED.value
    assert payment.transaction_id == f"tr-{payment.reference}"
    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_COMPLETED.value


def test_reconcile_closes_charge_unknown_to_gateway(payment_service, order, card_payload, script, db, user):
    script.charge = PaymentGatewayError("Payment gateway timeout", provider="OPENPAY")
    with pytest.raises(PaymentGatewayError):
        payment_service.process_payment(order.id, user.id, card_payload)

    assert payment_service.reconcile_pending(now=LATER) == 1

    payment = db.query(PaymentModel).filter_by(order_id=order.id).one()
    assert payment.state == PaymentState.FAILED.value
    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_FAILED.value


def test_reconcile_ignores_recent_payments(payment_service, order, card_payload, script, user):
    script.charge = PaymentGatewayError("Payment gateway timeout", provider="OPENPAY")
    with pytest.raises(PaymentGatewayError):
        payment_service.process_payment(order.id, user.id, card_payload)

    assert payment_service.reconcile_pending() == 0
    assert payment_service.payments.get_pending_for_order(order.id) is not None


def test_reconcile_closes_unresolvable_payment_for_manual_review(
    payment_service, order, card_payload, script, db, user
):
    script.charge = PaymentGatewayError("Payment gateway timeout", provider="OPENPAY")
    with pytest.raises(PaymentGatewayError):
        payment_service.process_payment(order.id, user.id, card_payload)
    script.lookup = UnsupportedCapabilityError(FIND_BY_REFERENCE, "OPENPAY")

    # swieza platnosc bez mozliwosci sprawdzenia czeka
    assert payment_service.reconcile_pending(now=LATER) == 0
    assert payment_service.payments.get_pending_for_order(order.id) is not None

    assert payment_service.reconcile_pending(now=MUCH_LATER) == 1

    payment = db.query(PaymentModel).filter_by(order_id=order.id).one()
    assert payment.state == PaymentState.FAILED.value
    assert payment.state_description == MANUAL_REVIEW_DESCRIPTION
    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_FAILED.value

    script.charge = lambda request: PaymentResult(f"tr-{request.reference}", PaymentState.APPROVED)
    result = payment_service.process_payment(order.id, user.id, card_payload)
    assert result["order_state"] == OrderState.PAYMENT_COMPLETED.value


def test_unresolved_payment_does_not_block_cancel_forever(payment_service, order, card_payload, script, db, user):
    script.charge = PaymentGatewayError("Payment gateway timeout", provider="OPENPAY")
    with pytest.raises(PaymentGatewayError):
        payment_service.process_payment(order.id, user.id, card_payload)
    script.lookup = PaymentGatewayError("Payment gateway unavailable", provider="OPENPAY")

    payment_service.reconcile_pending(now=MUCH_LATER)

    cancelled = OrderService(db).cancel_order(order.id, user.id)
    assert cancelled.state == OrderState.CANCELLED.value


def test_late_pending_event_does_not_reopen_approved_payment(payment_service, order, card_payload, db, user):
    result = payment_service.process_payment(order.id, user.id, card_payload)

    event = WebhookEvent(GatewayProvider.OPENPAY, "charge.created", result["transaction_id"], PaymentState.PENDING)
    payment_service.apply_webhook_event(event)

    payment = db.query(PaymentModel).filter_by(order_id=order.id).one()
    assert payment.state == PaymentState.APPROVED.value
    assert payment_service.payments.get_pending_for_order(order.id) is None
    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_COMPLETED.value


def test_approved_payment_can_still_be_refunded(payment_service, order, card_payload, db, user):
    result = payment_service.process_payment(order.id, user.id, card_payload)

    event = WebhookEvent(GatewayProvider.OPENPAY, "charge.refunded", result["transaction_id"], PaymentState.REFUNDED)
    payment_service.apply_webhook_event(event)

    payment = db.query(PaymentModel).filter_by(order_id=order.id).one()
    assert payment.state == PaymentState.REFUNDED.value
    assert payment_service.orders.get_order(order.id).state == OrderState.REFUNDED.value


def test_decline_in_response_body_raises_declined(payment_service, order, card_payload, script, db, user):
    script.charge = lambda request: PaymentResult(
        f"tr-{request.reference}", PaymentState.REJECTED, description="Fondos insuficientes"
    )

    with pytest.raises(PaymentDeclinedError) as exc:
        payment_service.process_payment(order.id, user.id, card_payload)
    assert exc.value.details["provider_message"] == "Fondos insuficientes"

    payment = db.query(PaymentModel).filter_by(order_id=order.id).one()
    assert payment.state == PaymentState.REJECTED.value
    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_FAILED.value


def test_notification_failure_keeps_payment_successful(payment_service, order, card_payload, user, monkeypatch):
    def broker_down(user_id, order_id, state):
        raise ConnectionError("broker unavailable")

    monkeypatch.setattr(payment_service.notifications, "send_order_notification", broker_down)

    result = payment_service.process_payment(order.id, user.id, card_payload)

    assert result["order_state"] == OrderState.PAYMENT_COMPLETED.value
    assert payment_service.orders.get_order(order.id).state == OrderState.PAYMENT_COMPLETED.value
