from datetime import datetime, timedelta, timezone

import pytest

from storefront.data.models.payment import PaymentModel
from storefront.domain.errors import PaymentGatewayError
from storefront.domain.types import OrderState, PaymentState
from storefront.gateways.base import PaymentResult
from storefront.services.notification_service import NotificationService, send_order_notification_task
from storefront.tasks import reconcile


def test_notification_task_runs_eagerly():
    result = send_order_notification_task.delay(1, 2, "PAYMENT_COMPLETED")
    assert result.get() == {"user_id": 1, "order_id": 2, "state": "PAYMENT_COMPLETED", "status": "sent"}

    NotificationService.send_order_notification(1, 2, "PAYMENT_COMPLETED")


def test_reconcile_task_uses_fresh_session_and_store(
    monkeypatch, session_factory, store, factories, script, checkout_service, ready_checkout, payment_service,
    card_payload, db, user,
):
    order = checkout_service.create_order(ready_checkout["id"], user.id)
    script.charge = PaymentGatewayError("Payment gateway timeout", provider="OPENPAY")
    with pytest.raises(PaymentGatewayError):
        payment_service.process_payment(order.id, user.id, card_payload)
    # platnosc "sprzed" 10 minut
    db.query(PaymentModel).update({"created_at": datetime.now(timezone.utc) - timedelta(minutes=10)})
    db.commit()
    script.lookup = lambda reference: PaymentResult(f"tr-{reference}", PaymentState.APPROVED)

    original_registry = reconcile.GatewayRegistry
    monkeypatch.setattr(reconcile, "SessionLocal", session_factory)
    monkeypatch.setattr(reconcile, "SessionStore", lambda: store)
    monkeypatch.setattr(reconcile, "GatewayRegistry", lambda catalog: original_registry(catalog, factories=factories))

    assert reconcile.reconcile_pending_payments_task.delay().get() == {"resolved": 1}

    db.expire_all()
    assert db.get(type(order), order.id).state == OrderState.PAYMENT_COMPLETED.value
