# storefront/data/models/payment.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, Text, UniqueConstraint

from storefront.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    payment_method_id = Column(Integer, ForeignKey("payment_method_configs.id"), nullable=False)
    gateway = Column(String(20), nullable=False)

    # nasza referencja (wysylana do bramki jako order_id), unikalna
    reference = Column(String(64), nullable=False, unique=True)
    # id transakcji po stronie bramki, znane dopiero po odpowiedzi
    transaction_id = Column(String(128), nullable=True, unique=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    state = Column(String(20), nullable=False, default="PENDING")
    state_description = Column(String(255), nullable=True)
    redirect_url = Column(String(1024), nullable=True)
    gateway_response = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)


class WebhookEventModel(Base):
    """Przetworzone powiadomienia bramek, klucz deduplikacji."""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    provider = Column(String(20), nullable=False)
    dedup_key = Column(String(255), nullable=False)
    event_type = Column(String(64), nullable=False)
    transaction_id = Column(String(128), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("provider", "dedup_key", name="u_webhook_provider_key"),)
