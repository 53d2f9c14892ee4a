from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # jedna sesja checkoutu = max jedno zamowienie
    checkout_session_id = Column(String(64), nullable=False, unique=True)

    delivery_type = Column(String(20), nullable=False)  # SHIPPING, PICKUP
    delivery_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=True)
    pickup_agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=True)
    payment_method_id = Column(Integer, ForeignKey("payment_method_configs.id"), nullable=False)

    state = Column(String(30), nullable=False, default="PENDING")

    subtotal_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="COP")

    last_payment_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    lines = relationship("OrderLineModel", back_populates="order", cascade="all, delete-orphan")
    payment_method = relationship("PaymentMethodConfigModel")

    __table_args__ = (
        CheckConstraint(
            "(delivery_address_id IS NULL) <> (pickup_agency_id IS NULL)",
            name="ck_order_single_delivery_target",
        ),
        CheckConstraint(
            "subtotal_amount >= 0 AND discount_amount >= 0 AND shipping_amount >= 0 "
            "AND tax_amount >= 0 AND total_amount >= 0",
            name="ck_order_amounts_non_negative",
        ),
    )


class OrderLineModel(Base):
    """Snapshot pozycji koszyka w chwili tworzenia zamowienia."""
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    promotion_id = Column(Integer, ForeignKey("promotions.id"), nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    final_amount = Column(Numeric(12, 2), nullable=False)

    order = relationship("OrderModel", back_populates="lines")
