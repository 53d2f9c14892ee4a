# storefront/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from storefront.domain.types import DeliveryType, PaymentMethodType


# ---------------- koszyk ----------------
class ItemIn(BaseModel):
    """Schema dla dodawania produktu do koszyka."""

    product_id: int = Field(..., gt=0, description="ID produktu (musi byc > 0)")
    quantity: int = Field(..., gt=0, description="Ilosc produktu (musi byc > 0)")


class ItemUpdateIn(BaseModel):
    """Nowa ilosc pozycji, 0 usuwa pozycje."""

    quantity: int = Field(..., ge=0)


class CartItemOut(BaseModel):
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    promotion_id: Optional[int] = None


class CartOut(BaseModel):
    """Schema dla koszyka (response). Pusty koszyk ma cart_id = None."""

    cart_id: Optional[int] = None
    session_token: Optional[str] = None
    user_id: Optional[int] = None
    status: Optional[str] = None
    items: List[CartItemOut] = []
    item_count: int = 0
    subtotal: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    expires_at: Optional[datetime] = None


# ---------------- checkout ----------------
class DeliveryIn(BaseModel):
    delivery_type: DeliveryType
    address_id: Optional[int] = Field(None, gt=0)
    agency_id: Optional[int] = Field(None, gt=0)


class PaymentMethodIn(BaseModel):
    payment_method_id: int = Field(..., gt=0)


class CheckoutSessionOut(BaseModel):
    id: str
    cart_id: int
    user_id: int
    step: str
    next_step: Optional[str] = None
    delivery_type: Optional[DeliveryType] = None
    delivery_address_id: Optional[int] = None
    pickup_agency_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    order_id: Optional[int] = None
    created_at: datetime
    expires_at: datetime


class CheckoutStatusOut(BaseModel):
    status: str
    next_step: Optional[str] = None
    session: Optional[CheckoutSessionOut] = None


class OrderLineOut(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    final_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Schema dla zamowienia (response)."""

    id: int
    cart_id: int
    user_id: int
    checkout_session_id: str
    delivery_type: str
    delivery_address_id: Optional[int] = None
    pickup_agency_id: Optional[int] = None
    payment_method_id: int
    state: str
    subtotal_amount: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    lines: List[OrderLineOut] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------- platnosci ----------------
class CustomerAddressIn(BaseModel):
    department: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    additional: str = Field(..., min_length=1)


class CustomerIn(BaseModel):
    name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone_number: str = Field(..., min_length=7)
    requires_account: bool = False
    address: Optional[CustomerAddressIn] = None


class CardPaymentIn(BaseModel):
    token_id: str = Field(..., min_length=1)
    device_session_id: str = Field(..., min_length=1)
    customer: CustomerIn


class PSEPaymentIn(BaseModel):
    redirect_url: str = Field(..., min_length=1)
    customer: CustomerIn

    @model_validator(mode="after")
    def require_address(self):
        if self.customer.address is None:
            raise ValueError("PSE requires customer address")
        return self


class ProcessPaymentIn(BaseModel):
    """Dokladnie jedno z card / pse, zgodne z typem metody platnosci zamowienia."""

    card: Optional[CardPaymentIn] = None
    pse: Optional[PSEPaymentIn] = None

    @model_validator(mode="after")
    def exactly_one(self):
        if (self.card is None) == (self.pse is None):
            raise ValueError("Provide exactly one of card or pse payment data")
        return self

    @property
    def method_type(self) -> PaymentMethodType:
        return PaymentMethodType.CREDIT_CARD if self.card is not None else PaymentMethodType.PSE


class CardAddressIn(BaseModel):
    line1: str
    line2: Optional[str] = None
    line3: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country_code: str = Field("CO", min_length=2, max_length=2)


class CardTokenIn(BaseModel):
    payment_method_id: int = Field(..., gt=0)
    card_number: str = Field(..., min_length=12, max_length=19)
    holder_name: str = Field(..., min_length=1)
    expiration_year: str = Field(..., min_length=2, max_length=4)
    expiration_month: str = Field(..., min_length=1, max_length=2)
    cvv2: str = Field(..., min_length=3, max_length=4)
    address: Optional[CardAddressIn] = None


class CardTokenOut(BaseModel):
    id: str
    card_number: str
    holder_name: str
    brand: Optional[str] = None
    bank_name: Optional[str] = None


class BankOut(BaseModel):
    id: str
    name: str
    code: str
    status: str


class PaymentOut(BaseModel):
    id: int
    order_id: int
    reference: str
    transaction_id: Optional[str] = None
    gateway: str
    state: str
    state_description: Optional[str] = None
    amount: Decimal
    currency: str
    redirect_url: Optional[str] = None
    order_state: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionStatusOut(BaseModel):
    transaction_id: str
    status: str
    order_id: Optional[int] = None
    order_state: Optional[str] = None


class PaymentMethodOut(BaseModel):
    id: int
    type: PaymentMethodType
    name: str
    description: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    payment_gateway: str

    model_config = ConfigDict(from_attributes=True)


# ---------------- uzytkownicy ----------------
class UserCreate(BaseModel):
    """Schema dla rejestracji uzytkownika."""

    name: str = Field(..., min_length=1, max_length=100, description="Imie uzytkownika")
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserRead(BaseModel):
    """Schema dla uzytkownika (response)."""

    id: int
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
    cart_id: Optional[int] = None


class SessionOut(BaseModel):
    # sam token nigdy nie wraca do klienta
    id: str
    token_hint: str
    user_id: int
    created_at: datetime
    expires_at: datetime


class CartSessionOut(SessionOut):
    cart_id: int
