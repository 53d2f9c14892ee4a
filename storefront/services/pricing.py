# storefront/services/pricing.py
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List

from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.catalog import ProductModel, PromotionModel

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass
class PricedLine:
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    promotion_id: int | None = None


@dataclass
class CartSummary:
    lines: List[PricedLine] = field(default_factory=list)
    item_count: int = 0
    subtotal: Decimal = ZERO
    discount: Decimal = ZERO
    shipping: Decimal = ZERO
    tax: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount + self.shipping + self.tax


def pick_promotion(promotions: Iterable[PromotionModel], now: datetime) -> PromotionModel | None:
    """
    Sporadyczna (z datami, obowiazujaca teraz) wygrywa ze stala (bez dat).
    W obrebie grupy wieksza znizka.
    """
    sporadic, permanent = [], []
    for promo in promotions:
        if promo.start_date is None and promo.end_date is None:
            permanent.append(promo)
        elif promo.start_date is not None and promo.end_date is not None:
            sporadic.append(promo)
    candidates = sporadic or permanent
    if not candidates:
        return None
    return max(candidates, key=lambda p: (Decimal(str(p.discount)), p.id))


def price_cart(
    items: Iterable[CartItemModel],
    products: Dict[int, ProductModel],
    promotions: Iterable[PromotionModel],
    now: datetime,
) -> CartSummary:
    # promocje przychodza juz przefiltrowane po dacie/stanie z repo
    by_product: Dict[int, List[PromotionModel]] = {}
    for promo in promotions:
        by_product.setdefault(promo.product_id, []).append(promo)

    summary = CartSummary()
    for item in items:
        product = products[item.product_id]
        unit_price = money(product.price)
        subtotal = money(unit_price * item.quantity)

        promo = pick_promotion(by_product.get(item.product_id, []), now)
        discount = ZERO
        if promo is not None:
            discount = min(money(subtotal * Decimal(str(promo.discount)) / Decimal(100)), subtotal)

        summary.lines.append(
            PricedLine(
                product_id=item.product_id,
                name=product.name,
                quantity=item.quantity,
                unit_price=unit_price,
                subtotal=subtotal,
                discount_amount=discount,
                final_amount=subtotal - discount,
                promotion_id=promo.id if promo is not None else None,
            )
        )
        summary.item_count += item.quantity
        summary.subtotal += subtotal
        summary.discount += discount

    return summary
