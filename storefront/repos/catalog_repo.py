# storefront/repos/catalog_repo.py
"""
Odczyty danych, ktorych rdzen nie jest wlascicielem: produkty, promocje,
adresy, agencje, konfiguracja metod platnosci i bramek.
"""
from datetime import datetime
from typing import Dict, List, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from storefront.data.models.catalog import ProductModel, PromotionModel
from storefront.data.models.delivery import AddressModel, AgencyModel
from storefront.data.models.payment_config import GatewayConfigModel, PaymentMethodConfigModel


class CatalogRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_products(self, product_ids: Sequence[int]) -> Dict[int, ProductModel]:
        if not product_ids:
            return {}
        rows = self.db.execute(
            select(ProductModel).where(ProductModel.id.in_(set(product_ids)))
        ).scalars()
        return {p.id: p for p in rows}

    def get_active_promotions(self, product_ids: Sequence[int], now: datetime) -> List[PromotionModel]:
        # stale (bez dat) albo sporadyczne obowiazujace teraz, filtr po stronie SQL
        if not product_ids:
            return []
        return list(
            self.db.execute(
                select(PromotionModel).where(
                    PromotionModel.product_id.in_(set(product_ids)),
                    PromotionModel.state == "ACTIVE",
                    or_(
                        and_(PromotionModel.start_date.is_(None), PromotionModel.end_date.is_(None)),
                        and_(PromotionModel.start_date <= now, PromotionModel.end_date >= now),
                    ),
                )
            ).scalars()
        )

    def get_address(self, address_id: int) -> AddressModel | None:
        return self.db.get(AddressModel, address_id)

    def get_agency(self, agency_id: int) -> AgencyModel | None:
        return self.db.get(AgencyModel, agency_id)

    def get_payment_method(self, payment_method_id: int) -> PaymentMethodConfigModel | None:
        return self.db.get(PaymentMethodConfigModel, payment_method_id)

    def list_enabled_payment_methods(self) -> List[PaymentMethodConfigModel]:
        return list(
            self.db.execute(
                select(PaymentMethodConfigModel)
                .join(GatewayConfigModel, PaymentMethodConfigModel.gateway_config_id == GatewayConfigModel.id)
                .where(
                    PaymentMethodConfigModel.enabled.is_(True),
                    GatewayConfigModel.is_active.is_(True),
                )
                .order_by(PaymentMethodConfigModel.id)
            ).scalars()
        )

    def list_active_gateway_configs(self) -> List[GatewayConfigModel]:
        return list(
            self.db.execute(
                select(GatewayConfigModel).where(GatewayConfigModel.is_active.is_(True))
            ).scalars()
        )

