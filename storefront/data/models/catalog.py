# storefront/data/models/catalog.py
from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, Boolean
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    promotions = relationship("PromotionModel", back_populates="product")


class PromotionModel(Base):
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    # procent rabatu od ceny jednostkowej
    discount = Column(Numeric(5, 2), nullable=False)
    state = Column(String(20), nullable=False, default="ACTIVE")
    # bez dat = promocja stala, z datami = sporadyczna (ma pierwszenstwo)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    product = relationship("ProductModel", back_populates="promotions")
