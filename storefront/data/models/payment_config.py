# storefront/data/models/payment_config.py
import json

from sqlalchemy import Column, Integer, ForeignKey, String, Text, Numeric, Boolean
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class GatewayConfigModel(Base):
    __tablename__ = "gateway_configs"

    id = Column(Integer, primary_key=True)
    gateway = Column(String(20), nullable=False)  # OPENPAY, GOU
    name = Column(String(100), nullable=False)
    # json: api_key, api_secret, endpoint, webhook_url, webhook_secret
    config = Column(Text, nullable=False, default="{}")
    is_active = Column(Boolean, nullable=False, default=False)
    test_mode = Column(Boolean, nullable=False, default=True)

    def get_config(self) -> dict:
        if isinstance(self.config, dict):
            return self.config
        return json.loads(self.config or "{}")


class PaymentMethodConfigModel(Base):
    __tablename__ = "payment_method_configs"

    id = Column(Integer, primary_key=True)
    type = Column(String(20), nullable=False)  # CREDIT_CARD, PSE, ...
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=False)
    min_amount = Column(Numeric(12, 2), nullable=True)
    max_amount = Column(Numeric(12, 2), nullable=True)
    payment_gateway = Column(String(20), nullable=False)
    gateway_config_id = Column(Integer, ForeignKey("gateway_configs.id"), nullable=False)

    gateway_config = relationship("GatewayConfigModel")
