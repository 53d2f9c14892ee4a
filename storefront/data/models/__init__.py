# import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from storefront.data.models.user import UserModel
from storefront.data.models.catalog import ProductModel, PromotionModel
from storefront.data.models.delivery import AddressModel, AgencyModel
from storefront.data.models.payment_config import GatewayConfigModel, PaymentMethodConfigModel
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.order import OrderModel, OrderLineModel
from storefront.data.models.payment import PaymentModel, WebhookEventModel

__all__ = [
    "UserModel",
    "ProductModel",
    "PromotionModel",
    "AddressModel",
    "AgencyModel",
    "GatewayConfigModel",
    "PaymentMethodConfigModel",
    "CartModel",
    "CartItemModel",
    "OrderModel",
    "OrderLineModel",
    "PaymentModel",
    "WebhookEventModel",
]
