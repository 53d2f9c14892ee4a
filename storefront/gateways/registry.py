# storefront/gateways/registry.py
from typing import Callable, Dict, Mapping, Tuple

import requests

from storefront.domain.errors import GatewayNotConfiguredError
from storefront.domain.types import GatewayProvider, PaymentMethodType
from storefront.gateways.base import PaymentGateway
from storefront.gateways.gou import GouGateway
from storefront.gateways.openpay import OpenPayGateway
from storefront.repos.catalog_repo import CatalogRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

GatewayFactory = Callable[..., PaymentGateway]

PROVIDERS: Dict[GatewayProvider, GatewayFactory] = {
    GatewayProvider.OPENPAY: OpenPayGateway,
    GatewayProvider.GOU: GouGateway,
}


class GatewayRegistry:
    """
    Tablica routingu {(typ metody, dostawca) -> bramka} budowana z aktywnej
    konfiguracji w bazie. Jedna instancja na request, ladowana leniwie.
    """

    def __init__(
        self,
        catalog: CatalogRepo,
        factories: Mapping[GatewayProvider, GatewayFactory] | None = None,
        http: requests.Session | None = None,
    ):
        self.catalog = catalog
        self.factories = dict(factories or PROVIDERS)
        self.http = http
        self._by_config: Dict[int, PaymentGateway] | None = None
        self._routes: Dict[Tuple[PaymentMethodType, GatewayProvider], PaymentGateway] = {}

    def refresh(self) -> None:
        self._by_config = None
        self._routes = {}

    def _load(self) -> None:
        if self._by_config is not None:
            return
        self._by_config = {}
        for cfg in self.catalog.list_active_gateway_configs():
            provider = GatewayProvider(cfg.gateway)
            factory = self.factories.get(provider)
            if factory is None:
                logger.error(f"No gateway implementation for provider {provider.value}")
                continue
            try:
                self._by_config[cfg.id] = factory(cfg.get_config(), test_mode=cfg.test_mode, http=self.http)
            except ValueError as e:
                logger.error(f"Gateway config {cfg.id} ({provider.value}) is invalid: {e}")

        for method in self.catalog.list_enabled_payment_methods():
            gateway = self._by_config.get(method.gateway_config_id)
            if gateway is None:
                continue
            key = (PaymentMethodType(method.type), GatewayProvider(method.payment_gateway))
            self._routes.setdefault(key, gateway)

    def get_gateway(self, method_type: PaymentMethodType | str, provider: GatewayProvider | str) -> PaymentGateway:
        self._load()
        key = (PaymentMethodType(method_type), GatewayProvider(provider))
        gateway = self._routes.get(key)
        if gateway is None:
            raise GatewayNotConfiguredError(method_type=key[0].value, provider=key[1].value)
        return gateway

    def for_provider(self, provider: GatewayProvider | str) -> PaymentGateway:
        """Bramka dostawcy niezaleznie od metody (weryfikacja, webhooki)."""
        self._load()
        try:
            provider = GatewayProvider(str(getattr(provider, "value", provider)).upper())
        except ValueError:
            raise GatewayNotConfiguredError(provider=str(provider)) from None
        for gateway in self._by_config.values():
            if gateway.provider == provider:
                return gateway
        raise GatewayNotConfiguredError(provider=provider.value)
