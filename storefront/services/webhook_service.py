# storefront/services/webhook_service.py
from typing import Any, Dict, Mapping

from storefront.domain.types import GatewayProvider
from storefront.gateways.base import VERIFICATION_EVENT, VERIFY_WEBHOOK
from storefront.gateways.registry import GatewayRegistry
from storefront.services.payment_service import PaymentService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class WebhookService:
    """
    Powiadomienia bramek: najpierw podpis, potem parsowanie, potem ten sam
    kod co przy synchronicznym wyniku (PaymentService). Duplikaty ignorowane.
    """

    def __init__(self, registry: GatewayRegistry, payment_service: PaymentService):
        self.registry = registry
        self.payment_service = payment_service

    def handle(self, provider: GatewayProvider | str, body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        gateway = self.registry.for_provider(provider)
        gateway.require(VERIFY_WEBHOOK)
        gateway.verify_webhook(body, headers)

        event = gateway.parse_webhook(body)
        if event.event_type == VERIFICATION_EVENT:
            logger.info(f"{gateway.provider.value} webhook verification request")
            return {"status": "verified"}

        logger.info(
            f"{gateway.provider.value} webhook {event.event_type} for transaction {event.transaction_id}"
        )
        applied = self.payment_service.apply_webhook_event(event)
        return {"status": "processed" if applied else "duplicate"}
