# storefront/gateways/base.py
"""
Wspolny interfejs bramek platnosci. Kazda bramka implementuje podzbior
mozliwosci; reszta rzuca UnsupportedCapabilityError z nazwa mozliwosci
i dostawcy.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping

import requests

from storefront.domain.errors import PaymentDeclinedError, PaymentGatewayError, UnsupportedCapabilityError
from storefront.domain.types import GatewayProvider, PaymentState
from storefront.utils.logging import get_logger
from storefront.utils.retry import http_retry
from storefront.utils.settings import GATEWAY_TIMEOUT_SECONDS

logger = get_logger(__name__)

# nazwy mozliwosci
CREATE_CARD_TOKEN = "create_card_token"
CHARGE_CARD = "charge_card"
PROCESS_PSE_PAYMENT = "process_pse_payment"
VERIFY_TRANSACTION = "verify_transaction"
FIND_BY_REFERENCE = "find_by_reference"
GET_BANKS = "get_banks"
VERIFY_WEBHOOK = "verify_webhook"

# zdarzenie testowe przy rejestracji webhooka, bez transakcji
VERIFICATION_EVENT = "verification"


@dataclass
class Customer:
    name: str
    last_name: str
    email: str
    phone_number: str
    requires_account: bool = False
    address: Dict[str, str] | None = None


@dataclass
class CardTokenRequest:
    card_number: str
    holder_name: str
    expiration_year: str
    expiration_month: str
    cvv2: str
    address: Dict[str, Any] | None = None


@dataclass
class CardToken:
    id: str
    card_number: str
    holder_name: str
    brand: str | None = None
    bank_name: str | None = None


@dataclass
class CardChargeRequest:
    reference: str
    amount: Decimal
    currency: str
    description: str
    token_id: str
    device_session_id: str
    customer: Customer


@dataclass
class PSEPaymentRequest:
    reference: str
    amount: Decimal
    currency: str
    description: str
    redirect_url: str
    customer: Customer


@dataclass
class PaymentResult:
    transaction_id: str
    state: PaymentState
    amount: Decimal | None = None
    currency: str | None = None
    redirect_url: str | None = None
    description: str | None = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Bank:
    id: str
    name: str
    code: str
    status: str


@dataclass
class WebhookEvent:
    provider: GatewayProvider
    event_type: str
    transaction_id: str | None
    state: PaymentState | None
    description: str | None = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        return f"{self.transaction_id}:{self.event_type}"


class PaymentGateway:
    provider: GatewayProvider
    capabilities: FrozenSet[str] = frozenset()

    def __init__(
        self,
        config: Mapping[str, Any],
        test_mode: bool = True,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
        http: requests.Session | None = None,
    ):
        self.config = dict(config)
        self.test_mode = test_mode
        self.timeout = timeout
        self.http = http or requests.Session()

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def require(self, capability: str) -> None:
        if not self.supports(capability):
            raise UnsupportedCapabilityError(capability, self.provider.value)

    def get_gateway_info(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "mode": "test" if self.test_mode else "live",
            "endpoint": self.config.get("endpoint"),
            "capabilities": sorted(self.capabilities),
        }

    # domyslnie brak mozliwosci
    def create_card_token(self, request: CardTokenRequest) -> CardToken:
        raise UnsupportedCapabilityError(CREATE_CARD_TOKEN, self.provider.value)

    def charge_card(self, request: CardChargeRequest) -> PaymentResult:
        raise UnsupportedCapabilityError(CHARGE_CARD, self.provider.value)

    def process_pse_payment(self, request: PSEPaymentRequest) -> PaymentResult:
        raise UnsupportedCapabilityError(PROCESS_PSE_PAYMENT, self.provider.value)

    def verify_transaction(self, transaction_id: str) -> PaymentResult:
        raise UnsupportedCapabilityError(VERIFY_TRANSACTION, self.provider.value)

    def find_by_reference(self, reference: str) -> PaymentResult | None:
        raise UnsupportedCapabilityError(FIND_BY_REFERENCE, self.provider.value)

    def get_banks(self) -> List[Bank]:
        raise UnsupportedCapabilityError(GET_BANKS, self.provider.value)

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> None:
        raise UnsupportedCapabilityError(VERIFY_WEBHOOK, self.provider.value)

    def parse_webhook(self, body: bytes) -> WebhookEvent:
        raise UnsupportedCapabilityError(VERIFY_WEBHOOK, self.provider.value)

    # http
    @http_retry()
    def _idempotent_request(self, method: str, url: str, **kwargs) -> requests.Response:
        return self.http.request(method, url, timeout=self.timeout, **kwargs)

    def _send(self, method: str, url: str, idempotent: bool = False, charge: bool = False, **kwargs) -> Any:
        """
        Jedno wywolanie HTTP do bramki. Tylko odczyty (idempotent=True) sa ponawiane.
        timeout / blad sieci / 5xx / nieczytelna odpowiedz -> niejednoznaczne (PaymentGatewayError)
        4xx przy obciazeniu (charge=True) -> jednoznaczna odmowa (PaymentDeclinedError)
        """
        provider = self.provider.value
        try:
            if idempotent:
                response = self._idempotent_request(method, url, **kwargs)
            else:
                response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.warning(f"{provider} timeout on {method} {url}")
            raise PaymentGatewayError("Payment gateway timeout", provider=provider) from e
        except requests.RequestException as e:
            logger.warning(f"{provider} request error on {method} {url}: {e.__class__.__name__}")
            raise PaymentGatewayError("Payment gateway request failed", provider=provider) from e

        if response.status_code >= 500:
            raise PaymentGatewayError(
                "Payment gateway unavailable",
                provider=provider,
                provider_status=response.status_code,
                provider_message=self._error_message(response),
            )
        if response.status_code >= 400:
            if charge:
                raise PaymentDeclinedError(
                    "Payment rejected by gateway",
                    provider=provider,
                    provider_status=response.status_code,
                    provider_message=self._error_message(response),
                )
            raise PaymentGatewayError(
                "Payment gateway rejected the request",
                provider=provider,
                provider_status=response.status_code,
                provider_message=self._error_message(response),
                ambiguous=False,
            )
        try:
            return response.json()
        except ValueError as e:
            raise PaymentGatewayError(
                "Malformed gateway response",
                provider=provider,
                provider_status=response.status_code,
            ) from e

    def _error_message(self, response: requests.Response) -> str | None:
        try:
            data = response.json()
        except ValueError:
            return response.reason
        if isinstance(data, dict):
            return data.get("description") or data.get("error_message") or response.reason
        return response.reason

    def _malformed(self, what: str) -> PaymentGatewayError:
        return PaymentGatewayError(f"Malformed gateway response: {what}", provider=self.provider.value)
