# storefront/gateways/openpay.py
import base64
import hashlib
import hmac
import json
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, List, Mapping

from storefront.domain.errors import UnsupportedWebhookEventError, WebhookVerificationError
from storefront.domain.types import GatewayProvider, PaymentState
from storefront.gateways.base import (
    CHARGE_CARD,
    CREATE_CARD_TOKEN,
    FIND_BY_REFERENCE,
    GET_BANKS,
    PROCESS_PSE_PAYMENT,
    VERIFY_TRANSACTION,
    VERIFY_WEBHOOK,
    VERIFICATION_EVENT,
    Bank,
    CardChargeRequest,
    CardToken,
    CardTokenRequest,
    Customer,
    PaymentGateway,
    PaymentResult,
    PSEPaymentRequest,
    WebhookEvent,
)
from storefront.utils.logging import get_logger
from storefront.utils.settings import OPENPAY_WEBHOOK_PASSWORD, OPENPAY_WEBHOOK_USER

logger = get_logger(__name__)

# status OpenPay -> wspolny slownik
STATUS_MAP = {
    "completed": PaymentState.APPROVED,
    "in_progress": PaymentState.PENDING,
    "charge_pending": PaymentState.PENDING,
    "failed": PaymentState.REJECTED,
    "cancelled": PaymentState.CANCELLED,
    "refunded": PaymentState.REFUNDED,
}

# w webhookach OpenPay wysyla tez timeout/error
WEBHOOK_STATUS_MAP = {
    **STATUS_MAP,
    "failed": PaymentState.FAILED,
    "timeout": PaymentState.FAILED,
    "error": PaymentState.FAILED,
}

WEBHOOK_EVENTS = frozenset({
    "charge.succeeded",
    "charge.failed",
    "charge.cancelled",
    "charge.created",
    "charge.refunded",
    "chargeback.accepted",
})

SIGNATURE_HEADER = "x-openpay-signature"
IVA = "19"


class OpenPayGateway(PaymentGateway):
    provider = GatewayProvider.OPENPAY
    capabilities = frozenset({
        CREATE_CARD_TOKEN,
        CHARGE_CARD,
        PROCESS_PSE_PAYMENT,
        VERIFY_TRANSACTION,
        FIND_BY_REFERENCE,
        GET_BANKS,
        VERIFY_WEBHOOK,
    })

    def __init__(self, config: Mapping[str, Any], **kwargs):
        super().__init__(config, **kwargs)
        missing = [k for k in ("api_key", "api_secret", "endpoint") if not self.config.get(k)]
        if missing:
            raise ValueError(f"Missing OpenPay configuration: {', '.join(missing)}")
        self.merchant_id = self.config["api_key"]
        self.api_secret = self.config["api_secret"]
        self.base_url = f"{self.config['endpoint'].rstrip('/')}/v1/{self.merchant_id}"
        self.webhook_secret = self.config.get("webhook_secret") or self.api_secret
        self.webhook_user = self.config.get("webhook_user", OPENPAY_WEBHOOK_USER)
        self.webhook_password = self.config.get("webhook_password", OPENPAY_WEBHOOK_PASSWORD)
        # Basic auth: sekret jako user, puste haslo
        self.http.auth = (self.api_secret, "")

    # ---------------- capabilities ----------------
    def create_card_token(self, request: CardTokenRequest) -> CardToken:
        payload = {
            "card_number": request.card_number,
            "holder_name": request.holder_name,
            "expiration_year": request.expiration_year,
            "expiration_month": request.expiration_month,
            "cvv2": request.cvv2,
        }
        if request.address:
            payload["address"] = request.address
        data = self._send("POST", f"{self.base_url}/tokens", charge=True, json=payload)
        card = data.get("card") if isinstance(data, dict) else None
        if not isinstance(card, dict) or not isinstance(data.get("id"), str):
            raise self._malformed("token")
        return CardToken(
            id=data["id"],
            card_number=card.get("card_number", ""),
            holder_name=card.get("holder_name", ""),
            brand=card.get("brand"),
            bank_name=card.get("bank_name"),
        )

    def charge_card(self, request: CardChargeRequest) -> PaymentResult:
        payload = {
            "method": "card",
            "source_id": request.token_id,
            "amount": self._amount(request.amount, request.currency),
            "currency": request.currency,
            "description": request.description,
            "order_id": request.reference,
            "device_session_id": request.device_session_id,
            "iva": IVA,
            "customer": self._customer(request.customer, with_address=False),
        }
        logger.info(f"OpenPay card charge for {request.reference}, amount {payload['amount']} {request.currency}")
        data = self._send("POST", f"{self.base_url}/charges", charge=True, json=payload)
        return self._result(data)

    def process_pse_payment(self, request: PSEPaymentRequest) -> PaymentResult:
        payload = {
            "method": "bank_account",
            "amount": self._amount(request.amount, request.currency),
            "currency": request.currency,
            "description": request.description,
            "order_id": request.reference,
            "iva": IVA,
            "redirect_url": request.redirect_url,
            "customer": self._customer(request.customer, with_address=True),
        }
        logger.info(f"OpenPay PSE charge for {request.reference}, amount {payload['amount']} {request.currency}")
        data = self._send("POST", f"{self.base_url}/charges", charge=True, json=payload)
        return self._result(data)

    def verify_transaction(self, transaction_id: str) -> PaymentResult:
        data = self._send("GET", f"{self.base_url}/charges/{transaction_id}", idempotent=True)
        return self._result(data)

    def find_by_reference(self, reference: str) -> PaymentResult | None:
        data = self._send("GET", f"{self.base_url}/charges", idempotent=True, params={"order_id": reference})
        if not isinstance(data, list):
            raise self._malformed("charge list")
        if not data:
            return None
        return self._result(data[0])

    def get_banks(self) -> List[Bank]:
        data = self._send("GET", f"{self.base_url}/pse_banks", idempotent=True)
        if not isinstance(data, list):
            raise self._malformed("bank list")
        return [
            Bank(
                id=str(b.get("id")),
                name=b.get("name", ""),
                code=str(b.get("bank_code", "")),
                status="active" if b.get("status") == "active" else "inactive",
            )
            for b in data
            if isinstance(b, dict)
        ]

    # ---------------- webhooks ----------------
    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> None:
        headers = {k.lower(): v for k, v in headers.items()}

        if self.webhook_user:
            if not self._check_basic_auth(headers.get("authorization", "")):
                raise WebhookVerificationError("Invalid webhook credentials")

        signature = headers.get(SIGNATURE_HEADER)
        if not signature:
            raise WebhookVerificationError("Missing webhook signature")
        expected = hmac.new(self.webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(signature.strip().lower(), expected):
            raise WebhookVerificationError()

    def parse_webhook(self, body: bytes) -> WebhookEvent:
        try:
            data = json.loads(body or b"{}")
        except ValueError as e:
            raise UnsupportedWebhookEventError("Malformed webhook payload") from e
        if not isinstance(data, dict):
            raise UnsupportedWebhookEventError("Malformed webhook payload")

        event_type = data.get("type") or VERIFICATION_EVENT
        if event_type == VERIFICATION_EVENT:
            return WebhookEvent(self.provider, event_type, None, None, raw=data)
        if event_type not in WEBHOOK_EVENTS:
            raise UnsupportedWebhookEventError(event_type=event_type)

        transaction = data.get("transaction") or {}
        transaction_id = transaction.get("id")
        if not transaction_id:
            raise UnsupportedWebhookEventError("Webhook without transaction id", event_type=event_type)

        if event_type == "chargeback.accepted":
            state = PaymentState.REFUNDED
        else:
            state = WEBHOOK_STATUS_MAP.get(transaction.get("status"), PaymentState.FAILED)

        return WebhookEvent(
            provider=self.provider,
            event_type=event_type,
            transaction_id=str(transaction_id),
            state=state,
            description=transaction.get("status_description") or transaction.get("error_message"),
            raw=transaction,
        )

    # ---------------- helpers ----------------
    def _check_basic_auth(self, header: str) -> bool:
        if not header.startswith("Basic "):
            return False
        try:
            user, _, password = base64.b64decode(header[6:]).decode().partition(":")
        except ValueError:
            return False
        return hmac.compare_digest(user, self.webhook_user) and hmac.compare_digest(
            password, self.webhook_password
        )

    @staticmethod
    def _amount(amount: Decimal, currency: str) -> float | int:
        # COP bez groszy
        if currency == "COP":
            return int(Decimal(str(amount)).to_integral_value(rounding=ROUND_FLOOR))
        return float(amount)

    @staticmethod
    def _customer(customer: Customer, with_address: bool) -> Dict[str, Any]:
        data = {
            "name": customer.name,
            "last_name": customer.last_name,
            "email": customer.email,
            "phone_number": customer.phone_number,
            "requires_account": False if with_address else customer.requires_account,
        }
        if with_address and customer.address:
            data["customer_address"] = {
                "department": customer.address["department"],
                "city": customer.address["city"],
                "additional": customer.address["additional"],
            }
        return data

    def _result(self, data: Any) -> PaymentResult:
        if not isinstance(data, dict) or not isinstance(data.get("id"), str) or not isinstance(data.get("status"), str):
            raise self._malformed("charge")
        state = STATUS_MAP.get(data["status"])
        if state is None:
            raise self._malformed(f"unknown status {data['status']!r}")
        method = data.get("payment_method") or {}
        return PaymentResult(
            transaction_id=data["id"],
            state=state,
            amount=Decimal(str(data["amount"])) if data.get("amount") is not None else None,
            currency=data.get("currency"),
            redirect_url=method.get("url"),
            description=data.get("error_message") or data.get("description"),
            raw={k: v for k, v in data.items() if k not in ("card", "customer")},
        )
