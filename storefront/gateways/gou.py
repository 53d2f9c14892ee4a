# storefront/gateways/gou.py
import base64
import hashlib
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping

from storefront.domain.types import GatewayProvider, PaymentState
from storefront.gateways.base import (
    CHARGE_CARD,
    FIND_BY_REFERENCE,
    VERIFY_TRANSACTION,
    CardChargeRequest,
    PaymentGateway,
    PaymentResult,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

STATUS_MAP = {
    "APPROVED": PaymentState.APPROVED,
    "PENDING": PaymentState.PENDING,
    "PENDING_VALIDATION": PaymentState.PENDING,
    "REJECTED": PaymentState.REJECTED,
    "FAILED": PaymentState.FAILED,
    "CANCELLED": PaymentState.CANCELLED,
    "REFUNDED": PaymentState.REFUNDED,
}


class GouGateway(PaymentGateway):
    """GOU (PlacetoPay gateway). Bez PSE, listy bankow i tokenizacji."""

    provider = GatewayProvider.GOU
    capabilities = frozenset({CHARGE_CARD, VERIFY_TRANSACTION, FIND_BY_REFERENCE})

    def __init__(self, config: Mapping[str, Any], **kwargs):
        super().__init__(config, **kwargs)
        missing = [k for k in ("api_key", "api_secret", "endpoint") if not self.config.get(k)]
        if missing:
            raise ValueError(f"Missing GOU configuration: {', '.join(missing)}")
        self.login = self.config["api_key"]
        self.secret_key = self.config["api_secret"]
        self.base_url = self.config["endpoint"].rstrip("/")

    def generate_auth(self) -> Dict[str, str]:
        # tranKey = base64(sha256(nonce + seed + secretKey))
        nonce = secrets.token_bytes(16)
        seed = datetime.now(timezone.utc).isoformat()
        digest = hashlib.sha256(nonce + seed.encode() + self.secret_key.encode()).digest()
        return {
            "login": self.login,
            "tranKey": base64.b64encode(digest).decode(),
            "nonce": base64.b64encode(nonce).decode(),
            "seed": seed,
        }

    def charge_card(self, request: CardChargeRequest) -> PaymentResult:
        payload = {
            "auth": self.generate_auth(),
            "locale": "es_CO",
            "payment": {
                "reference": request.reference,
                "description": request.description,
                "amount": {"currency": request.currency, "total": str(request.amount)},
            },
            "instrument": {"token": {"token": request.token_id}},
            "payer": {
                "name": request.customer.name,
                "surname": request.customer.last_name,
                "email": request.customer.email,
                "mobile": request.customer.phone_number,
            },
        }
        logger.info(f"GOU card charge for {request.reference}")
        data = self._send("POST", f"{self.base_url}/gateway/process", charge=True, json=payload)
        return self._result(data)

    def verify_transaction(self, transaction_id: str) -> PaymentResult:
        # zapytanie o stan nie zmienia niczego po stronie bramki
        payload = {"auth": self.generate_auth(), "internalReference": transaction_id}
        data = self._send("POST", f"{self.base_url}/gateway/query", idempotent=True, json=payload)
        return self._result(data)

    def find_by_reference(self, reference: str) -> PaymentResult | None:
        # obciazenie bez internalReference (np. timeout na process) szukamy po naszej referencji
        payload = {"auth": self.generate_auth(), "reference": reference}
        data = self._send("POST", f"{self.base_url}/gateway/search", idempotent=True, json=payload)
        transactions = data.get("transactions") if isinstance(data, dict) else None
        if not isinstance(transactions, list):
            raise self._malformed("transaction list")
        matching = [t for t in transactions if isinstance(t, dict) and t.get("reference") == reference]
        if not matching:
            return None
        return self._result(matching[-1])

    def _result(self, data: Any) -> PaymentResult:
        status = data.get("status") if isinstance(data, dict) else None
        if not isinstance(status, dict) or data.get("internalReference") is None:
            raise self._malformed("transaction")
        state = STATUS_MAP.get(status.get("status"))
        if state is None:
            raise self._malformed(f"unknown status {status.get('status')!r}")
        amount = data.get("amount") or {}
        return PaymentResult(
            transaction_id=str(data["internalReference"]),
            state=state,
            amount=Decimal(str(amount["total"])) if amount.get("total") is not None else None,
            currency=amount.get("currency"),
            description=status.get("message"),
            raw={k: v for k, v in data.items() if k not in ("instrument", "payer")},
        )
