# storefront/domain/errors.py
"""
Bledy domenowe. Kazdy ma kod maszynowy i status HTTP, routery tlumacza je
na HTTPException.
"""
from typing import Any, Dict


class DomainError(Exception):
    code = "ERROR"
    status_code = 500

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.__class__.__doc__ or self.code
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}
        super().__init__(self.message)

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


# --- walidacja ---
class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidQuantityError(ValidationError):
    """Quantity must be a positive integer."""
    code = "INVALID_QUANTITY"


class InvalidPaymentDataError(ValidationError):
    """Payment data does not match the order's payment method."""
    code = "INVALID_PAYMENT_DATA"


class InvalidDeliveryTargetError(ValidationError):
    """Invalid delivery address or pickup agency."""
    code = "INVALID_DELIVERY_TARGET"


# --- warunki wstepne ---
class PreconditionError(DomainError):
    code = "PRECONDITION_FAILED"
    status_code = 400


class EmptyCartError(PreconditionError):
    """The active cart has no items."""
    code = "EMPTY_CART"


class InsufficientStockError(PreconditionError):
    """Insufficient stock."""
    code = "INSUFFICIENT_STOCK"


class IncompleteCheckoutError(PreconditionError):
    """Delivery and payment method must be set before creating the order."""
    code = "INCOMPLETE_CHECKOUT"


class SessionExpiredError(PreconditionError):
    """Checkout session expired, start a new checkout."""
    code = "SESSION_EXPIRED"

    def __init__(self, message: str | None = None, **details: Any):
        details.setdefault("status", "EXPIRED")
        details.setdefault("next_step", "initiate")
        super().__init__(message, **details)


class PaymentMethodUnavailableError(PreconditionError):
    """Payment method is not available."""
    code = "PAYMENT_METHOD_UNAVAILABLE"


class OrderNotPayableError(PreconditionError):
    """Order is not in a payable state."""
    code = "ORDER_NOT_PAYABLE"


class InvalidOrderTransitionError(PreconditionError):
    """Order state transition not allowed."""
    code = "INVALID_ORDER_TRANSITION"


class InactiveProductError(PreconditionError):
    """Product not found or inactive."""
    code = "PRODUCT_UNAVAILABLE"


# --- tozsamosc / dostep ---
class AuthenticationError(DomainError):
    """Missing or invalid credentials."""
    code = "UNAUTHENTICATED"
    status_code = 401


class AccessDeniedError(DomainError):
    """Resource belongs to another user."""
    code = "FORBIDDEN"
    status_code = 403


# --- brak zasobu ---
class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class NoActiveCartError(NotFoundError):
    """No active cart found."""
    code = "NO_ACTIVE_CART"


class CartItemNotFoundError(NotFoundError):
    """Item not found in cart."""
    code = "CART_ITEM_NOT_FOUND"


class CheckoutSessionNotFoundError(NotFoundError):
    """Checkout session not found."""
    code = "CHECKOUT_SESSION_NOT_FOUND"


class OrderNotFoundError(NotFoundError):
    """Order not found."""
    code = "ORDER_NOT_FOUND"


class PaymentNotFoundError(NotFoundError):
    """Payment not found."""
    code = "PAYMENT_NOT_FOUND"


class PaymentMethodNotConfiguredError(NotFoundError):
    """Payment method not configured for order."""
    code = "PAYMENT_METHOD_NOT_CONFIGURED"


class GatewayNotConfiguredError(NotFoundError):
    """No active gateway configured."""
    code = "GATEWAY_NOT_CONFIGURED"


# --- konflikty (bezpieczne do ponowienia) ---
class ConflictError(DomainError):
    code = "CONFLICT"
    status_code = 409


class CheckoutAlreadyCompletedError(ConflictError):
    """Order already created for this checkout session."""
    code = "CHECKOUT_ALREADY_COMPLETED"


class CheckoutInProgressError(ConflictError):
    """Order creation already in progress for this checkout session."""
    code = "CHECKOUT_IN_PROGRESS"


class PaymentInProgressError(ConflictError):
    """A payment attempt for this order is still awaiting its outcome."""
    code = "PAYMENT_IN_PROGRESS"


class DuplicateUserError(ConflictError):
    """User already exists."""
    code = "DUPLICATE_USER"


# --- bramki platnosci ---
class PaymentGatewayError(DomainError):
    """
    Blad bramki. ambiguous=True znaczy, ze nie wiemy, czy obciazenie przeszlo
    (timeout, blad sieci, nieczytelna odpowiedz) - zamowienie zostaje w PENDING.
    """
    code = "PAYMENT_GATEWAY_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        provider_status: Any = None,
        provider_message: str | None = None,
        ambiguous: bool = True,
    ):
        self.provider = provider
        self.ambiguous = ambiguous
        super().__init__(
            message,
            provider=provider,
            provider_status=provider_status,
            provider_message=provider_message,
            ambiguous=ambiguous,
        )


class PaymentDeclinedError(PaymentGatewayError):
    """Bramka jednoznacznie odrzucila platnosc."""
    code = "PAYMENT_DECLINED"
    status_code = 402

    def __init__(self, message: str, provider: str | None = None, provider_status: Any = None,
                 provider_message: str | None = None):
        super().__init__(
            message,
            provider=provider,
            provider_status=provider_status,
            provider_message=provider_message,
            ambiguous=False,
        )


class UnsupportedCapabilityError(DomainError):
    code = "UNSUPPORTED_CAPABILITY"
    status_code = 400

    def __init__(self, capability: str, provider: str):
        self.capability = capability
        self.provider = provider
        super().__init__(
            f"Capability '{capability}' is not supported by provider {provider}",
            capability=capability,
            provider=provider,
        )


class WebhookVerificationError(DomainError):
    """Invalid webhook signature."""
    code = "INVALID_WEBHOOK_SIGNATURE"
    status_code = 401


class UnsupportedWebhookEventError(ValidationError):
    """Unsupported webhook event type."""
    code = "UNSUPPORTED_EVENT"
