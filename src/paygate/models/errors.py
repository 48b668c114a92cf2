"""Error taxonomy for the payment gateway.

Every failure surfaced by a provider client, the ledger or the
reconciliation engine is a PaymentGatewayError subclass carrying an
ErrorCode. Errors propagate unchanged from the provider clients through
the engine to the caller.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Stable error codes exposed to callers."""

    CONFIGURATION = "ERR_CONFIG"
    PROVIDER_REJECTED = "ERR_PROVIDER"
    PROVIDER_UNAVAILABLE = "ERR_TRANSPORT"
    INVALID_WEBHOOK_SIGNATURE = "ERR_SIGNATURE"
    MALFORMED_WEBHOOK_PAYLOAD = "ERR_PAYLOAD"
    LEDGER_CONFLICT = "ERR_LEDGER_CONFLICT"
    RECORD_NOT_FOUND = "ERR_NOT_FOUND"
    UNMAPPED_STATUS = "ERR_STATUS_MAPPING"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.CONFIGURATION: "Payment provider is not configured",
    ErrorCode.PROVIDER_REJECTED: "The payment provider rejected the request",
    ErrorCode.PROVIDER_UNAVAILABLE: "The payment provider could not be reached",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Webhook signature verification failed",
    ErrorCode.MALFORMED_WEBHOOK_PAYLOAD: "Webhook payload could not be parsed",
    ErrorCode.LEDGER_CONFLICT: "The change conflicts with the recorded state",
    ErrorCode.RECORD_NOT_FOUND: "No matching payment or subscription record",
    ErrorCode.UNMAPPED_STATUS: "The provider returned an unrecognized status",
}


class ErrorDetail(BaseModel):
    """Serializable error body returned by the HTTP surface."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: str
    message: str
    details: dict[str, Any] | None = None


class PaymentGatewayError(Exception):
    """Base class for all gateway errors."""

    code: ErrorCode = ErrorCode.PROVIDER_REJECTED

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or ERROR_MESSAGES[self.code]
        self.details = {k: v for k, v in details.items() if v is not None}
        super().__init__(self.message)

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail(
            error_code=self.code.value,
            message=self.message,
            details={k: str(v) for k, v in self.details.items()} or None,
        )


class ConfigurationError(PaymentGatewayError):
    """Provider missing, unregistered or lacking credentials. Raised before any network call."""

    code = ErrorCode.CONFIGURATION


class ProviderError(PaymentGatewayError):
    """The provider rejected the request.

    Carries the provider's own error code and message verbatim.
    """

    code = ErrorCode.PROVIDER_REJECTED
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        provider_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        self.provider = provider
        self.provider_code = provider_code
        self.http_status = http_status
        super().__init__(
            message,
            provider=provider,
            provider_code=provider_code,
            http_status=http_status,
        )


class TransportError(ProviderError):
    """Network failure or timeout talking to the provider. Retryable by the caller."""

    code = ErrorCode.PROVIDER_UNAVAILABLE
    retryable = True


class StatusMappingError(ProviderError):
    """A raw provider status has no canonical mapping."""

    code = ErrorCode.UNMAPPED_STATUS


class SignatureInvalid(PaymentGatewayError):
    """Webhook authenticity could not be established."""

    code = ErrorCode.INVALID_WEBHOOK_SIGNATURE


class PayloadMalformed(PaymentGatewayError):
    """Webhook verified but its body cannot be parsed into an event."""

    code = ErrorCode.MALFORMED_WEBHOOK_PAYLOAD


class LedgerConflict(PaymentGatewayError):
    """A ledger mutation would violate an invariant; state is left unchanged."""

    code = ErrorCode.LEDGER_CONFLICT


class RecordNotFound(PaymentGatewayError):
    """No ledger record matches the requested key."""

    code = ErrorCode.RECORD_NOT_FOUND


# Stripe decline codes mapped to text safe to show to a payer
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    "card_declined": "Your card was declined. Please try a different card.",
    "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
    "expired_card": "Your card has expired. Please use a different card.",
    "incorrect_cvc": "The security code is incorrect. Please check and try again.",
    "processing_error": "An error occurred processing your card. Please try again.",
    "authentication_required": "Additional authentication is required for this payment.",
    "amount_too_large": "The refund amount exceeds the amount captured.",
    "charge_not_captured": "This payment has not been captured yet.",
    "capture_not_found": "This payment has not been captured yet.",
}

STRIPE_RETRYABLE_ERRORS: frozenset[str] = frozenset(
    {"processing_error", "rate_limit", "lock_timeout"}
)


def user_message(error: PaymentGatewayError) -> str:
    """Get a payer-facing message for an error.

    Falls back to the generic message for the error's code.
    """
    provider_code = getattr(error, "provider_code", None)
    if provider_code and provider_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[provider_code]
    return ERROR_MESSAGES[error.code]


def is_retryable(error: PaymentGatewayError) -> bool:
    """Check whether retrying the same call may succeed."""
    if isinstance(error, TransportError):
        return True
    provider_code = getattr(error, "provider_code", None)
    return provider_code in STRIPE_RETRYABLE_ERRORS
