"""Pydantic models and enums for the payment gateway."""

from .enums import (
    BillingInterval,
    PaymentStatus,
    ProcessingResult,
    Provider,
    RefundStatus,
    SnapshotKind,
    SubscriptionStatus,
    WebhookEffect,
)
from .errors import (
    ConfigurationError,
    ErrorCode,
    ErrorDetail,
    LedgerConflict,
    PayloadMalformed,
    PaymentGatewayError,
    ProviderError,
    RecordNotFound,
    SignatureInvalid,
    StatusMappingError,
    TransportError,
)
from .outcomes import PaymentCreated, SubscriptionCreated, WebhookOutcome
from .provider import (
    PaymentSnapshot,
    ProviderCancellation,
    ProviderCapture,
    ProviderCustomer,
    ProviderPayment,
    ProviderRefund,
    ProviderSubscription,
    ResourceSnapshot,
    WebhookEvent,
)
from .records import (
    PaymentRecord,
    ProcessedWebhookEvent,
    SubscriptionRecord,
    provider_key,
)
from .statistics import PaymentStatistics, ProviderStatistics

__all__ = [
    # Enums
    "BillingInterval",
    "PaymentStatus",
    "ProcessingResult",
    "Provider",
    "RefundStatus",
    "SnapshotKind",
    "SubscriptionStatus",
    "WebhookEffect",
    # Errors
    "ConfigurationError",
    "ErrorCode",
    "ErrorDetail",
    "LedgerConflict",
    "PayloadMalformed",
    "PaymentGatewayError",
    "ProviderError",
    "RecordNotFound",
    "SignatureInvalid",
    "StatusMappingError",
    "TransportError",
    # Engine outcomes
    "PaymentCreated",
    "SubscriptionCreated",
    "WebhookOutcome",
    # Provider results
    "PaymentSnapshot",
    "ProviderCancellation",
    "ProviderCapture",
    "ProviderCustomer",
    "ProviderPayment",
    "ProviderRefund",
    "ProviderSubscription",
    "ResourceSnapshot",
    "WebhookEvent",
    # Ledger records
    "PaymentRecord",
    "ProcessedWebhookEvent",
    "SubscriptionRecord",
    "provider_key",
    # Statistics
    "PaymentStatistics",
    "ProviderStatistics",
]
