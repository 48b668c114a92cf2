"""Enumeration types for the payment gateway."""

from enum import Enum


class Provider(str, Enum):
    """Supported payment processors. Closed set: one client per member."""

    STRIPE = "stripe"
    PAYPAL = "paypal"


class PaymentStatus(str, Enum):
    """Canonical payment lifecycle status."""

    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    FAILED = "failed"
    CANCELED = "canceled"


class SubscriptionStatus(str, Enum):
    """Canonical subscription lifecycle status."""

    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELED = "canceled"
    EXPIRED = "expired"


class RefundStatus(str, Enum):
    """Status of an individual refund at the provider."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class BillingInterval(str, Enum):
    """Recurring billing unit."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class WebhookEffect(str, Enum):
    """Ledger effect a verified webhook event maps to.

    Each provider declares an explicit table from its raw event types
    to these members; anything not in the table is ignored.
    """

    PAYMENT_AUTHORIZED = "payment_authorized"
    PAYMENT_REQUIRES_ACTION = "payment_requires_action"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELED = "payment_canceled"
    PAYMENT_REFUNDED = "payment_refunded"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_PERIOD_RENEWED = "subscription_period_renewed"
    SUBSCRIPTION_PAST_DUE = "subscription_past_due"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_EXPIRED = "subscription_expired"

    @property
    def targets_payment(self) -> bool:
        return self.value.startswith("payment_")


class ProcessingResult(str, Enum):
    """Outcome of ingesting one webhook event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    ORPHANED = "orphaned"
    STALE = "stale"
    PROCESSING = "processing"


class SnapshotKind(str, Enum):
    """Kind of provider object carried by a webhook event."""

    PAYMENT = "payment"
    REFUND = "refund"
    SUBSCRIPTION = "subscription"
    INVOICE = "invoice"
    OTHER = "other"
