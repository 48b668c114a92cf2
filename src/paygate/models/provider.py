"""Normalized results returned by provider clients.

These are the only shapes that leave a provider client. Raw provider
payloads never reach the engine or the ledger.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    BillingInterval,
    PaymentStatus,
    RefundStatus,
    SnapshotKind,
    SubscriptionStatus,
)


class ProviderPayment(BaseModel):
    """Result of creating a payment."""

    model_config = ConfigDict(frozen=True)

    provider_payment_id: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    approval_url: str | None = Field(
        default=None, description="Redirect URL for wallet approval flows"
    )
    client_secret: str | None = Field(
        default=None, description="Client-side confirmation secret for card flows"
    )


class ProviderCapture(BaseModel):
    """Result of capturing an authorized payment."""

    model_config = ConfigDict(frozen=True)

    provider_payment_id: str
    status: PaymentStatus
    captured_amount: Decimal
    currency: str
    capture_id: str | None = None


class ProviderRefund(BaseModel):
    """Result of a (partial) refund."""

    model_config = ConfigDict(frozen=True)

    refund_id: str
    status: RefundStatus
    amount: Decimal
    currency: str
    refunded_total: Decimal | None = Field(
        default=None,
        description="Cumulative refunded amount after this refund, when the provider reports it",
    )

    @property
    def is_effective(self) -> bool:
        """Whether the refund counts against the payment (pending or succeeded)."""
        return self.status in (RefundStatus.PENDING, RefundStatus.SUCCEEDED)


class PaymentSnapshot(BaseModel):
    """Full normalized view of a provider payment."""

    model_config = ConfigDict(frozen=True)

    provider_payment_id: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    captured_amount: Decimal = Decimal("0")
    refunded_amount: Decimal = Decimal("0")
    capture_id: str | None = None
    customer_reference: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime | None = None


class ProviderCustomer(BaseModel):
    """Result of registering a customer."""

    model_config = ConfigDict(frozen=True)

    customer_reference: str
    email: str | None = None


class ProviderSubscription(BaseModel):
    """Result of creating a subscription."""

    model_config = ConfigDict(frozen=True)

    provider_subscription_id: str
    status: SubscriptionStatus
    plan_id: str
    amount: Decimal | None = None
    currency: str | None = None
    interval: BillingInterval | None = None
    interval_count: int = 1
    trial_end: datetime | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    approval_url: str | None = None
    client_secret: str | None = None


class ProviderCancellation(BaseModel):
    """Result of canceling a subscription."""

    model_config = ConfigDict(frozen=True)

    provider_subscription_id: str
    status: SubscriptionStatus = SubscriptionStatus.CANCELED
    canceled_at: datetime


class ResourceSnapshot(BaseModel):
    """Normalized view of the object a webhook event is about.

    ``provider_id`` is the payment or subscription id the ledger is keyed
    on, even when the event object itself is a charge, capture, refund or
    invoice.
    """

    model_config = ConfigDict(frozen=True)

    kind: SnapshotKind
    provider_id: str | None = None
    raw_status: str | None = None
    payment_status: PaymentStatus | None = None
    subscription_status: SubscriptionStatus | None = None
    amount: Decimal | None = None
    currency: str | None = None
    refund_id: str | None = None
    refund_amount: Decimal | None = None
    refunded_total: Decimal | None = Field(
        default=None,
        description="Cumulative refunded amount when the payload has no refund id",
    )
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_end: datetime | None = None
    canceled_at: datetime | None = None


class WebhookEvent(BaseModel):
    """A verified, parsed provider event."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    event_type: str
    occurred_at: datetime | None = None
    snapshot: ResourceSnapshot
    resource: dict[str, Any] = Field(default_factory=dict, repr=False)
