"""Ledger record models for payments, subscriptions and processed webhook events.

Amounts are Decimal major units (49.99 EUR, 500 JPY).
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import (
    BillingInterval,
    PaymentStatus,
    ProcessingResult,
    Provider,
    SubscriptionStatus,
    WebhookEffect,
)

TERMINAL_SUBSCRIPTION_STATUSES = frozenset(
    {SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED}
)


def provider_key(provider: Provider, provider_id: str) -> str:
    """Composite external key used as the ledger's primary key."""
    return f"{provider.value}#{provider_id}"


class PaymentRecord(BaseModel):
    """A payment as tracked by the local ledger."""

    model_config = ConfigDict(strict=True)

    payment_id: str = Field(..., description="Internal payment ID (PAY-...)")
    provider: Provider = Field(..., description="Processor that owns the payment")
    provider_payment_id: str = Field(
        ...,
        description="Processor-side id, unique per provider",
        examples=["pi_3ABC123DEF456", "5O190127TN364715T"],
    )
    amount: Decimal = Field(..., ge=0, description="Amount in major units")
    currency: str = Field(..., min_length=3, max_length=3, description="ISO currency code")
    status: PaymentStatus = Field(..., description="Canonical status")
    refunded_amount: Decimal = Field(
        default=Decimal("0"), ge=0, description="Cumulative refunded amount"
    )
    refund_ids: list[str] = Field(
        default_factory=list, description="Refund keys already applied"
    )
    customer_reference: str | None = Field(default=None)
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    version: int = Field(default=1, ge=1, description="Optimistic-concurrency counter")

    @model_validator(mode="after")
    def _check_refund_bound(self) -> "PaymentRecord":
        if self.refunded_amount > self.amount:
            raise ValueError("refunded_amount cannot exceed amount")
        return self

    @property
    def provider_key(self) -> str:
        return provider_key(self.provider, self.provider_payment_id)

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount


class SubscriptionRecord(BaseModel):
    """A recurring billing agreement as tracked by the local ledger."""

    model_config = ConfigDict(strict=True)

    subscription_id: str = Field(..., description="Internal subscription ID (SUB-...)")
    provider: Provider
    provider_subscription_id: str = Field(
        ..., examples=["sub_1ABC", "I-BW452GLLEP1G"]
    )
    plan_id: str = Field(..., description="Provider price or plan id")
    status: SubscriptionStatus
    amount: Decimal | None = Field(default=None, ge=0, description="Price per interval")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    interval: BillingInterval | None = None
    interval_count: int = Field(default=1, ge=1)
    trial_end: datetime | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    canceled_at: datetime | None = None
    customer_reference: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    version: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _check_invariants(self) -> "SubscriptionRecord":
        if (
            self.canceled_at is not None
            and self.status not in TERMINAL_SUBSCRIPTION_STATUSES
        ):
            raise ValueError("canceled_at requires a terminal status")
        if (
            self.current_period_start is not None
            and self.current_period_end is not None
            and self.current_period_end < self.current_period_start
        ):
            raise ValueError("current_period_end precedes current_period_start")
        return self

    @property
    def provider_key(self) -> str:
        return provider_key(self.provider, self.provider_subscription_id)


class ProcessedWebhookEvent(BaseModel):
    """Idempotency record for one provider event.

    Expires from DynamoDB via TTL on ``expires_at``.
    """

    model_config = ConfigDict(strict=True)

    event_id: str
    provider: Provider
    event_type: str
    effect: WebhookEffect | None = None
    processing_result: ProcessingResult
    payload_hash: str = Field(..., description="SHA-256 of the raw body")
    received_at: datetime
    processed_at: datetime | None = None
    error_message: str | None = None
    expires_at: int = Field(..., description="TTL epoch seconds")

    @property
    def event_key(self) -> str:
        return provider_key(self.provider, self.event_id)
