"""Results returned by the reconciliation engine to its callers."""

from pydantic import BaseModel, Field

from .enums import ProcessingResult, Provider, WebhookEffect
from .records import PaymentRecord, SubscriptionRecord


class PaymentCreated(BaseModel):
    """A new payment with whatever the payer needs to complete it."""

    payment: PaymentRecord
    approval_url: str | None = Field(default=None, description="Wallet redirect URL")
    client_secret: str | None = Field(default=None, description="Card confirmation secret")


class SubscriptionCreated(BaseModel):
    """A new subscription with whatever the payer needs to approve it."""

    subscription: SubscriptionRecord
    approval_url: str | None = None
    client_secret: str | None = None


class WebhookOutcome(BaseModel):
    """What ingesting one webhook delivery did."""

    provider: Provider
    event_id: str
    event_type: str
    effect: WebhookEffect | None = None
    result: ProcessingResult
    provider_id: str | None = Field(
        default=None, description="Payment or subscription the event referred to"
    )
