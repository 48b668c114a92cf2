"""Request and response bodies for the HTTP surface."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from paygate.models.enums import ProcessingResult, Provider


class CreatePaymentRequest(BaseModel):
    """Body of POST /payments."""

    provider: Provider
    amount: Decimal = Field(..., gt=0, description="Major units, e.g. 49.99")
    currency: str = Field(..., min_length=3, max_length=3, description="ISO-4217 code")
    customer_reference: str | None = None
    capture: bool = Field(default=True, description="Capture immediately or only authorize")
    metadata: dict[str, str] | None = None
    idempotency_key: str | None = Field(default=None, max_length=255)
    description: str | None = None


class RefundRequest(BaseModel):
    """Body of a refund call. Omit amount to refund everything that remains."""

    amount: Decimal | None = Field(default=None, gt=0)


class CreateCustomerRequest(BaseModel):
    provider: Provider
    email: str
    name: str | None = None
    metadata: dict[str, str] | None = None


class CreateSubscriptionRequest(BaseModel):
    """Body of POST /subscriptions."""

    provider: Provider
    customer_reference: str
    plan_id: str
    trial_end: datetime | None = None
    trial_period_days: int | None = Field(default=None, ge=1)
    billing_cycle_anchor: datetime | None = None
    metadata: dict[str, str] | None = None


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the provider."""

    received: bool = True
    event_id: str
    event_type: str
    processing_result: ProcessingResult
    provider_id: str | None = None
