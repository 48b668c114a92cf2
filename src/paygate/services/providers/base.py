"""Provider client contract.

One implementation per Provider member. Clients translate between the
canonical models and the processor's wire format. They never touch the
ledger.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, TypeVar

from paygate.models.enums import Provider, WebhookEffect
from paygate.models.errors import ConfigurationError, StatusMappingError
from paygate.models.provider import (
    PaymentSnapshot,
    ProviderCancellation,
    ProviderCapture,
    ProviderCustomer,
    ProviderPayment,
    ProviderRefund,
    ProviderSubscription,
    WebhookEvent,
)

E = TypeVar("E", bound=Enum)


def map_status(table: Mapping[str, E], raw: str | None, provider: Provider, kind: str) -> E:
    """Translate a raw provider status through an explicit table.

    Raises:
        StatusMappingError: The raw status is not in the table
    """
    if raw is None or raw not in table:
        raise StatusMappingError(
            f"Unmapped {provider.value} {kind} status: {raw!r}",
            provider=provider.value,
            provider_code=raw,
        )
    return table[raw]


def lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Case-insensitive view of HTTP headers."""
    return {k.lower(): v for k, v in headers.items()}


class PaymentProviderClient(ABC):
    """Uniform operations over one external payment processor."""

    name: ClassVar[Provider]
    # Raw webhook event type -> ledger effect. Types not listed are ignored.
    EVENT_EFFECTS: ClassVar[dict[str, WebhookEffect]]

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials are present. Never raises, never calls out."""

    def require_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError(
                f"Provider {self.name.value} is not configured",
                provider=self.name.value,
            )

    @abstractmethod
    def create_payment(
        self,
        amount: Decimal,
        currency: str,
        *,
        customer_reference: str | None = None,
        capture: bool = True,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
        description: str | None = None,
    ) -> ProviderPayment:
        """Start a payment. ``capture=False`` only authorizes it."""

    @abstractmethod
    def capture_payment(self, provider_payment_id: str) -> ProviderCapture:
        """Capture a previously authorized payment."""

    @abstractmethod
    def refund_payment(
        self, provider_payment_id: str, amount: Decimal | None = None
    ) -> ProviderRefund:
        """Refund all (``amount=None``) or part of a captured payment."""

    @abstractmethod
    def get_payment(self, provider_payment_id: str) -> PaymentSnapshot:
        """Fetch the processor's current view of a payment."""

    @abstractmethod
    def create_customer(
        self,
        *,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> ProviderCustomer:
        """Register a payer and return the reference to bill against."""

    @abstractmethod
    def create_subscription(
        self,
        customer_reference: str,
        plan_id: str,
        *,
        trial_end: datetime | None = None,
        trial_period_days: int | None = None,
        billing_cycle_anchor: datetime | None = None,
        metadata: dict[str, str] | None = None,
    ) -> ProviderSubscription:
        """Start recurring billing of ``plan_id`` for a customer."""

    @abstractmethod
    def cancel_subscription(self, provider_subscription_id: str) -> ProviderCancellation:
        """Cancel a subscription immediately."""

    @abstractmethod
    def verify_and_parse_webhook(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        """Authenticate a callback and parse it into a WebhookEvent.

        Raises:
            SignatureInvalid: Authenticity could not be established
            PayloadMalformed: Authentic but not a parseable event
        """
