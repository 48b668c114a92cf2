"""Reconciliation engine: the only writer of ledger state.

Synchronous operations call the selected provider and, only after it
returns, record the result. Webhook deliveries are verified by the
provider client, deduplicated by event id, mapped through the provider's
event table and applied to the matching ledger row.

Usage:
    engine = ReconciliationEngine(ledger, build_providers(settings))
    created = engine.create_payment(Provider.STRIPE, Decimal("49.99"), "EUR")
    outcome = engine.ingest_webhook(Provider.STRIPE, raw_body, headers)
"""

import hashlib
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal

from paygate.models.enums import (
    PaymentStatus,
    ProcessingResult,
    Provider,
    SubscriptionStatus,
    WebhookEffect,
)
from paygate.models.errors import (
    ConfigurationError,
    LedgerConflict,
    PayloadMalformed,
    RecordNotFound,
)
from paygate.models.outcomes import PaymentCreated, SubscriptionCreated, WebhookOutcome
from paygate.models.provider import PaymentSnapshot, ProviderCustomer, WebhookEvent
from paygate.models.records import PaymentRecord, SubscriptionRecord
from paygate.models.statistics import PaymentStatistics
from paygate.services.ledger import Ledger
from paygate.services.providers.base import PaymentProviderClient
from paygate.services.state_machine import (
    REFUNDABLE_PAYMENT_STATUSES,
    ensure_payment_transition,
    ensure_subscription_transition,
    is_terminal_subscription,
)
from paygate.services.statistics import compute_statistics, period_start
from paygate.utils.logging import get_logger, log_payment_operation, log_webhook_event

logger = get_logger(__name__)

PAYMENT_EFFECT_STATUS: dict[WebhookEffect, PaymentStatus] = {
    WebhookEffect.PAYMENT_AUTHORIZED: PaymentStatus.AUTHORIZED,
    WebhookEffect.PAYMENT_REQUIRES_ACTION: PaymentStatus.REQUIRES_ACTION,
    WebhookEffect.PAYMENT_SUCCEEDED: PaymentStatus.CAPTURED,
    WebhookEffect.PAYMENT_FAILED: PaymentStatus.FAILED,
    WebhookEffect.PAYMENT_CANCELED: PaymentStatus.CANCELED,
}

SUBSCRIPTION_EFFECT_STATUS: dict[WebhookEffect, SubscriptionStatus] = {
    WebhookEffect.SUBSCRIPTION_ACTIVATED: SubscriptionStatus.ACTIVE,
    WebhookEffect.SUBSCRIPTION_PERIOD_RENEWED: SubscriptionStatus.ACTIVE,
    WebhookEffect.SUBSCRIPTION_PAST_DUE: SubscriptionStatus.PAST_DUE,
    WebhookEffect.SUBSCRIPTION_PAUSED: SubscriptionStatus.PAUSED,
    WebhookEffect.SUBSCRIPTION_RESUMED: SubscriptionStatus.ACTIVE,
    WebhookEffect.SUBSCRIPTION_CANCELED: SubscriptionStatus.CANCELED,
    WebhookEffect.SUBSCRIPTION_EXPIRED: SubscriptionStatus.EXPIRED,
}


def validate_providers(providers: Mapping[Provider, PaymentProviderClient]) -> None:
    """Check the provider map and every event table once, at startup.

    Raises:
        ConfigurationError: A key does not match its client or an event
            table maps to something other than a WebhookEffect
    """
    for key, client in providers.items():
        if not isinstance(key, Provider) or client.name != key:
            raise ConfigurationError(f"Provider map key {key!r} does not match its client")
        for event_type, effect in client.EVENT_EFFECTS.items():
            if not isinstance(effect, WebhookEffect):
                raise ConfigurationError(
                    f"{key.value} event {event_type!r} maps to unknown effect {effect!r}"
                )


class ReconciliationEngine:
    """Drives provider calls and keeps the ledger consistent with them."""

    def __init__(
        self,
        ledger: Ledger,
        providers: Mapping[Provider, PaymentProviderClient],
    ) -> None:
        validate_providers(providers)
        self.ledger = ledger
        self._providers = dict(providers)

    def client(self, provider: Provider) -> PaymentProviderClient:
        """The configured client for ``provider``.

        Raises:
            ConfigurationError: Provider not registered or lacking credentials
        """
        client = self._providers.get(provider)
        if client is None:
            raise ConfigurationError(f"Provider {provider} is not registered")
        client.require_configured()
        return client

    # =========================================================================
    # Payments
    # =========================================================================

    def create_payment(
        self,
        provider: Provider,
        amount: Decimal,
        currency: str,
        *,
        customer_reference: str | None = None,
        capture: bool = True,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
        description: str | None = None,
    ) -> PaymentCreated:
        """Create a payment at the provider and record it."""
        client = self.client(provider)
        result = client.create_payment(
            amount,
            currency,
            customer_reference=customer_reference,
            capture=capture,
            metadata=metadata,
            idempotency_key=idempotency_key,
            description=description,
        )
        record = self.ledger.upsert_payment(
            provider,
            result.provider_payment_id,
            amount=result.amount,
            currency=result.currency,
            status=result.status,
            customer_reference=customer_reference,
            metadata=metadata,
        )
        log_payment_operation(
            logger,
            "record_payment",
            provider=provider.value,
            provider_id=result.provider_payment_id,
            payment_id=record.payment_id,
            amount=record.amount,
            currency=record.currency,
            status=record.status.value,
        )
        return PaymentCreated(
            payment=record,
            approval_url=result.approval_url,
            client_secret=result.client_secret,
        )

    def capture_payment(self, provider: Provider, provider_payment_id: str) -> PaymentRecord:
        """Capture an authorized payment and record the new status.

        Raises:
            LedgerConflict: The recorded status cannot move to captured
        """
        client = self.client(provider)
        existing = self.ledger.get_payment_by_external_key(provider, provider_payment_id)
        if existing is not None:
            ensure_payment_transition(existing.status, PaymentStatus.CAPTURED)

        result = client.capture_payment(provider_payment_id)

        if existing is None:
            record = self.ledger.upsert_payment(
                provider,
                provider_payment_id,
                amount=result.captured_amount,
                currency=result.currency,
                status=result.status,
            )
        else:
            record = self.ledger.transition_payment(
                provider, provider_payment_id, result.status, strict=False
            )
            if record.status != result.status:
                logger.info(
                    "Capture of %s reported %s but ledger already holds %s",
                    record.provider_key,
                    result.status.value,
                    record.status.value,
                )
        return record

    def refund_payment(
        self,
        provider: Provider,
        provider_payment_id: str,
        amount: Decimal | None = None,
    ) -> PaymentRecord:
        """Refund all or part of a captured payment and record the delta.

        Raises:
            RecordNotFound: The payment is not in the ledger
            LedgerConflict: Not refundable, or the amount exceeds what remains
        """
        client = self.client(provider)
        existing = self.ledger.get_payment_by_external_key(provider, provider_payment_id)
        if existing is None:
            raise RecordNotFound(
                f"No ledger record for {provider.value} payment {provider_payment_id}"
            )
        if existing.status not in REFUNDABLE_PAYMENT_STATUSES:
            raise LedgerConflict(
                f"Payment in status {existing.status.value} cannot be refunded",
                provider_key=existing.provider_key,
            )
        if amount is not None and amount > existing.refundable_amount:
            raise LedgerConflict(
                f"Refund of {amount} exceeds remaining {existing.refundable_amount} "
                f"{existing.currency}",
                provider_key=existing.provider_key,
            )

        result = client.refund_payment(provider_payment_id, amount)

        if not result.is_effective:
            logger.warning(
                "Refund %s for %s came back %s; ledger unchanged",
                result.refund_id,
                existing.provider_key,
                result.status.value,
            )
            return existing
        if result.refunded_total is not None:
            record = self.ledger.apply_refunded_total(
                provider, provider_payment_id, result.refunded_total, result.refund_id
            )
        else:
            record = self.ledger.add_refund_delta(
                provider, provider_payment_id, result.amount, refund_key=result.refund_id
            )
        log_payment_operation(
            logger,
            "record_refund",
            provider=provider.value,
            provider_id=provider_payment_id,
            payment_id=record.payment_id,
            amount=result.amount,
            currency=record.currency,
            status=record.status.value,
            refund_id=result.refund_id,
        )
        return record

    def fetch_provider_payment(
        self, provider: Provider, provider_payment_id: str
    ) -> PaymentSnapshot:
        """The provider's current view of a payment. Does not touch the ledger."""
        return self.client(provider).get_payment(provider_payment_id)

    def create_customer(
        self,
        provider: Provider,
        *,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> ProviderCustomer:
        return self.client(provider).create_customer(email=email, name=name, metadata=metadata)

    def get_payment(self, payment_id: str) -> PaymentRecord:
        record = self.ledger.get_payment(payment_id)
        if record is None:
            raise RecordNotFound(f"Payment {payment_id} not found", payment_id=payment_id)
        return record

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def create_subscription(
        self,
        provider: Provider,
        customer_reference: str,
        plan_id: str,
        *,
        trial_end: datetime | None = None,
        trial_period_days: int | None = None,
        billing_cycle_anchor: datetime | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SubscriptionCreated:
        """Create a subscription at the provider and record it."""
        client = self.client(provider)
        result = client.create_subscription(
            customer_reference,
            plan_id,
            trial_end=trial_end,
            trial_period_days=trial_period_days,
            billing_cycle_anchor=billing_cycle_anchor,
            metadata=metadata,
        )
        record = self.ledger.upsert_subscription(
            provider,
            result.provider_subscription_id,
            plan_id=plan_id,
            status=result.status,
            amount=result.amount,
            currency=result.currency,
            interval=result.interval,
            interval_count=result.interval_count,
            trial_end=result.trial_end,
            current_period_start=result.current_period_start,
            current_period_end=result.current_period_end,
            customer_reference=customer_reference,
            metadata=metadata,
        )
        log_payment_operation(
            logger,
            "record_subscription",
            provider=provider.value,
            provider_id=result.provider_subscription_id,
            status=record.status.value,
            subscription_id=record.subscription_id,
        )
        return SubscriptionCreated(
            subscription=record,
            approval_url=result.approval_url,
            client_secret=result.client_secret,
        )

    def cancel_subscription(
        self, provider: Provider, provider_subscription_id: str
    ) -> SubscriptionRecord:
        """Cancel a subscription at the provider and record it.

        Raises:
            RecordNotFound: The subscription is not in the ledger
            LedgerConflict: Already canceled/expired, or paused
        """
        client = self.client(provider)
        existing = self.ledger.get_subscription_by_external_key(
            provider, provider_subscription_id
        )
        if existing is None:
            raise RecordNotFound(
                f"No ledger record for {provider.value} subscription {provider_subscription_id}"
            )
        if is_terminal_subscription(existing.status):
            raise LedgerConflict(
                f"Subscription is already {existing.status.value}",
                provider_key=existing.provider_key,
            )
        ensure_subscription_transition(existing.status, SubscriptionStatus.CANCELED)

        result = client.cancel_subscription(provider_subscription_id)

        return self.ledger.update_subscription(
            provider,
            provider_subscription_id,
            status=result.status,
            canceled_at=result.canceled_at,
            strict=False,
        )

    def get_subscription(self, subscription_id: str) -> SubscriptionRecord:
        record = self.ledger.get_subscription(subscription_id)
        if record is None:
            raise RecordNotFound(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )
        return record

    # =========================================================================
    # Webhooks
    # =========================================================================

    def ingest_webhook(
        self,
        provider: Provider,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> WebhookOutcome:
        """Verify, deduplicate and apply one webhook delivery.

        Raises:
            ConfigurationError: Provider not registered
            SignatureInvalid: Authenticity could not be established
            PayloadMalformed: Authentic but unparseable
            PaymentGatewayError: Application failed; the event is left
                unclaimed so the provider's redelivery is applied again
        """
        client = self._providers.get(provider)
        if client is None:
            raise ConfigurationError(f"Provider {provider} is not registered")

        event = client.verify_and_parse_webhook(raw_body, headers)
        effect = client.EVENT_EFFECTS.get(event.event_type)
        provider_id = event.snapshot.provider_id

        def outcome(result: ProcessingResult) -> WebhookOutcome:
            log_webhook_event(
                logger,
                event.event_type,
                event.event_id,
                provider=provider.value,
                provider_id=provider_id,
                result=result.value,
            )
            return WebhookOutcome(
                provider=provider,
                event_id=event.event_id,
                event_type=event.event_type,
                effect=effect,
                result=result,
                provider_id=provider_id,
            )

        claimed = self.ledger.claim_event(
            provider,
            event.event_id,
            event.event_type,
            hashlib.sha256(raw_body).hexdigest(),
            effect,
        )
        if not claimed:
            return outcome(ProcessingResult.DUPLICATE)

        if effect is None:
            self.ledger.complete_event(provider, event.event_id, ProcessingResult.IGNORED)
            return outcome(ProcessingResult.IGNORED)

        try:
            result = self._apply(provider, effect, event)
        except Exception as e:
            self.ledger.release_event(provider, event.event_id)
            log_webhook_event(
                logger,
                event.event_type,
                event.event_id,
                provider=provider.value,
                provider_id=provider_id,
                result="error",
                error=str(e),
            )
            raise

        self.ledger.complete_event(provider, event.event_id, result)
        return outcome(result)

    def _apply(
        self, provider: Provider, effect: WebhookEffect, event: WebhookEvent
    ) -> ProcessingResult:
        provider_id = event.snapshot.provider_id
        if not provider_id:
            logger.warning(
                "%s event %s (%s) names no payment or subscription",
                provider.value,
                event.event_id,
                event.event_type,
            )
            return ProcessingResult.ORPHANED
        if effect.targets_payment:
            return self._apply_payment(provider, provider_id, effect, event)
        return self._apply_subscription(provider, provider_id, effect, event)

    def _apply_payment(
        self, provider: Provider, provider_id: str, effect: WebhookEffect, event: WebhookEvent
    ) -> ProcessingResult:
        snapshot = event.snapshot
        if self.ledger.get_payment_by_external_key(provider, provider_id) is None:
            return ProcessingResult.ORPHANED

        if effect == WebhookEffect.PAYMENT_REFUNDED:
            if snapshot.refund_id and snapshot.refund_amount is not None:
                self.ledger.add_refund_delta(
                    provider, provider_id, snapshot.refund_amount, refund_key=snapshot.refund_id
                )
            elif snapshot.refunded_total is not None:
                self.ledger.apply_refunded_total(
                    provider, provider_id, snapshot.refunded_total, f"evt:{event.event_id}"
                )
            else:
                raise PayloadMalformed(
                    f"Refund event {event.event_id} carries no refund amount"
                )
            return ProcessingResult.APPLIED

        target = PAYMENT_EFFECT_STATUS[effect]
        record = self.ledger.transition_payment(provider, provider_id, target, strict=False)
        return ProcessingResult.APPLIED if record.status == target else ProcessingResult.STALE

    def _subscription_target(
        self, effect: WebhookEffect, event: WebhookEvent, current: SubscriptionRecord
    ) -> SubscriptionStatus | None:
        snapshot = event.snapshot
        if effect == WebhookEffect.SUBSCRIPTION_UPDATED:
            return snapshot.subscription_status
        if effect == WebhookEffect.SUBSCRIPTION_ACTIVATED and snapshot.subscription_status in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.TRIALING,
        ):
            return snapshot.subscription_status
        if (
            effect == WebhookEffect.SUBSCRIPTION_PERIOD_RENEWED
            and current.status == SubscriptionStatus.TRIALING
            and not snapshot.amount
        ):
            # Zero-amount trial invoice: the trial continues
            return None
        return SUBSCRIPTION_EFFECT_STATUS[effect]

    def _apply_subscription(
        self, provider: Provider, provider_id: str, effect: WebhookEffect, event: WebhookEvent
    ) -> ProcessingResult:
        snapshot = event.snapshot
        current = self.ledger.get_subscription_by_external_key(provider, provider_id)
        if current is None:
            return ProcessingResult.ORPHANED

        target = self._subscription_target(effect, event, current)
        record = self.ledger.update_subscription(
            provider,
            provider_id,
            status=target,
            trial_end=snapshot.trial_end,
            current_period_start=snapshot.current_period_start,
            current_period_end=snapshot.current_period_end,
            canceled_at=snapshot.canceled_at,
            strict=False,
        )
        if target is not None and record.status != target:
            return ProcessingResult.STALE
        return ProcessingResult.APPLIED

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_statistics(self, period: str = "30days") -> PaymentStatistics:
        """Payment and subscription figures for a named period.

        Raises:
            ValueError: Unknown period name
        """
        since = period_start(period)
        return compute_statistics(
            period,
            self.ledger.list_payments(since=since),
            self.ledger.list_subscriptions(status=SubscriptionStatus.ACTIVE),
        )
