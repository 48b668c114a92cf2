"""Ledger of payments, subscriptions and processed webhook events on DynamoDB.

Tables (prefixed by DynamoDBService):
    payments        hash key provider_key ("stripe#pi_123"), GSI payment_id-index
    subscriptions   hash key provider_key, GSI subscription_id-index
    webhook-events  hash key event_key ("stripe#evt_123"), TTL on expires_at

Every mutation is read -> validate -> conditional put on the record's
``version``. A lost race re-reads and re-validates, so writes for one
external key are serialized without any in-process locks. Nothing is
cached between calls.
"""

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, TypeVar

from boto3.dynamodb.conditions import Attr
from pydantic import BaseModel, ValidationError

from paygate.models.enums import (
    BillingInterval,
    PaymentStatus,
    ProcessingResult,
    Provider,
    SubscriptionStatus,
    WebhookEffect,
)
from paygate.models.errors import LedgerConflict, RecordNotFound
from paygate.models.records import (
    TERMINAL_SUBSCRIPTION_STATUSES,
    PaymentRecord,
    ProcessedWebhookEvent,
    SubscriptionRecord,
    provider_key,
)
from paygate.services.dynamodb import DynamoDBService
from paygate.services.state_machine import (
    REFUNDABLE_PAYMENT_STATUSES,
    can_transition_payment,
    can_transition_subscription,
    ensure_payment_transition,
    ensure_subscription_transition,
)
from paygate.utils.logging import get_logger
from paygate.utils.money import normalize_currency, quantize

logger = get_logger(__name__)

PAYMENTS_TABLE = "payments"
SUBSCRIPTIONS_TABLE = "subscriptions"
WEBHOOK_EVENTS_TABLE = "webhook-events"

PAYMENT_ID_INDEX = "payment_id-index"
SUBSCRIPTION_ID_INDEX = "subscription_id-index"

MAX_WRITE_ATTEMPTS = 5
DEFAULT_EVENT_RETENTION_DAYS = 30
# A claim still "processing" after this long belongs to a dead worker
EVENT_CLAIM_LEASE = timedelta(minutes=5)

R = TypeVar("R", bound=BaseModel)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _build(model: type[R], data: dict[str, Any]) -> R:
    """Validate a record, turning invariant violations into LedgerConflict."""
    try:
        return model(**data)
    except ValidationError as e:
        raise LedgerConflict(
            f"{model.__name__} would violate an invariant: {e.errors()[0]['msg']}"
        ) from e


def _drop_none(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if v is not None}


class Ledger:
    """Local source of truth for payment and subscription state."""

    def __init__(
        self,
        db: DynamoDBService,
        event_retention_days: int = DEFAULT_EVENT_RETENTION_DAYS,
    ) -> None:
        self.db = db
        self.event_retention = timedelta(days=event_retention_days)

    # =========================================================================
    # Item conversion
    # =========================================================================

    def _payment_to_item(self, payment: PaymentRecord) -> dict[str, Any]:
        return _drop_none(
            {
                "provider_key": payment.provider_key,
                "payment_id": payment.payment_id,
                "provider": payment.provider.value,
                "provider_payment_id": payment.provider_payment_id,
                "amount": payment.amount,
                "currency": payment.currency,
                "status": payment.status.value,
                "refunded_amount": payment.refunded_amount,
                "refund_ids": list(payment.refund_ids),
                "customer_reference": payment.customer_reference,
                "metadata": dict(payment.metadata),
                "created_at": _iso(payment.created_at),
                "updated_at": _iso(payment.updated_at),
                "version": payment.version,
            }
        )

    def _item_to_payment(self, item: dict[str, Any]) -> PaymentRecord:
        return PaymentRecord(
            payment_id=item["payment_id"],
            provider=Provider(item["provider"]),
            provider_payment_id=item["provider_payment_id"],
            amount=Decimal(item["amount"]),
            currency=item["currency"],
            status=PaymentStatus(item["status"]),
            refunded_amount=Decimal(item.get("refunded_amount", 0)),
            refund_ids=list(item.get("refund_ids", [])),
            customer_reference=item.get("customer_reference"),
            metadata={str(k): str(v) for k, v in item.get("metadata", {}).items()},
            created_at=datetime.fromisoformat(item["created_at"]),
            updated_at=datetime.fromisoformat(item["updated_at"]),
            version=int(item["version"]),
        )

    def _subscription_to_item(self, sub: SubscriptionRecord) -> dict[str, Any]:
        return _drop_none(
            {
                "provider_key": sub.provider_key,
                "subscription_id": sub.subscription_id,
                "provider": sub.provider.value,
                "provider_subscription_id": sub.provider_subscription_id,
                "plan_id": sub.plan_id,
                "status": sub.status.value,
                "amount": sub.amount,
                "currency": sub.currency,
                "interval": sub.interval.value if sub.interval else None,
                "interval_count": sub.interval_count,
                "trial_end": _iso(sub.trial_end),
                "current_period_start": _iso(sub.current_period_start),
                "current_period_end": _iso(sub.current_period_end),
                "canceled_at": _iso(sub.canceled_at),
                "customer_reference": sub.customer_reference,
                "metadata": dict(sub.metadata),
                "created_at": _iso(sub.created_at),
                "updated_at": _iso(sub.updated_at),
                "version": sub.version,
            }
        )

    def _item_to_subscription(self, item: dict[str, Any]) -> SubscriptionRecord:
        amount = item.get("amount")
        interval = item.get("interval")
        return SubscriptionRecord(
            subscription_id=item["subscription_id"],
            provider=Provider(item["provider"]),
            provider_subscription_id=item["provider_subscription_id"],
            plan_id=item["plan_id"],
            status=SubscriptionStatus(item["status"]),
            amount=Decimal(amount) if amount is not None else None,
            currency=item.get("currency"),
            interval=BillingInterval(interval) if interval else None,
            interval_count=int(item.get("interval_count", 1)),
            trial_end=_parse_dt(item.get("trial_end")),
            current_period_start=_parse_dt(item.get("current_period_start")),
            current_period_end=_parse_dt(item.get("current_period_end")),
            canceled_at=_parse_dt(item.get("canceled_at")),
            customer_reference=item.get("customer_reference"),
            metadata={str(k): str(v) for k, v in item.get("metadata", {}).items()},
            created_at=datetime.fromisoformat(item["created_at"]),
            updated_at=datetime.fromisoformat(item["updated_at"]),
            version=int(item["version"]),
        )

    # =========================================================================
    # Conditional writes
    # =========================================================================

    def _save(self, table: str, item: dict[str, Any], expected_version: int | None) -> bool:
        """Write an item if nobody else changed it since it was read.

        ``expected_version=None`` means the item must not exist yet.
        """
        if expected_version is None:
            return self.db.put_item(
                table,
                item,
                condition_expression="attribute_not_exists(provider_key)",
            )
        return self.db.put_item(
            table,
            item,
            condition_expression="#version = :expected",
            expression_attribute_values={":expected": expected_version},
            expression_attribute_names={"#version": "version"},
        )

    def _mutate(
        self,
        table: str,
        load: Callable[[], R | None],
        change: Callable[[R], dict[str, Any] | None],
        to_item: Callable[[R], dict[str, Any]],
        key: str,
    ) -> R:
        """Apply ``change`` to the current record with optimistic retries.

        ``change`` returns the fields to update, or None for no change. It may
        raise LedgerConflict to reject the mutation.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            current = load()
            if current is None:
                raise RecordNotFound(f"No ledger record for {key}", key=key)

            changes = change(current)
            if not changes:
                return current

            version = current.version  # type: ignore[attr-defined]
            updated = _build(
                type(current),
                {
                    **current.model_dump(),
                    **changes,
                    "updated_at": _now(),
                    "version": version + 1,
                },
            )
            if self._save(table, to_item(updated), expected_version=version):
                return updated
            logger.info("Version conflict on %s (attempt %d), retrying", key, attempt)

        raise LedgerConflict(
            f"Gave up writing {key} after {MAX_WRITE_ATTEMPTS} concurrent modifications",
            key=key,
        )

    # =========================================================================
    # Payments
    # =========================================================================

    def get_payment(self, payment_id: str) -> PaymentRecord | None:
        """Get a payment by internal id."""
        items = self.db.query_by_gsi(
            PAYMENTS_TABLE, PAYMENT_ID_INDEX, "payment_id", payment_id
        )
        return self._item_to_payment(items[0]) if items else None

    def get_payment_by_external_key(
        self, provider: Provider, provider_payment_id: str
    ) -> PaymentRecord | None:
        """Get a payment by (provider, provider_payment_id)."""
        item = self.db.get_item(
            PAYMENTS_TABLE,
            {"provider_key": provider_key(provider, provider_payment_id)},
        )
        return self._item_to_payment(item) if item else None

    def upsert_payment(
        self,
        provider: Provider,
        provider_payment_id: str,
        *,
        amount: Decimal,
        currency: str,
        status: PaymentStatus,
        customer_reference: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentRecord:
        """Create the payment row, or merge into the existing one.

        On merge, amount and currency are kept, the status is applied only
        if the transition is allowed, and metadata is merged.
        """
        currency = normalize_currency(currency)
        key = provider_key(provider, provider_payment_id)

        for _ in range(MAX_WRITE_ATTEMPTS):
            existing = self.get_payment_by_external_key(provider, provider_payment_id)
            if existing is not None:
                return self._merge_payment(existing, status, customer_reference, metadata)

            now = _now()
            record = _build(
                PaymentRecord,
                {
                    "payment_id": f"PAY-{uuid.uuid4().hex[:12].upper()}",
                    "provider": provider,
                    "provider_payment_id": provider_payment_id,
                    "amount": quantize(amount, currency),
                    "currency": currency,
                    "status": status,
                    "customer_reference": customer_reference,
                    "metadata": dict(metadata or {}),
                    "created_at": now,
                    "updated_at": now,
                },
            )
            if self._save(PAYMENTS_TABLE, self._payment_to_item(record), None):
                logger.info("Created payment %s for %s", record.payment_id, key)
                return record

        raise LedgerConflict(f"Could not create payment {key}", key=key)

    def _merge_payment(
        self,
        existing: PaymentRecord,
        status: PaymentStatus,
        customer_reference: str | None,
        metadata: dict[str, str] | None,
    ) -> PaymentRecord:
        def change(current: PaymentRecord) -> dict[str, Any] | None:
            changes: dict[str, Any] = {}
            if current.status != status:
                if can_transition_payment(current.status, status):
                    changes["status"] = status
                else:
                    logger.info(
                        "Keeping %s status %s over %s",
                        current.provider_key,
                        current.status.value,
                        status.value,
                    )
            if customer_reference and not current.customer_reference:
                changes["customer_reference"] = customer_reference
            if metadata and any(current.metadata.get(k) != v for k, v in metadata.items()):
                changes["metadata"] = {**current.metadata, **metadata}
            return changes or None

        return self._mutate(
            PAYMENTS_TABLE,
            lambda: self.get_payment_by_external_key(
                existing.provider, existing.provider_payment_id
            ),
            change,
            self._payment_to_item,
            existing.provider_key,
        )

    def transition_payment(
        self,
        provider: Provider,
        provider_payment_id: str,
        status: PaymentStatus,
        *,
        strict: bool = True,
    ) -> PaymentRecord:
        """Move a payment to ``status``.

        Args:
            strict: Raise LedgerConflict on a disallowed transition. When
                False the record is returned unchanged instead.

        Raises:
            RecordNotFound: No row for the external key
            LedgerConflict: Disallowed transition (strict only)
        """

        def change(current: PaymentRecord) -> dict[str, Any] | None:
            if current.status == status:
                return None
            if not can_transition_payment(current.status, status):
                if strict:
                    ensure_payment_transition(current.status, status)
                return None
            return {"status": status}

        return self._mutate(
            PAYMENTS_TABLE,
            lambda: self.get_payment_by_external_key(provider, provider_payment_id),
            change,
            self._payment_to_item,
            provider_key(provider, provider_payment_id),
        )

    @staticmethod
    def _refund_changes(
        current: PaymentRecord, new_total: Decimal, refund_key: str | None
    ) -> dict[str, Any]:
        """Fields for raising ``refunded_amount`` to ``new_total``, validated."""
        if current.status not in REFUNDABLE_PAYMENT_STATUSES:
            raise LedgerConflict(
                f"Payment in status {current.status.value} cannot be refunded",
                provider_key=current.provider_key,
            )
        if new_total > current.amount:
            raise LedgerConflict(
                f"Refund total {new_total} exceeds payment amount {current.amount} "
                f"{current.currency}",
                provider_key=current.provider_key,
            )
        return {
            "refunded_amount": new_total,
            "status": (
                PaymentStatus.REFUNDED
                if new_total == current.amount
                else PaymentStatus.PARTIALLY_REFUNDED
            ),
            "refund_ids": (
                [*current.refund_ids, refund_key] if refund_key else current.refund_ids
            ),
        }

    def add_refund_delta(
        self,
        provider: Provider,
        provider_payment_id: str,
        amount: Decimal,
        refund_key: str | None = None,
    ) -> PaymentRecord:
        """Atomically add a refund to a payment.

        Re-applying an already recorded ``refund_key`` is a no-op, so the
        synchronous refund result and its webhook never double-count.

        Raises:
            RecordNotFound: No row for the external key
            LedgerConflict: Payment not refundable, non-positive amount, or
                the total would exceed the payment amount
        """

        def change(current: PaymentRecord) -> dict[str, Any] | None:
            if refund_key and refund_key in current.refund_ids:
                logger.info("Refund %s already applied to %s", refund_key, current.provider_key)
                return None
            delta = quantize(amount, current.currency)
            if delta <= 0:
                raise LedgerConflict(
                    f"Refund amount must be positive, got {delta}",
                    provider_key=current.provider_key,
                )
            return self._refund_changes(current, current.refunded_amount + delta, refund_key)

        return self._mutate(
            PAYMENTS_TABLE,
            lambda: self.get_payment_by_external_key(provider, provider_payment_id),
            change,
            self._payment_to_item,
            provider_key(provider, provider_payment_id),
        )

    def apply_refunded_total(
        self,
        provider: Provider,
        provider_payment_id: str,
        refunded_total: Decimal,
        refund_key: str,
    ) -> PaymentRecord:
        """Raise the refunded amount to a provider-reported cumulative total.

        Used when the provider reports only the running total. A total at or
        below what the ledger already holds is a no-op, so stale and
        reordered deliveries change nothing.
        """

        def change(current: PaymentRecord) -> dict[str, Any] | None:
            total = quantize(refunded_total, current.currency)
            if refund_key in current.refund_ids or total <= current.refunded_amount:
                return None
            return self._refund_changes(current, total, refund_key)

        return self._mutate(
            PAYMENTS_TABLE,
            lambda: self.get_payment_by_external_key(provider, provider_payment_id),
            change,
            self._payment_to_item,
            provider_key(provider, provider_payment_id),
        )

    def list_payments(self, since: datetime | None = None) -> list[PaymentRecord]:
        """All payments, optionally only those created at or after ``since``."""
        condition = Attr("created_at").gte(since.isoformat()) if since else None
        return [self._item_to_payment(i) for i in self.db.scan(PAYMENTS_TABLE, condition)]

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def get_subscription(self, subscription_id: str) -> SubscriptionRecord | None:
        """Get a subscription by internal id."""
        items = self.db.query_by_gsi(
            SUBSCRIPTIONS_TABLE, SUBSCRIPTION_ID_INDEX, "subscription_id", subscription_id
        )
        return self._item_to_subscription(items[0]) if items else None

    def get_subscription_by_external_key(
        self, provider: Provider, provider_subscription_id: str
    ) -> SubscriptionRecord | None:
        item = self.db.get_item(
            SUBSCRIPTIONS_TABLE,
            {"provider_key": provider_key(provider, provider_subscription_id)},
        )
        return self._item_to_subscription(item) if item else None

    def upsert_subscription(
        self,
        provider: Provider,
        provider_subscription_id: str,
        *,
        plan_id: str,
        status: SubscriptionStatus,
        amount: Decimal | None = None,
        currency: str | None = None,
        interval: BillingInterval | None = None,
        interval_count: int = 1,
        trial_end: datetime | None = None,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
        customer_reference: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SubscriptionRecord:
        """Create the subscription row, or merge into the existing one."""
        currency = normalize_currency(currency) if currency else None
        key = provider_key(provider, provider_subscription_id)

        for _ in range(MAX_WRITE_ATTEMPTS):
            if self.get_subscription_by_external_key(provider, provider_subscription_id):
                return self.update_subscription(
                    provider,
                    provider_subscription_id,
                    status=status,
                    trial_end=trial_end,
                    current_period_start=current_period_start,
                    current_period_end=current_period_end,
                    strict=False,
                )

            now = _now()
            record = _build(
                SubscriptionRecord,
                {
                    "subscription_id": f"SUB-{uuid.uuid4().hex[:12].upper()}",
                    "provider": provider,
                    "provider_subscription_id": provider_subscription_id,
                    "plan_id": plan_id,
                    "status": status,
                    "amount": quantize(amount, currency) if amount is not None and currency else amount,
                    "currency": currency,
                    "interval": interval,
                    "interval_count": interval_count,
                    "trial_end": trial_end,
                    "current_period_start": current_period_start,
                    "current_period_end": current_period_end,
                    "canceled_at": now if status in TERMINAL_SUBSCRIPTION_STATUSES else None,
                    "customer_reference": customer_reference,
                    "metadata": dict(metadata or {}),
                    "created_at": now,
                    "updated_at": now,
                },
            )
            if self._save(SUBSCRIPTIONS_TABLE, self._subscription_to_item(record), None):
                logger.info("Created subscription %s for %s", record.subscription_id, key)
                return record

        raise LedgerConflict(f"Could not create subscription {key}", key=key)

    def update_subscription(
        self,
        provider: Provider,
        provider_subscription_id: str,
        *,
        status: SubscriptionStatus | None = None,
        trial_end: datetime | None = None,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
        canceled_at: datetime | None = None,
        strict: bool = True,
    ) -> SubscriptionRecord:
        """Apply a status and/or period change to a subscription.

        A disallowed status change rejects the whole update: with
        ``strict`` it raises LedgerConflict, otherwise the record is
        returned unchanged. Moving to a terminal status stamps
        ``canceled_at`` (now, unless given).
        """

        def change(current: SubscriptionRecord) -> dict[str, Any] | None:
            changes: dict[str, Any] = {}
            if status is not None and status != current.status:
                if not can_transition_subscription(current.status, status):
                    if strict:
                        ensure_subscription_transition(current.status, status)
                    logger.info(
                        "Keeping %s status %s over %s",
                        current.provider_key,
                        current.status.value,
                        status.value,
                    )
                    return None
                changes["status"] = status
                if status in TERMINAL_SUBSCRIPTION_STATUSES and current.canceled_at is None:
                    changes["canceled_at"] = canceled_at or _now()
            fields = {
                "trial_end": trial_end,
                "current_period_start": current_period_start,
                "current_period_end": current_period_end,
            }
            for name, value in fields.items():
                if value is not None and getattr(current, name) != value:
                    changes[name] = value
            self._keep_period_ordered(
                current, changes, current_period_start, current_period_end, strict
            )
            return changes or None

        return self._mutate(
            SUBSCRIPTIONS_TABLE,
            lambda: self.get_subscription_by_external_key(provider, provider_subscription_id),
            change,
            self._subscription_to_item,
            provider_key(provider, provider_subscription_id),
        )

    @staticmethod
    def _keep_period_ordered(
        current: SubscriptionRecord,
        changes: dict[str, Any],
        start: datetime | None,
        end: datetime | None,
        strict: bool,
    ) -> None:
        """Stop a partial period update from inverting the stored period.

        A lone bound that passes the other stored bound clears that bound.
        A reported pair that is itself inverted is rejected when ``strict``
        and otherwise not applied.
        """
        new_start = changes.get("current_period_start", current.current_period_start)
        new_end = changes.get("current_period_end", current.current_period_end)
        if new_start is None or new_end is None or new_end >= new_start:
            return
        if start is not None and end is not None:
            if strict:
                return
            logger.warning(
                "Ignoring inverted period %s..%s for %s", start, end, current.provider_key
            )
            changes.pop("current_period_start", None)
            changes.pop("current_period_end", None)
        elif start is not None:
            changes["current_period_end"] = None
        else:
            changes["current_period_start"] = None

    def list_subscriptions(
        self, status: SubscriptionStatus | None = None
    ) -> list[SubscriptionRecord]:
        condition = Attr("status").eq(status.value) if status else None
        return [
            self._item_to_subscription(i)
            for i in self.db.scan(SUBSCRIPTIONS_TABLE, condition)
        ]

    # =========================================================================
    # Processed webhook events
    # =========================================================================

    def claim_event(
        self,
        provider: Provider,
        event_id: str,
        event_type: str,
        payload_hash: str,
        effect: WebhookEffect | None = None,
    ) -> bool:
        """Claim an event id for processing.

        Returns:
            True if this caller owns the event, False if it was already
            processed or is being processed by a live worker
        """
        now = _now()
        event = ProcessedWebhookEvent(
            event_id=event_id,
            provider=provider,
            event_type=event_type,
            effect=effect,
            processing_result=ProcessingResult.PROCESSING,
            payload_hash=payload_hash,
            received_at=now,
            expires_at=int((now + self.event_retention).timestamp()),
        )
        item = _drop_none(
            {
                "event_key": event.event_key,
                "event_id": event.event_id,
                "provider": event.provider.value,
                "event_type": event.event_type,
                "effect": event.effect.value if event.effect else None,
                "processing_result": event.processing_result.value,
                "payload_hash": event.payload_hash,
                "received_at": _iso(event.received_at),
                "expires_at": event.expires_at,
            }
        )
        return self.db.put_item(
            WEBHOOK_EVENTS_TABLE,
            item,
            condition_expression=(
                "attribute_not_exists(event_key) OR "
                "(processing_result = :processing AND received_at < :lease_cutoff)"
            ),
            expression_attribute_values={
                ":processing": ProcessingResult.PROCESSING.value,
                ":lease_cutoff": _iso(now - EVENT_CLAIM_LEASE),
            },
        )

    def complete_event(
        self,
        provider: Provider,
        event_id: str,
        result: ProcessingResult,
        error_message: str | None = None,
    ) -> None:
        """Record the outcome of a claimed event."""
        values: dict[str, Any] = {
            ":result": result.value,
            ":processed_at": _iso(_now()),
        }
        expression = "SET processing_result = :result, processed_at = :processed_at"
        if error_message:
            expression += ", error_message = :error"
            values[":error"] = error_message
        self.db.update_item(
            WEBHOOK_EVENTS_TABLE,
            {"event_key": provider_key(provider, event_id)},
            expression,
            values,
        )

    def release_event(self, provider: Provider, event_id: str) -> None:
        """Drop a claim so the provider's redelivery is applied again."""
        self.db.delete_item(
            WEBHOOK_EVENTS_TABLE,
            {"event_key": provider_key(provider, event_id)},
            condition_expression="processing_result = :processing",
            expression_attribute_values={":processing": ProcessingResult.PROCESSING.value},
        )

    def get_event(self, provider: Provider, event_id: str) -> ProcessedWebhookEvent | None:
        item = self.db.get_item(
            WEBHOOK_EVENTS_TABLE, {"event_key": provider_key(provider, event_id)}
        )
        if not item:
            return None
        effect = item.get("effect")
        return ProcessedWebhookEvent(
            event_id=item["event_id"],
            provider=Provider(item["provider"]),
            event_type=item["event_type"],
            effect=WebhookEffect(effect) if effect else None,
            processing_result=ProcessingResult(item["processing_result"]),
            payload_hash=item["payload_hash"],
            received_at=datetime.fromisoformat(item["received_at"]),
            processed_at=_parse_dt(item.get("processed_at")),
            error_message=item.get("error_message"),
            expires_at=int(item["expires_at"]),
        )
