"""Card/ACH provider backed by Stripe.

Uses the v8+ StripeClient pattern. Amounts go out as integer minor units
and come back through the money codec. Webhooks are authenticated with the
``Stripe-Signature`` HMAC scheme over the raw request body.
"""

import json
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, cast

import stripe
from pydantic import SecretStr
from stripe import StripeClient

from paygate.config import StripeSettings
from paygate.models.enums import (
    BillingInterval,
    PaymentStatus,
    Provider,
    RefundStatus,
    SnapshotKind,
    SubscriptionStatus,
    WebhookEffect,
)
from paygate.models.errors import (
    ConfigurationError,
    PayloadMalformed,
    ProviderError,
    SignatureInvalid,
    TransportError,
)
from paygate.models.provider import (
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
from paygate.services.providers.base import (
    PaymentProviderClient,
    lower_headers,
    map_status,
)
from paygate.utils.logging import get_logger, log_payment_operation
from paygate.utils.money import from_minor_units, normalize_currency, to_minor_units

logger = get_logger(__name__)

SIGNATURE_HEADER = "stripe-signature"
DEFAULT_SUBSCRIPTION_EXPAND = ("latest_invoice.payment_intent",)

PAYMENT_INTENT_STATUSES: dict[str, PaymentStatus] = {
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "processing": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.REQUIRES_ACTION,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "succeeded": PaymentStatus.CAPTURED,
    "canceled": PaymentStatus.CANCELED,
}

SUBSCRIPTION_STATUSES: dict[str, SubscriptionStatus] = {
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAUSED,
    "canceled": SubscriptionStatus.CANCELED,
}

REFUND_STATUSES: dict[str, RefundStatus] = {
    "pending": RefundStatus.PENDING,
    "requires_action": RefundStatus.PENDING,
    "succeeded": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.CANCELED,
}


def _to_mapping(obj: Any) -> Mapping[str, Any]:
    """View a StripeObject (or plain dict) as a mapping."""
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return obj
    return obj.to_dict()


def _first_item(obj: Mapping[str, Any], field: str) -> Mapping[str, Any]:
    data = _to_mapping(obj.get(field)).get("data") or []
    return _to_mapping(data[0]) if data else {}


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _metadata(obj: Mapping[str, Any]) -> dict[str, str]:
    return {str(k): str(v) for k, v in _to_mapping(obj.get("metadata")).items()}


class StripeProvider(PaymentProviderClient):
    """Stripe implementation of the provider contract.

    Usage:
        stripe_provider = StripeProvider(settings.stripe)
        result = stripe_provider.create_payment(Decimal("49.99"), "EUR")
    """

    name = Provider.STRIPE

    EVENT_EFFECTS = {
        "payment_intent.succeeded": WebhookEffect.PAYMENT_SUCCEEDED,
        "payment_intent.amount_capturable_updated": WebhookEffect.PAYMENT_AUTHORIZED,
        "payment_intent.requires_action": WebhookEffect.PAYMENT_REQUIRES_ACTION,
        "payment_intent.payment_failed": WebhookEffect.PAYMENT_FAILED,
        "payment_intent.canceled": WebhookEffect.PAYMENT_CANCELED,
        "charge.refunded": WebhookEffect.PAYMENT_REFUNDED,
        "customer.subscription.created": WebhookEffect.SUBSCRIPTION_UPDATED,
        "customer.subscription.updated": WebhookEffect.SUBSCRIPTION_UPDATED,
        "customer.subscription.deleted": WebhookEffect.SUBSCRIPTION_CANCELED,
        "customer.subscription.paused": WebhookEffect.SUBSCRIPTION_PAUSED,
        "customer.subscription.resumed": WebhookEffect.SUBSCRIPTION_RESUMED,
        "invoice.paid": WebhookEffect.SUBSCRIPTION_PERIOD_RENEWED,
        "invoice.payment_failed": WebhookEffect.SUBSCRIPTION_PAST_DUE,
    }

    def __init__(
        self,
        settings: StripeSettings,
        *,
        timeout: float = 30.0,
        long_timeout: float = 60.0,
        webhook_tolerance: int = 300,
        subscription_expand: tuple[str, ...] = DEFAULT_SUBSCRIPTION_EXPAND,
    ) -> None:
        self._settings = settings
        self._timeout = timeout
        self._long_timeout = long_timeout
        self._webhook_tolerance = webhook_tolerance
        self._subscription_expand = list(subscription_expand)
        self._client: StripeClient | None = None
        self._long_client: StripeClient | None = None

    def is_configured(self) -> bool:
        return bool(self._settings.secret_key)

    def _build_client(self, timeout: float) -> StripeClient:
        self.require_configured()
        secret_key = cast(SecretStr, self._settings.secret_key)
        return StripeClient(
            secret_key.get_secret_value(),
            stripe_version=self._settings.api_version,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=0,
        )

    def _get_client(self, long_running: bool = False) -> StripeClient:
        """Get or create the Stripe client for the given timeout class (lazy)."""
        if long_running:
            if self._long_client is None:
                self._long_client = self._build_client(self._long_timeout)
            return self._long_client
        if self._client is None:
            self._client = self._build_client(self._timeout)
            logger.info("Stripe client initialized (api version %s)", self._settings.api_version)
        return self._client

    def _error(self, operation: str, e: stripe.StripeError) -> ProviderError:
        error_code = getattr(e, "code", None)
        message = getattr(e, "user_message", None) or str(e)
        log_payment_operation(
            logger, operation, provider=self.name.value, error=message, code=error_code
        )
        if isinstance(e, stripe.APIConnectionError):
            return TransportError(message, provider=self.name.value, provider_code=error_code)
        return ProviderError(
            message,
            provider=self.name.value,
            provider_code=error_code,
            http_status=getattr(e, "http_status", None),
        )

    # =========================================================================
    # Payments
    # =========================================================================

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
        currency = normalize_currency(currency)
        client = self._get_client()

        params: dict[str, Any] = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "capture_method": "automatic" if capture else "manual",
            "metadata": dict(metadata or {}),
        }
        if customer_reference:
            params["customer"] = customer_reference
        if description:
            params["description"] = description
        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        try:
            intent = _to_mapping(client.payment_intents.create(params=params, options=options))
        except stripe.StripeError as e:
            raise self._error("create_payment", e) from e

        status = map_status(PAYMENT_INTENT_STATUSES, intent.get("status"), self.name, "payment")
        log_payment_operation(
            logger,
            "create_payment",
            provider=self.name.value,
            provider_id=intent["id"],
            amount=amount,
            currency=currency,
            status=status.value,
        )
        return ProviderPayment(
            provider_payment_id=intent["id"],
            status=status,
            amount=from_minor_units(int(intent["amount"]), currency),
            currency=currency,
            client_secret=intent.get("client_secret"),
        )

    def capture_payment(self, provider_payment_id: str) -> ProviderCapture:
        client = self._get_client()
        try:
            intent = _to_mapping(client.payment_intents.capture(provider_payment_id))
        except stripe.StripeError as e:
            raise self._error("capture_payment", e) from e

        currency = normalize_currency(intent["currency"])
        status = map_status(PAYMENT_INTENT_STATUSES, intent.get("status"), self.name, "payment")
        captured = from_minor_units(int(intent.get("amount_received") or 0), currency)
        log_payment_operation(
            logger,
            "capture_payment",
            provider=self.name.value,
            provider_id=provider_payment_id,
            amount=captured,
            currency=currency,
            status=status.value,
        )
        return ProviderCapture(
            provider_payment_id=provider_payment_id,
            status=status,
            captured_amount=captured,
            currency=currency,
            capture_id=intent.get("latest_charge"),
        )

    def refund_payment(
        self, provider_payment_id: str, amount: Decimal | None = None
    ) -> ProviderRefund:
        snapshot = self.get_payment(provider_payment_id)
        currency = snapshot.currency
        remaining = snapshot.captured_amount - snapshot.refunded_amount
        if snapshot.captured_amount <= 0:
            raise ProviderError(
                f"Payment {provider_payment_id} has no captured amount to refund",
                provider=self.name.value,
                provider_code="charge_not_captured",
            )
        if amount is not None and amount > remaining:
            raise ProviderError(
                f"Refund of {amount} {currency} exceeds refundable {remaining} {currency}",
                provider=self.name.value,
                provider_code="amount_too_large",
            )

        # The expanded charge carries the running total after this refund
        params: dict[str, Any] = {"payment_intent": provider_payment_id, "expand": ["charge"]}
        if amount is not None:
            params["amount"] = to_minor_units(amount, currency)

        client = self._get_client()
        try:
            refund = _to_mapping(client.refunds.create(params=params))
        except stripe.StripeError as e:
            raise self._error("refund_payment", e) from e

        status = map_status(REFUND_STATUSES, refund.get("status"), self.name, "refund")
        refunded = from_minor_units(int(refund["amount"]), currency)
        charge = refund.get("charge")
        refunded_total = (
            from_minor_units(int(charge["amount_refunded"]), currency)
            if isinstance(charge, Mapping) and charge.get("amount_refunded") is not None
            else snapshot.refunded_amount + refunded
        )
        log_payment_operation(
            logger,
            "refund_payment",
            provider=self.name.value,
            provider_id=provider_payment_id,
            amount=refunded,
            currency=currency,
            status=status.value,
            refund_id=refund["id"],
        )
        return ProviderRefund(
            refund_id=refund["id"],
            status=status,
            amount=refunded,
            currency=currency,
            refunded_total=refunded_total,
        )

    def get_payment(self, provider_payment_id: str) -> PaymentSnapshot:
        client = self._get_client()
        try:
            intent = _to_mapping(
                client.payment_intents.retrieve(
                    provider_payment_id, params={"expand": ["latest_charge"]}
                )
            )
        except stripe.StripeError as e:
            raise self._error("get_payment", e) from e

        currency = normalize_currency(intent["currency"])
        charge = _to_mapping(intent.get("latest_charge"))
        return PaymentSnapshot(
            provider_payment_id=intent["id"],
            status=map_status(PAYMENT_INTENT_STATUSES, intent.get("status"), self.name, "payment"),
            amount=from_minor_units(int(intent["amount"]), currency),
            currency=currency,
            captured_amount=from_minor_units(int(intent.get("amount_received") or 0), currency),
            refunded_amount=from_minor_units(int(charge.get("amount_refunded") or 0), currency),
            capture_id=charge.get("id"),
            customer_reference=intent.get("customer"),
            metadata=_metadata(intent),
            created_at=_timestamp(intent.get("created")),
        )

    def create_customer(
        self,
        *,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> ProviderCustomer:
        params: dict[str, Any] = {"email": email, "metadata": dict(metadata or {})}
        if name:
            params["name"] = name
        client = self._get_client()
        try:
            customer = _to_mapping(client.customers.create(params=params))
        except stripe.StripeError as e:
            raise self._error("create_customer", e) from e
        return ProviderCustomer(customer_reference=customer["id"], email=customer.get("email"))

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _subscription_fields(self, sub: Mapping[str, Any]) -> dict[str, Any]:
        """Period and price fields, read from the subscription or its first item."""
        item = _first_item(sub, "items")
        price = _to_mapping(item.get("price"))
        recurring = _to_mapping(price.get("recurring"))
        currency = price.get("currency")
        unit_amount = price.get("unit_amount")
        return {
            "amount": (
                from_minor_units(int(unit_amount), currency)
                if unit_amount is not None and currency
                else None
            ),
            "currency": normalize_currency(currency) if currency else None,
            "interval": BillingInterval(recurring["interval"]) if recurring.get("interval") else None,
            "interval_count": int(recurring.get("interval_count") or 1),
            "current_period_start": _timestamp(
                sub.get("current_period_start") or item.get("current_period_start")
            ),
            "current_period_end": _timestamp(
                sub.get("current_period_end") or item.get("current_period_end")
            ),
            "trial_end": _timestamp(sub.get("trial_end")),
        }

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
        params: dict[str, Any] = {
            "customer": customer_reference,
            "items": [{"price": plan_id}],
            "payment_behavior": "default_incomplete",
            "metadata": dict(metadata or {}),
            "expand": self._subscription_expand,
        }
        if trial_end:
            params["trial_end"] = int(trial_end.timestamp())
        elif trial_period_days:
            params["trial_period_days"] = trial_period_days
        if billing_cycle_anchor:
            params["billing_cycle_anchor"] = int(billing_cycle_anchor.timestamp())

        client = self._get_client(long_running=True)
        try:
            sub = _to_mapping(client.subscriptions.create(params=params))
        except stripe.StripeError as e:
            raise self._error("create_subscription", e) from e

        invoice = _to_mapping(sub.get("latest_invoice"))
        intent = _to_mapping(invoice.get("payment_intent"))
        status = map_status(SUBSCRIPTION_STATUSES, sub.get("status"), self.name, "subscription")
        log_payment_operation(
            logger,
            "create_subscription",
            provider=self.name.value,
            provider_id=sub["id"],
            status=status.value,
            plan_id=plan_id,
        )
        return ProviderSubscription(
            provider_subscription_id=sub["id"],
            status=status,
            plan_id=plan_id,
            client_secret=intent.get("client_secret"),
            **self._subscription_fields(sub),
        )

    def cancel_subscription(self, provider_subscription_id: str) -> ProviderCancellation:
        client = self._get_client()
        try:
            sub = _to_mapping(client.subscriptions.cancel(provider_subscription_id))
        except stripe.StripeError as e:
            raise self._error("cancel_subscription", e) from e

        log_payment_operation(
            logger,
            "cancel_subscription",
            provider=self.name.value,
            provider_id=provider_subscription_id,
            status=sub.get("status"),
        )
        return ProviderCancellation(
            provider_subscription_id=provider_subscription_id,
            status=map_status(SUBSCRIPTION_STATUSES, sub.get("status"), self.name, "subscription"),
            canceled_at=_timestamp(sub.get("canceled_at")) or datetime.now(timezone.utc),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def _webhook_secret(self) -> str:
        secret = self._settings.webhook_secret
        if secret is None:
            raise ConfigurationError(
                "Stripe webhook secret is not configured", provider=self.name.value
            )
        return secret.get_secret_value()

    def _check_timestamp(self, header: str) -> None:
        """Reject headers without a usable ``t=`` or outside the tolerance window.

        The library only rejects old timestamps; future ones are checked here.
        """
        timestamps = []
        for part in header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamps.append(value)
        if not timestamps:
            raise SignatureInvalid("Stripe-Signature header has no timestamp")
        try:
            signed_at = int(timestamps[0])
        except ValueError as e:
            raise SignatureInvalid("Stripe-Signature timestamp is not an integer") from e
        if abs(time.time() - signed_at) > self._webhook_tolerance:
            raise SignatureInvalid("Stripe-Signature timestamp outside tolerance window")

    def verify_and_parse_webhook(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        secret = self._webhook_secret()
        header = lower_headers(headers).get(SIGNATURE_HEADER)
        if not header:
            raise SignatureInvalid("Missing Stripe-Signature header")
        self._check_timestamp(header)

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureInvalid("Webhook body is not UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, header, secret, tolerance=self._webhook_tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid Stripe webhook signature: %s", str(e))
            raise SignatureInvalid("Invalid Stripe webhook signature") from e

        try:
            event = json.loads(payload)
            event_id = event["id"]
            event_type = event["type"]
            obj = event.get("data", {}).get("object") or {}
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise PayloadMalformed("Stripe event body is not a valid event") from e
        if not isinstance(obj, dict):
            raise PayloadMalformed("Stripe event data.object is not an object")

        snapshot = self._snapshot(obj) if event_type in self.EVENT_EFFECTS else ResourceSnapshot(
            kind=SnapshotKind.OTHER, provider_id=obj.get("id")
        )
        return WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            occurred_at=_timestamp(event.get("created")),
            snapshot=snapshot,
            resource=obj,
        )

    def _snapshot(self, obj: dict[str, Any]) -> ResourceSnapshot:
        """Normalize the event's data.object by its Stripe object type."""
        object_type = obj.get("object")
        try:
            if object_type == "payment_intent":
                currency = normalize_currency(obj["currency"])
                return ResourceSnapshot(
                    kind=SnapshotKind.PAYMENT,
                    provider_id=obj["id"],
                    raw_status=obj.get("status"),
                    payment_status=map_status(
                        PAYMENT_INTENT_STATUSES, obj.get("status"), self.name, "payment"
                    ),
                    amount=from_minor_units(int(obj["amount"]), currency),
                    currency=currency,
                )
            if object_type == "charge":
                currency = normalize_currency(obj["currency"])
                return ResourceSnapshot(
                    kind=SnapshotKind.REFUND,
                    provider_id=obj["payment_intent"],
                    currency=currency,
                    refunded_total=from_minor_units(int(obj.get("amount_refunded") or 0), currency),
                )
            if object_type == "subscription":
                fields = self._subscription_fields(obj)
                return ResourceSnapshot(
                    kind=SnapshotKind.SUBSCRIPTION,
                    provider_id=obj["id"],
                    raw_status=obj.get("status"),
                    subscription_status=map_status(
                        SUBSCRIPTION_STATUSES, obj.get("status"), self.name, "subscription"
                    ),
                    amount=fields["amount"],
                    currency=fields["currency"],
                    current_period_start=fields["current_period_start"],
                    current_period_end=fields["current_period_end"],
                    trial_end=fields["trial_end"],
                    canceled_at=_timestamp(obj.get("canceled_at")),
                )
            if object_type == "invoice":
                parent = _to_mapping(obj.get("parent"))
                details = _to_mapping(parent.get("subscription_details"))
                subscription = obj.get("subscription") or details.get("subscription")
                if isinstance(subscription, Mapping):
                    subscription = subscription.get("id")
                period = _to_mapping(_first_item(obj, "lines").get("period"))
                currency = obj.get("currency")
                return ResourceSnapshot(
                    kind=SnapshotKind.INVOICE,
                    provider_id=subscription,
                    raw_status=obj.get("status"),
                    amount=(
                        from_minor_units(int(obj.get("amount_paid") or 0), currency)
                        if currency
                        else None
                    ),
                    currency=normalize_currency(currency) if currency else None,
                    current_period_start=_timestamp(period.get("start")),
                    current_period_end=_timestamp(period.get("end")),
                )
        except (KeyError, TypeError, ValueError) as e:
            raise PayloadMalformed(f"Stripe {object_type} object is missing fields") from e
        return ResourceSnapshot(kind=SnapshotKind.OTHER, provider_id=obj.get("id"))
