"""Wallet/redirect provider backed by the PayPal REST API.

Orders v2 for payments, Billing v1 for subscriptions. Amounts go out as
major-unit decimal strings. Webhooks are verified by PayPal itself through
the verify-webhook-signature endpoint.
"""

import hashlib
import json
import threading
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, cast

import httpx
from pydantic import SecretStr

from paygate.config import PayPalSettings
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
from paygate.utils.money import from_major_string, normalize_currency, to_major_string

logger = get_logger(__name__)

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"

# Transmission headers forwarded to verify-webhook-signature, by request field
VERIFICATION_HEADERS: dict[str, str] = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}

ORDER_STATUSES: dict[str, PaymentStatus] = {
    "CREATED": PaymentStatus.PENDING,
    "SAVED": PaymentStatus.PENDING,
    "APPROVED": PaymentStatus.AUTHORIZED,
    "PAYER_ACTION_REQUIRED": PaymentStatus.REQUIRES_ACTION,
    "COMPLETED": PaymentStatus.CAPTURED,
    "VOIDED": PaymentStatus.CANCELED,
}

CAPTURE_STATUSES: dict[str, PaymentStatus] = {
    "COMPLETED": PaymentStatus.CAPTURED,
    "PENDING": PaymentStatus.PENDING,
    "DECLINED": PaymentStatus.FAILED,
    "FAILED": PaymentStatus.FAILED,
    "REFUNDED": PaymentStatus.REFUNDED,
    "PARTIALLY_REFUNDED": PaymentStatus.PARTIALLY_REFUNDED,
}

SUBSCRIPTION_STATUSES: dict[str, SubscriptionStatus] = {
    "APPROVAL_PENDING": SubscriptionStatus.INCOMPLETE,
    "APPROVED": SubscriptionStatus.INCOMPLETE,
    "ACTIVE": SubscriptionStatus.ACTIVE,
    "SUSPENDED": SubscriptionStatus.PAUSED,
    "CANCELLED": SubscriptionStatus.CANCELED,
    "EXPIRED": SubscriptionStatus.EXPIRED,
}

REFUND_STATUSES: dict[str, RefundStatus] = {
    "PENDING": RefundStatus.PENDING,
    "COMPLETED": RefundStatus.SUCCEEDED,
    "FAILED": RefundStatus.FAILED,
    "CANCELLED": RefundStatus.CANCELED,
}

INTERVAL_UNITS: dict[str, BillingInterval] = {
    "DAY": BillingInterval.DAY,
    "WEEK": BillingInterval.WEEK,
    "MONTH": BillingInterval.MONTH,
    "YEAR": BillingInterval.YEAR,
}


@dataclass
class AccessToken:
    """Cached OAuth2 bearer token."""

    value: str
    expires_at: float

    def is_valid(self) -> bool:
        return time.monotonic() < self.expires_at


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _link(resource: Mapping[str, Any], *rels: str) -> str | None:
    for link in resource.get("links") or []:
        if link.get("rel") in rels:
            return link.get("href")
    return None


def _related_order_id(resource: Mapping[str, Any]) -> str | None:
    related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
    return related.get("order_id")


def _first_capture(order: Mapping[str, Any]) -> Mapping[str, Any]:
    for unit in order.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            return captures[0]
    return {}


def _unit_amount(order: Mapping[str, Any]) -> Mapping[str, Any]:
    units = order.get("purchase_units") or [{}]
    return units[0].get("amount") or {}


class PayPalProvider(PaymentProviderClient):
    """PayPal implementation of the provider contract.

    The OAuth token is the only mutable state. It is shared by all threads
    using this client and refreshed under a lock, so concurrent callers
    trigger a single token request.
    """

    name = Provider.PAYPAL

    EVENT_EFFECTS = {
        "CHECKOUT.ORDER.APPROVED": WebhookEffect.PAYMENT_AUTHORIZED,
        "PAYMENT.CAPTURE.COMPLETED": WebhookEffect.PAYMENT_SUCCEEDED,
        "PAYMENT.CAPTURE.DENIED": WebhookEffect.PAYMENT_FAILED,
        "PAYMENT.CAPTURE.REFUNDED": WebhookEffect.PAYMENT_REFUNDED,
        "BILLING.SUBSCRIPTION.ACTIVATED": WebhookEffect.SUBSCRIPTION_ACTIVATED,
        "BILLING.SUBSCRIPTION.UPDATED": WebhookEffect.SUBSCRIPTION_UPDATED,
        "BILLING.SUBSCRIPTION.SUSPENDED": WebhookEffect.SUBSCRIPTION_PAUSED,
        "BILLING.SUBSCRIPTION.CANCELLED": WebhookEffect.SUBSCRIPTION_CANCELED,
        "BILLING.SUBSCRIPTION.EXPIRED": WebhookEffect.SUBSCRIPTION_EXPIRED,
        "BILLING.SUBSCRIPTION.PAYMENT.FAILED": WebhookEffect.SUBSCRIPTION_PAST_DUE,
        "PAYMENT.SALE.COMPLETED": WebhookEffect.SUBSCRIPTION_PERIOD_RENEWED,
    }

    def __init__(
        self,
        settings: PayPalSettings,
        *,
        timeout: float = 30.0,
        long_timeout: float = 60.0,
        token_refresh_margin: int = 60,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._timeout = timeout
        self._long_timeout = long_timeout
        self._token_refresh_margin = token_refresh_margin
        self._http = http_client or httpx.Client(
            base_url=self.base_url, timeout=httpx.Timeout(timeout)
        )
        self._token: AccessToken | None = None
        self._token_lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return SANDBOX_BASE_URL if self._settings.sandbox else LIVE_BASE_URL

    def is_configured(self) -> bool:
        return bool(self._settings.client_id and self._settings.client_secret)

    def close(self) -> None:
        self._http.close()

    # =========================================================================
    # Transport
    # =========================================================================

    def _access_token(self) -> str:
        """Return a valid bearer token, fetching one if needed."""
        token = self._token
        if token is not None and token.is_valid():
            return token.value

        with self._token_lock:
            # Another thread may have refreshed while we waited
            token = self._token
            if token is not None and token.is_valid():
                return token.value
            self._token = self._fetch_token()
            return self._token.value

    def _fetch_token(self) -> AccessToken:
        self.require_configured()
        client_id = cast(str, self._settings.client_id)
        client_secret = cast(SecretStr, self._settings.client_secret)
        try:
            response = self._http.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(client_id, client_secret.get_secret_value()),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"PayPal token request failed: {e}", provider=self.name.value
            ) from e
        body = self._decode(response)
        if response.status_code >= 400 or "access_token" not in body:
            raise ProviderError(
                f"PayPal authentication failed: {self._error_message(body)}",
                provider=self.name.value,
                provider_code=body.get("error"),
                http_status=response.status_code,
            )
        lifetime = int(body.get("expires_in", 0)) - self._token_refresh_margin
        logger.info("PayPal access token obtained (valid %ds)", max(lifetime, 0))
        return AccessToken(value=body["access_token"], expires_at=time.monotonic() + lifetime)

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text}
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _error_message(body: Mapping[str, Any]) -> str:
        details = body.get("details") or [{}]
        return (
            body.get("message")
            or body.get("error_description")
            or details[0].get("description")
            or "Unknown PayPal error"
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        content: bytes | None = None,
        long_running: bool = False,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        self.require_configured()
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "PayPal-Request-Id": request_id or str(uuid.uuid4()),
        }
        try:
            response = self._http.request(
                method,
                path,
                json=json_body,
                content=content,
                headers=headers,
                timeout=self._long_timeout if long_running else self._timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"PayPal {method} {path} failed: {e}", provider=self.name.value
            ) from e

        body = self._decode(response)
        if response.status_code == 401:
            self.invalidate_token()
        if response.status_code >= 400:
            details = body.get("details") or [{}]
            raise ProviderError(
                self._error_message(body),
                provider=self.name.value,
                provider_code=details[0].get("issue") or body.get("name"),
                http_status=response.status_code,
            )
        return body

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
        unit: dict[str, Any] = {
            "amount": {
                "currency_code": currency,
                "value": to_major_string(amount, currency),
            },
        }
        if metadata:
            unit["custom_id"] = json.dumps(metadata, sort_keys=True)
        if description:
            unit["description"] = description

        body: dict[str, Any] = {
            "intent": "CAPTURE" if capture else "AUTHORIZE",
            "purchase_units": [unit],
        }
        context = {
            "return_url": self._settings.return_url,
            "cancel_url": self._settings.cancel_url,
            "brand_name": self._settings.brand_name,
        }
        context = {k: v for k, v in context.items() if v}
        if context:
            body["application_context"] = context

        order = self._request(
            "POST", "/v2/checkout/orders", json_body=body, request_id=idempotency_key
        )
        status = map_status(ORDER_STATUSES, order.get("status"), self.name, "order")
        log_payment_operation(
            logger,
            "create_payment",
            provider=self.name.value,
            provider_id=order["id"],
            amount=amount,
            currency=currency,
            status=status.value,
        )
        return ProviderPayment(
            provider_payment_id=order["id"],
            status=status,
            amount=from_major_string(to_major_string(amount, currency), currency),
            currency=currency,
            approval_url=_link(order, "approve", "payer-action"),
        )

    def capture_payment(self, provider_payment_id: str) -> ProviderCapture:
        order = self._request("POST", f"/v2/checkout/orders/{provider_payment_id}/capture")
        capture = _first_capture(order)
        if not capture:
            raise ProviderError(
                f"PayPal returned no capture for order {provider_payment_id}",
                provider=self.name.value,
                provider_code="capture_not_found",
            )
        amount = capture.get("amount") or {}
        currency = normalize_currency(amount["currency_code"])
        status = map_status(CAPTURE_STATUSES, capture.get("status"), self.name, "capture")
        captured = from_major_string(amount["value"], currency)
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
            capture_id=capture.get("id"),
        )

    def refund_payment(
        self, provider_payment_id: str, amount: Decimal | None = None
    ) -> ProviderRefund:
        snapshot = self.get_payment(provider_payment_id)
        if not snapshot.capture_id:
            raise ProviderError(
                f"Order {provider_payment_id} has no capture to refund",
                provider=self.name.value,
                provider_code="capture_not_found",
            )
        currency = snapshot.currency
        remaining = snapshot.captured_amount - snapshot.refunded_amount
        if amount is not None and amount > remaining:
            raise ProviderError(
                f"Refund of {amount} {currency} exceeds refundable {remaining} {currency}",
                provider=self.name.value,
                provider_code="amount_too_large",
            )

        body: dict[str, Any] = {}
        if amount is not None:
            body["amount"] = {
                "currency_code": currency,
                "value": to_major_string(amount, currency),
            }
        refund = self._request(
            "POST", f"/v2/payments/captures/{snapshot.capture_id}/refund", json_body=body
        )
        status = map_status(REFUND_STATUSES, refund.get("status"), self.name, "refund")
        refunded = (
            from_major_string(refund["amount"]["value"], currency)
            if refund.get("amount")
            else (amount if amount is not None else remaining)
        )
        log_payment_operation(
            logger,
            "refund_payment",
            provider=self.name.value,
            provider_id=provider_payment_id,
            amount=refunded,
            currency=currency,
            status=status.value,
            refund_id=refund.get("id"),
        )
        return ProviderRefund(
            refund_id=refund["id"], status=status, amount=refunded, currency=currency
        )

    def get_payment(self, provider_payment_id: str) -> PaymentSnapshot:
        order = self._request("GET", f"/v2/checkout/orders/{provider_payment_id}")
        amount = _unit_amount(order)
        currency = normalize_currency(amount["currency_code"])
        capture = _first_capture(order)
        captured = (
            from_major_string(capture["amount"]["value"], currency)
            if capture.get("amount")
            else Decimal("0")
        )
        breakdown = (capture.get("seller_receivable_breakdown") or {}).get("total_refunded_amount")
        refunded = from_major_string(breakdown["value"], currency) if breakdown else Decimal("0")
        if capture.get("status") == "REFUNDED" and not breakdown:
            refunded = captured

        custom_id = (order.get("purchase_units") or [{}])[0].get("custom_id")
        metadata: dict[str, str] = {}
        if custom_id:
            try:
                metadata = {str(k): str(v) for k, v in json.loads(custom_id).items()}
            except (ValueError, AttributeError):
                metadata = {"custom_id": custom_id}

        payer = order.get("payer") or {}
        return PaymentSnapshot(
            provider_payment_id=order["id"],
            status=map_status(ORDER_STATUSES, order.get("status"), self.name, "order"),
            amount=from_major_string(amount["value"], currency),
            currency=currency,
            captured_amount=captured,
            refunded_amount=refunded,
            capture_id=capture.get("id"),
            customer_reference=payer.get("payer_id"),
            metadata=metadata,
            created_at=_parse_time(order.get("create_time")),
        )

    def create_customer(
        self,
        *,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> ProviderCustomer:
        """PayPal has no customer object; derive a stable payer reference."""
        self.require_configured()
        digest = hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()
        return ProviderCustomer(customer_reference=f"PAYER-{digest[:16].upper()}", email=email)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _plan_pricing(self, plan_id: str) -> dict[str, Any]:
        """Price and frequency of the plan's regular billing cycle."""
        plan = self._request("GET", f"/v1/billing/plans/{plan_id}")
        cycles = plan.get("billing_cycles") or []
        regular = next((c for c in cycles if c.get("tenure_type") == "REGULAR"), None)
        if regular is None:
            return {}
        frequency = regular.get("frequency") or {}
        price = (regular.get("pricing_scheme") or {}).get("fixed_price") or {}
        currency = price.get("currency_code")
        return {
            "amount": from_major_string(price["value"], currency) if currency else None,
            "currency": normalize_currency(currency) if currency else None,
            "interval": INTERVAL_UNITS.get(frequency.get("interval_unit", "")),
            "interval_count": int(frequency.get("interval_count") or 1),
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
        body: dict[str, Any] = {"plan_id": plan_id}
        if billing_cycle_anchor:
            body["start_time"] = billing_cycle_anchor.astimezone(timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            )
        custom = {"customer_reference": customer_reference, **(metadata or {})}
        body["custom_id"] = json.dumps(custom, sort_keys=True)
        context = {
            "return_url": self._settings.return_url,
            "cancel_url": self._settings.cancel_url,
            "brand_name": self._settings.brand_name,
        }
        context = {k: v for k, v in context.items() if v}
        if context:
            body["application_context"] = context

        pricing = self._plan_pricing(plan_id)
        sub = self._request(
            "POST", "/v1/billing/subscriptions", json_body=body, long_running=True
        )
        status = map_status(SUBSCRIPTION_STATUSES, sub.get("status"), self.name, "subscription")
        billing = sub.get("billing_info") or {}
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
            current_period_start=_parse_time(billing.get("last_payment", {}).get("time")),
            current_period_end=_parse_time(billing.get("next_billing_time")),
            trial_end=trial_end,
            approval_url=_link(sub, "approve"),
            **pricing,
        )

    def cancel_subscription(self, provider_subscription_id: str) -> ProviderCancellation:
        self._request(
            "POST",
            f"/v1/billing/subscriptions/{provider_subscription_id}/cancel",
            json_body={"reason": "Canceled by merchant"},
        )
        log_payment_operation(
            logger,
            "cancel_subscription",
            provider=self.name.value,
            provider_id=provider_subscription_id,
            status=SubscriptionStatus.CANCELED.value,
        )
        return ProviderCancellation(
            provider_subscription_id=provider_subscription_id,
            canceled_at=datetime.now(timezone.utc),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_and_parse_webhook(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        if not self._settings.webhook_id:
            raise ConfigurationError(
                "PayPal webhook id is not configured", provider=self.name.value
            )
        lowered = lower_headers(headers)
        missing = [h for h in VERIFICATION_HEADERS.values() if not lowered.get(h)]
        if missing:
            raise SignatureInvalid(f"Missing PayPal transmission headers: {', '.join(missing)}")

        try:
            raw_text = raw_body.decode("utf-8")
            event = json.loads(raw_text)
        except ValueError as e:
            raise SignatureInvalid("PayPal webhook body is not JSON and cannot be verified") from e
        if not isinstance(event, dict):
            raise SignatureInvalid("PayPal webhook body is not a JSON object")

        # Splice the raw body in so PayPal verifies exactly the bytes it signed
        fields = {name: lowered[header] for name, header in VERIFICATION_HEADERS.items()}
        fields["webhook_id"] = self._settings.webhook_id
        envelope = json.dumps(fields)[:-1] + ', "webhook_event": ' + raw_text + "}"

        result = self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            content=envelope.encode("utf-8"),
        )
        if result.get("verification_status") != "SUCCESS":
            logger.warning(
                "PayPal webhook verification failed: %s", result.get("verification_status")
            )
            raise SignatureInvalid("PayPal webhook signature verification failed")

        try:
            event_id = event["id"]
            event_type = event["event_type"]
            resource = event.get("resource") or {}
        except KeyError as e:
            raise PayloadMalformed("PayPal event is missing id or event_type") from e
        if not isinstance(resource, dict):
            raise PayloadMalformed("PayPal event resource is not an object")

        snapshot = (
            self._snapshot(event.get("resource_type"), resource)
            if event_type in self.EVENT_EFFECTS
            else ResourceSnapshot(kind=SnapshotKind.OTHER, provider_id=resource.get("id"))
        )
        return WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            occurred_at=_parse_time(event.get("create_time")),
            snapshot=snapshot,
            resource=resource,
        )

    def _refund_order_id(self, resource: Mapping[str, Any]) -> str | None:
        """Find the order a refund belongs to.

        Refund resources only link to their capture (``rel="up"``), so the
        order id is read from the capture.
        """
        order_id = _related_order_id(resource)
        if order_id:
            return order_id
        capture_url = _link(resource, "up")
        if not capture_url:
            return None
        capture_id = capture_url.rstrip("/").rsplit("/", 1)[-1]
        capture = self._request("GET", f"/v2/payments/captures/{capture_id}")
        return _related_order_id(capture)

    def _snapshot(self, resource_type: str | None, resource: dict[str, Any]) -> ResourceSnapshot:
        """Normalize the event resource by its PayPal resource type."""
        try:
            if resource_type == "checkout-order":
                amount = _unit_amount(resource)
                currency = normalize_currency(amount["currency_code"])
                return ResourceSnapshot(
                    kind=SnapshotKind.PAYMENT,
                    provider_id=resource["id"],
                    raw_status=resource.get("status"),
                    payment_status=map_status(
                        ORDER_STATUSES, resource.get("status"), self.name, "order"
                    ),
                    amount=from_major_string(amount["value"], currency),
                    currency=currency,
                )
            if resource_type == "capture":
                currency = normalize_currency(resource["amount"]["currency_code"])
                return ResourceSnapshot(
                    kind=SnapshotKind.PAYMENT,
                    provider_id=_related_order_id(resource),
                    raw_status=resource.get("status"),
                    payment_status=map_status(
                        CAPTURE_STATUSES, resource.get("status"), self.name, "capture"
                    ),
                    amount=from_major_string(resource["amount"]["value"], currency),
                    currency=currency,
                )
            if resource_type == "refund":
                currency = normalize_currency(resource["amount"]["currency_code"])
                return ResourceSnapshot(
                    kind=SnapshotKind.REFUND,
                    provider_id=self._refund_order_id(resource),
                    raw_status=resource.get("status"),
                    refund_id=resource["id"],
                    refund_amount=from_major_string(resource["amount"]["value"], currency),
                    currency=currency,
                )
            if resource_type == "subscription":
                billing = resource.get("billing_info") or {}
                return ResourceSnapshot(
                    kind=SnapshotKind.SUBSCRIPTION,
                    provider_id=resource["id"],
                    raw_status=resource.get("status"),
                    subscription_status=map_status(
                        SUBSCRIPTION_STATUSES, resource.get("status"), self.name, "subscription"
                    ),
                    current_period_start=_parse_time(
                        (billing.get("last_payment") or {}).get("time")
                    ),
                    current_period_end=_parse_time(billing.get("next_billing_time")),
                    canceled_at=(
                        _parse_time(resource.get("status_update_time"))
                        if resource.get("status") in ("CANCELLED", "EXPIRED")
                        else None
                    ),
                )
            if resource_type == "sale":
                amount = resource.get("amount") or {}
                currency = amount.get("currency")
                return ResourceSnapshot(
                    kind=SnapshotKind.INVOICE,
                    provider_id=resource.get("billing_agreement_id"),
                    raw_status=resource.get("state"),
                    amount=from_major_string(amount["total"], currency) if currency else None,
                    currency=normalize_currency(currency) if currency else None,
                )
        except (KeyError, TypeError, ValueError) as e:
            raise PayloadMalformed(f"PayPal {resource_type} resource is missing fields") from e
        return ResourceSnapshot(kind=SnapshotKind.OTHER, provider_id=resource.get("id"))
