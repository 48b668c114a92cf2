"""Pytest configuration and fixtures for payment gateway tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (payments, subscriptions, webhook-events tables)
- Provider settings with test credentials
- Stripe webhook signing
- Sample ledger records
"""

import hashlib
import hmac
import json
import os
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any, Generator

import boto3
import pytest
from moto import mock_aws
from pydantic import SecretStr

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-paygate")
os.environ.setdefault("ENVIRONMENT", "test")

# Only set fake credentials for moto if no real credentials are present
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from paygate.config import PayPalSettings, StripeSettings  # noqa: E402
from paygate.models.enums import PaymentStatus, Provider, SubscriptionStatus  # noqa: E402
from paygate.models.records import PaymentRecord, SubscriptionRecord  # noqa: E402

TABLE_PREFIX = "test-paygate"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
PAYPAL_WEBHOOK_ID = "WH-TEST-123"


# === Singleton Resets ===


@pytest.fixture(autouse=True)
def reset_dynamodb_singleton() -> Generator[None, None, None]:
    """Reset DynamoDB singleton before and after each test.

    This ensures tests using mock_aws get a fresh service instance
    inside the mock context rather than reusing a singleton from
    a previous test or non-mocked context.
    """
    from paygate.services.dynamodb import reset_dynamodb_service

    reset_dynamodb_service()
    yield
    reset_dynamodb_service()


@pytest.fixture(autouse=True)
def reset_ssm_singleton() -> Generator[None, None, None]:
    from paygate.services.ssm_service import reset_ssm_service

    reset_ssm_service()
    yield
    reset_ssm_service()


@pytest.fixture(autouse=True)
def reset_api_services() -> Generator[None, None, None]:
    """Clear cached API dependencies (settings, ledger, engine)."""
    from paygate.api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === AWS Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mocked DynamoDB client."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        yield client


@pytest.fixture
def ssm_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mocked SSM client."""
    with mock_aws():
        client = boto3.client("ssm", region_name="eu-west-1")
        yield client


@pytest.fixture
def create_tables(dynamodb_client: Any) -> None:
    """Create all ledger tables for testing."""
    tables = [
        {
            "TableName": f"{TABLE_PREFIX}-payments",
            "KeySchema": [{"AttributeName": "provider_key", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "provider_key", "AttributeType": "S"},
                {"AttributeName": "payment_id", "AttributeType": "S"},
            ],
            "GlobalSecondaryIndexes": [
                {
                    "IndexName": "payment_id-index",
                    "KeySchema": [{"AttributeName": "payment_id", "KeyType": "HASH"}],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{TABLE_PREFIX}-subscriptions",
            "KeySchema": [{"AttributeName": "provider_key", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "provider_key", "AttributeType": "S"},
                {"AttributeName": "subscription_id", "AttributeType": "S"},
            ],
            "GlobalSecondaryIndexes": [
                {
                    "IndexName": "subscription_id-index",
                    "KeySchema": [{"AttributeName": "subscription_id", "KeyType": "HASH"}],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{TABLE_PREFIX}-webhook-events",
            "KeySchema": [{"AttributeName": "event_key", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "event_key", "AttributeType": "S"},
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
    ]

    for table_config in tables:
        dynamodb_client.create_table(**table_config)


@pytest.fixture
def ledger(create_tables: None) -> Any:
    """Ledger backed by the moto tables."""
    from paygate.services.dynamodb import get_dynamodb_service
    from paygate.services.ledger import Ledger

    return Ledger(get_dynamodb_service())


# === Provider Settings ===


@pytest.fixture
def stripe_settings() -> StripeSettings:
    return StripeSettings(
        secret_key=SecretStr("sk_test_123"),
        publishable_key="pk_test_123",
        webhook_secret=SecretStr(STRIPE_WEBHOOK_SECRET),
    )


@pytest.fixture
def paypal_settings() -> PayPalSettings:
    return PayPalSettings(
        client_id="paypal-client",
        client_secret=SecretStr("paypal-secret"),
        webhook_id=PAYPAL_WEBHOOK_ID,
        sandbox=True,
        return_url="https://shop.example.com/return",
        cancel_url="https://shop.example.com/cancel",
    )


# === Stripe Webhook Signing ===


def _stripe_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign_stripe() -> Callable[..., tuple[bytes, dict[str, str]]]:
    """Build a signed Stripe delivery: (raw body, headers).

    Accepts an event dict (serialized here) or raw bytes, plus optional
    ``timestamp`` and ``secret`` overrides.
    """

    def sign(
        event: dict[str, Any] | bytes,
        *,
        timestamp: int | None = None,
        secret: str = STRIPE_WEBHOOK_SECRET,
    ) -> tuple[bytes, dict[str, str]]:
        payload = event if isinstance(event, bytes) else json.dumps(event).encode()
        ts = int(time.time()) if timestamp is None else timestamp
        return payload, {"Stripe-Signature": _stripe_signature(payload, secret, ts)}

    return sign


@pytest.fixture
def stripe_event() -> Callable[..., dict[str, Any]]:
    """Factory for Stripe event envelopes."""

    def build(event_id: str, event_type: str, obj: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": obj},
        }

    return build


# === Sample Records ===


@pytest.fixture
def sample_payment() -> PaymentRecord:
    from datetime import datetime, timezone

    now = datetime.now(timezone.utc)
    return PaymentRecord(
        payment_id="PAY-ABC123DEF456",
        provider=Provider.STRIPE,
        provider_payment_id="pi_test_1",
        amount=Decimal("100.00"),
        currency="EUR",
        status=PaymentStatus.CAPTURED,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def sample_subscription() -> SubscriptionRecord:
    from datetime import datetime, timezone

    from paygate.models.enums import BillingInterval

    now = datetime.now(timezone.utc)
    return SubscriptionRecord(
        subscription_id="SUB-ABC123DEF456",
        provider=Provider.STRIPE,
        provider_subscription_id="sub_test_1",
        plan_id="price_basic",
        status=SubscriptionStatus.ACTIVE,
        amount=Decimal("20.00"),
        currency="EUR",
        interval=BillingInterval.MONTH,
        created_at=now,
        updated_at=now,
    )
