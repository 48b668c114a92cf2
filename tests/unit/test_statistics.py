"""Unit tests for statistics aggregation."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from paygate.models.enums import (
    BillingInterval,
    PaymentStatus,
    Provider,
    SubscriptionStatus,
)
from paygate.models.records import PaymentRecord, SubscriptionRecord
from paygate.services.statistics import (
    PERIODS,
    compute_statistics,
    monthly_amount,
    period_start,
)

NOW = datetime(2026, 6, 30, 12, 0, tzinfo=timezone.utc)


def _payment(
    provider_payment_id: str,
    amount: str,
    status: PaymentStatus,
    *,
    currency: str = "EUR",
    provider: Provider = Provider.STRIPE,
    refunded: str = "0",
    age_days: int = 1,
) -> PaymentRecord:
    created = NOW - timedelta(days=age_days)
    return PaymentRecord(
        payment_id=f"PAY-{provider_payment_id.upper()}",
        provider=provider,
        provider_payment_id=provider_payment_id,
        amount=Decimal(amount),
        currency=currency,
        status=status,
        refunded_amount=Decimal(refunded),
        created_at=created,
        updated_at=created,
    )


def _subscription(
    amount: str | None,
    interval: BillingInterval | None,
    *,
    interval_count: int = 1,
    currency: str | None = "EUR",
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
) -> SubscriptionRecord:
    return SubscriptionRecord(
        subscription_id="SUB-1",
        provider=Provider.STRIPE,
        provider_subscription_id="sub_1",
        plan_id="price_1",
        status=status,
        amount=Decimal(amount) if amount is not None else None,
        currency=currency,
        interval=interval,
        interval_count=interval_count,
        created_at=NOW,
        updated_at=NOW,
    )


class TestPeriods:
    @pytest.mark.parametrize("period", sorted(PERIODS))
    def test_known_periods(self, period: str) -> None:
        assert period_start(period, NOW) == NOW - PERIODS[period]

    def test_unknown_period(self) -> None:
        with pytest.raises(ValueError, match="forever"):
            period_start("forever", NOW)


class TestMonthlyAmount:
    @pytest.mark.parametrize(
        "amount,interval,count,expected",
        [
            ("20.00", BillingInterval.MONTH, 1, Decimal("20.00")),
            ("120.00", BillingInterval.YEAR, 1, Decimal("10.00")),
            ("60.00", BillingInterval.MONTH, 3, Decimal("20.00")),
            ("12.00", BillingInterval.WEEK, 1, Decimal("52.00")),
        ],
    )
    def test_normalized_to_month(
        self, amount: str, interval: BillingInterval, count: int, expected: Decimal
    ) -> None:
        monthly = monthly_amount(_subscription(amount, interval, interval_count=count))

        assert monthly == expected

    def test_unknown_price(self) -> None:
        assert monthly_amount(_subscription(None, BillingInterval.MONTH)) is None
        assert monthly_amount(_subscription("10.00", None)) is None


class TestComputeStatistics:
    def test_empty_ledger(self) -> None:
        stats = compute_statistics("30days", [], [], now=NOW)

        assert stats.total_payments == 0
        assert stats.success_rate == 0.0
        assert stats.revenue == {}
        assert stats.by_provider == []
        assert stats.since == NOW - timedelta(days=30)

    def test_revenue_is_net_of_refunds_and_per_currency(self) -> None:
        payments = [
            _payment("pi_1", "100.00", PaymentStatus.CAPTURED),
            _payment("pi_2", "50.00", PaymentStatus.PARTIALLY_REFUNDED, refunded="20.00"),
            _payment("pi_3", "30.00", PaymentStatus.REFUNDED, refunded="30.00"),
            _payment("pi_4", "500", PaymentStatus.CAPTURED, currency="JPY"),
            _payment("pi_5", "75.00", PaymentStatus.FAILED),
            _payment("pi_6", "75.00", PaymentStatus.PENDING),
        ]

        stats = compute_statistics("30days", payments, [], now=NOW)

        assert stats.total_payments == 6
        assert stats.successful_payments == 4
        assert stats.success_rate == 66.7
        assert stats.revenue == {"EUR": Decimal("130.00"), "JPY": Decimal("500")}

    def test_payments_outside_period_are_excluded(self) -> None:
        payments = [
            _payment("pi_1", "10.00", PaymentStatus.CAPTURED, age_days=3),
            _payment("pi_2", "10.00", PaymentStatus.CAPTURED, age_days=10),
        ]

        stats = compute_statistics("7days", payments, [], now=NOW)

        assert stats.total_payments == 1
        assert stats.revenue == {"EUR": Decimal("10.00")}

    def test_breakdown_by_provider(self) -> None:
        payments = [
            _payment("pi_1", "10.00", PaymentStatus.CAPTURED),
            _payment("ORDER-1", "25.00", PaymentStatus.CAPTURED, provider=Provider.PAYPAL),
            _payment("ORDER-2", "5.00", PaymentStatus.FAILED, provider=Provider.PAYPAL),
        ]

        stats = compute_statistics("30days", payments, [], now=NOW)

        by_provider = {p.provider: p for p in stats.by_provider}
        assert [p.provider for p in stats.by_provider] == [Provider.PAYPAL, Provider.STRIPE]
        assert by_provider[Provider.PAYPAL].payments == 2
        assert by_provider[Provider.PAYPAL].revenue == {"EUR": Decimal("25.00")}
        assert by_provider[Provider.STRIPE].revenue == {"EUR": Decimal("10.00")}

    def test_mrr_counts_active_subscriptions_only(self) -> None:
        subscriptions = [
            _subscription("20.00", BillingInterval.MONTH),
            _subscription("120.00", BillingInterval.YEAR),
            _subscription("15.00", BillingInterval.MONTH, currency="USD"),
            _subscription("99.00", BillingInterval.MONTH, status=SubscriptionStatus.PAST_DUE),
        ]

        stats = compute_statistics("30days", [], subscriptions, now=NOW)

        assert stats.active_subscriptions == 3
        assert stats.mrr == {"EUR": Decimal("30.00"), "USD": Decimal("15.00")}
