"""Payment statistics computed from the ledger."""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from paygate.models.enums import BillingInterval, PaymentStatus, Provider, SubscriptionStatus
from paygate.models.records import PaymentRecord, SubscriptionRecord
from paygate.models.statistics import PaymentStatistics, ProviderStatistics
from paygate.utils.money import quantize

PERIODS: dict[str, timedelta] = {
    "7days": timedelta(days=7),
    "30days": timedelta(days=30),
    "90days": timedelta(days=90),
    "year": timedelta(days=365),
}

SUCCESSFUL_STATUSES = frozenset(
    {
        PaymentStatus.CAPTURED,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
    }
)

# Multiplier turning one interval's price into a monthly figure
MONTHLY_FACTOR: dict[BillingInterval, Decimal] = {
    BillingInterval.DAY: Decimal(365) / Decimal(12),
    BillingInterval.WEEK: Decimal(52) / Decimal(12),
    BillingInterval.MONTH: Decimal(1),
    BillingInterval.YEAR: Decimal(1) / Decimal(12),
}


def period_start(period: str, now: datetime | None = None) -> datetime:
    """Start of a named reporting period.

    Raises:
        ValueError: Unknown period name
    """
    if period not in PERIODS:
        raise ValueError(f"Unknown period {period!r}; expected one of {sorted(PERIODS)}")
    return (now or datetime.now(timezone.utc)) - PERIODS[period]


def monthly_amount(subscription: SubscriptionRecord) -> Decimal | None:
    """Normalized monthly price of a subscription, if its price is known."""
    if subscription.amount is None or subscription.interval is None:
        return None
    return (
        subscription.amount
        * MONTHLY_FACTOR[subscription.interval]
        / Decimal(subscription.interval_count)
    )


def compute_statistics(
    period: str,
    payments: list[PaymentRecord],
    subscriptions: list[SubscriptionRecord],
    now: datetime | None = None,
) -> PaymentStatistics:
    """Aggregate ledger records into PaymentStatistics.

    ``payments`` may include records outside the period; they are filtered
    here by ``created_at``.
    """
    since = period_start(period, now)
    in_period = [p for p in payments if p.created_at >= since]
    successful = [p for p in in_period if p.status in SUCCESSFUL_STATUSES]

    revenue: dict[str, Decimal] = defaultdict(Decimal)
    provider_counts: dict[Provider, int] = defaultdict(int)
    provider_revenue: dict[Provider, dict[str, Decimal]] = defaultdict(
        lambda: defaultdict(Decimal)
    )
    for payment in in_period:
        provider_counts[payment.provider] += 1
    for payment in successful:
        net = payment.amount - payment.refunded_amount
        revenue[payment.currency] += net
        provider_revenue[payment.provider][payment.currency] += net

    active = [s for s in subscriptions if s.status == SubscriptionStatus.ACTIVE]
    mrr: dict[str, Decimal] = defaultdict(Decimal)
    for subscription in active:
        monthly = monthly_amount(subscription)
        if monthly is not None and subscription.currency:
            mrr[subscription.currency] += monthly

    success_rate = (
        round(len(successful) / len(in_period) * 100, 1) if in_period else 0.0
    )
    return PaymentStatistics(
        period=period,
        since=since,
        total_payments=len(in_period),
        successful_payments=len(successful),
        success_rate=success_rate,
        revenue={c: quantize(v, c) for c, v in revenue.items()},
        active_subscriptions=len(active),
        mrr={c: quantize(v, c) for c, v in mrr.items()},
        by_provider=[
            ProviderStatistics(
                provider=provider,
                payments=count,
                revenue={c: quantize(v, c) for c, v in provider_revenue[provider].items()},
            )
            for provider, count in sorted(provider_counts.items(), key=lambda kv: kv[0].value)
        ],
    )
