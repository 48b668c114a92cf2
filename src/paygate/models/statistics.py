"""Reporting models for payment statistics."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import Provider


class ProviderStatistics(BaseModel):
    """Per-provider slice of the statistics."""

    provider: Provider
    payments: int = 0
    revenue: dict[str, Decimal] = Field(default_factory=dict)


class PaymentStatistics(BaseModel):
    """Aggregate figures over a reporting period.

    Monetary figures are grouped by currency; they are never summed
    across currencies.
    """

    period: str = Field(..., examples=["30days"])
    since: datetime
    total_payments: int = 0
    successful_payments: int = 0
    success_rate: float = Field(0.0, description="Percentage, one decimal place")
    revenue: dict[str, Decimal] = Field(
        default_factory=dict, description="Captured minus refunded, per currency"
    )
    active_subscriptions: int = 0
    mrr: dict[str, Decimal] = Field(
        default_factory=dict, description="Monthly recurring revenue per currency"
    )
    by_provider: list[ProviderStatistics] = Field(default_factory=list)
