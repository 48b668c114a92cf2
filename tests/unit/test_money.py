"""Unit tests for the money codec.

Test categories:
- Currency normalization
- Major -> minor units (two-decimal and zero-decimal currencies)
- Minor -> major units
- Decimal-string formatting for string-amount providers
- Rejected inputs
"""

import random
from decimal import Decimal

import pytest

from paygate.utils.money import (
    ZERO_DECIMAL_CURRENCIES,
    MoneyError,
    from_major_string,
    from_minor_units,
    is_zero_decimal,
    normalize_currency,
    quantize,
    to_major_string,
    to_minor_units,
)


# === Currency Normalization ===


class TestNormalizeCurrency:
    @pytest.mark.parametrize("raw", ["eur", "EUR", " Eur "])
    def test_upper_cases_and_strips(self, raw: str) -> None:
        assert normalize_currency(raw) == "EUR"

    @pytest.mark.parametrize("raw", ["", "EU", "EURO", "12A", None])
    def test_rejects_malformed_codes(self, raw) -> None:
        with pytest.raises(MoneyError):
            normalize_currency(raw)

    def test_zero_decimal_lookup_is_case_insensitive(self) -> None:
        assert is_zero_decimal("jpy")
        assert is_zero_decimal("KRW")
        assert not is_zero_decimal("usd")


# === Major -> Minor ===


class TestToMinorUnits:
    def test_two_decimal_currency(self) -> None:
        assert to_minor_units(Decimal("49.99"), "EUR") == 4999

    def test_zero_decimal_currency_is_not_scaled(self) -> None:
        assert to_minor_units(Decimal("500"), "JPY") == 500

    def test_lower_case_currency(self) -> None:
        assert to_minor_units(Decimal("10.00"), "usd") == 1000

    def test_half_rounds_away_from_zero(self) -> None:
        assert to_minor_units(Decimal("0.005"), "EUR") == 1
        assert to_minor_units(Decimal("-0.005"), "EUR") == -1
        assert to_minor_units(Decimal("0.5"), "JPY") == 1

    def test_below_half_rounds_down(self) -> None:
        assert to_minor_units(Decimal("10.004"), "EUR") == 1000

    def test_accepts_int_and_string(self) -> None:
        assert to_minor_units(12, "EUR") == 1200
        assert to_minor_units("12.34", "EUR") == 1234

    def test_rejects_float(self) -> None:
        with pytest.raises(MoneyError):
            to_minor_units(49.99, "EUR")  # type: ignore[arg-type]

    @pytest.mark.parametrize("bad", ["abc", "NaN", "Infinity"])
    def test_rejects_non_numeric(self, bad: str) -> None:
        with pytest.raises(MoneyError):
            to_minor_units(bad, "EUR")


# === Minor -> Major ===


class TestFromMinorUnits:
    def test_two_decimal_currency(self) -> None:
        assert from_minor_units(4999, "eur") == Decimal("49.99")

    def test_keeps_two_places(self) -> None:
        assert str(from_minor_units(1000, "EUR")) == "10.00"

    def test_zero_decimal_currency(self) -> None:
        assert from_minor_units(500, "JPY") == Decimal("500")

    @pytest.mark.parametrize("bad", [49.99, "4999", True])
    def test_rejects_non_integers(self, bad) -> None:
        with pytest.raises(MoneyError):
            from_minor_units(bad, "EUR")

    @pytest.mark.parametrize("currency", ["EUR", "USD", "GBP", "JPY", "KRW", "CLP"])
    def test_minor_units_survive_the_codec(self, currency: str) -> None:
        rng = random.Random(currency)
        for _ in range(50):
            minor = rng.randint(0, 10_000_000)
            assert to_minor_units(from_minor_units(minor, currency), currency) == minor


# === Decimal Strings ===


class TestMajorStrings:
    def test_two_decimal_formatting(self) -> None:
        assert to_major_string(Decimal("49.9"), "EUR") == "49.90"
        assert to_major_string(Decimal("10"), "USD") == "10.00"

    def test_zero_decimal_formatting(self) -> None:
        assert to_major_string(Decimal("500"), "JPY") == "500"

    def test_parse_provider_string(self) -> None:
        assert from_major_string("49.99", "EUR") == Decimal("49.99")
        assert from_major_string("500", "JPY") == Decimal("500")

    def test_quantize_rounds_to_currency_precision(self) -> None:
        assert quantize(Decimal("1.005"), "EUR") == Decimal("1.01")
        assert quantize(Decimal("499.5"), "JPY") == Decimal("500")


def test_zero_decimal_set_contains_known_currencies() -> None:
    assert {"JPY", "KRW", "VND", "CLP"} <= ZERO_DECIMAL_CURRENCIES
    assert "EUR" not in ZERO_DECIMAL_CURRENCIES
