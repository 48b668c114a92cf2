"""Money codec: decimal major units <-> provider wire formats.

Every amount that crosses a provider boundary passes through this module
exactly once in each direction. Internal code only ever handles ``Decimal``
major units (49.99 EUR, 500 JPY).

Usage:
    from paygate.utils.money import to_minor_units, from_minor_units

    to_minor_units(Decimal("49.99"), "EUR")   # 4999
    to_minor_units(Decimal("500"), "JPY")     # 500
    from_minor_units(4999, "eur")             # Decimal("49.99")
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# Currencies whose smallest unit is the major unit
ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "MGA",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)

_TWO_PLACES = Decimal("0.01")
_ZERO_PLACES = Decimal("1")


class MoneyError(ValueError):
    """Raised when an amount or currency cannot be encoded."""


def normalize_currency(currency: str) -> str:
    """Return the upper-case ISO 4217 code, validating its shape."""
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise MoneyError(f"Invalid currency code: {currency!r}")
    return code


def is_zero_decimal(currency: str) -> bool:
    """Check whether a currency has no minor unit."""
    return normalize_currency(currency) in ZERO_DECIMAL_CURRENCIES


def _exponent(currency: str) -> Decimal:
    return _ZERO_PLACES if is_zero_decimal(currency) else _TWO_PLACES


def _as_decimal(amount: Decimal | int | str) -> Decimal:
    if isinstance(amount, float):
        raise MoneyError("Float amounts are not accepted; use Decimal")
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError) as e:
        raise MoneyError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise MoneyError(f"Invalid amount: {amount!r}")
    return value


def to_minor_units(amount: Decimal | int | str, currency: str) -> int:
    """Convert a major-unit amount to the provider's integer minor units.

    Rounds half away from zero (0.005 -> 1, -0.005 -> -1).

    Args:
        amount: Amount in major units
        currency: ISO currency code (any case)

    Returns:
        Integer amount in minor units
    """
    value = _as_decimal(amount)
    if is_zero_decimal(currency):
        return int(value.quantize(_ZERO_PLACES, rounding=ROUND_HALF_UP))
    return int((value * 100).quantize(_ZERO_PLACES, rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    """Convert integer minor units back to a major-unit Decimal."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise MoneyError(f"Minor-unit amount must be an integer: {amount!r}")
    if is_zero_decimal(currency):
        return Decimal(amount)
    return (Decimal(amount) / 100).quantize(_TWO_PLACES)


def quantize(amount: Decimal | int | str, currency: str) -> Decimal:
    """Round a major-unit amount to the currency's precision."""
    return _as_decimal(amount).quantize(_exponent(currency), rounding=ROUND_HALF_UP)


def to_major_string(amount: Decimal | int | str, currency: str) -> str:
    """Format a major-unit amount as a decimal string ("49.99", "500")."""
    return format(quantize(amount, currency), "f")


def from_major_string(value: str, currency: str) -> Decimal:
    """Parse a provider's decimal string into a major-unit Decimal."""
    return quantize(value, currency)
