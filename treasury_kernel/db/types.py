"""
Module: treasury_kernel.db.types
Responsibility: Annotated column aliases plus the money helpers every layer
    shares: coercion of incoming amounts, cent rounding and ISO 4217
    validation.
Architecture position: Kernel > DB.  Importable from models/, domain/,
    services/ and selectors/.

Invariants enforced:
    - No floats.  to_money() rejects float input outright; amounts arrive as
      Decimal, int or a numeric string.
    - Every amount to_money() returns fits the Money column exactly, so the
      stored event amount and the delta applied to a running total agree.
    - round_money() is the only sanctioned rounding for displayed or
      derived monetary values (ROUND_HALF_UP to cents by default).
    - validate_currency() only admits recognised ISO 4217 codes.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

from treasury_kernel.exceptions import InvalidCurrencyError, ValidationError

MONEY_PRECISION = 38
MONEY_SCALE = 9

Money = Annotated[Decimal, Numeric(MONEY_PRECISION, MONEY_SCALE)]

# Annual interest rate expressed as a percentage (e.g. 12.5)
Rate = Annotated[Decimal, Numeric(9, 4)]

Currency = Annotated[str, String(3)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to the given number of decimal places."""
    quantizer = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantizer, rounding=rounding)


def to_money(value, field: str = "amount") -> Decimal:
    """
    Coerce a caller-supplied amount to Decimal.

    Raises:
        ValidationError: value is a float, a bool, None or not numeric,
            or has more digits than the Money column holds.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a decimal amount", field=field)
    elif isinstance(value, float):
        raise ValidationError(
            f"{field} must not be a float; pass a Decimal or a string", field=field
        )
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise ValidationError(f"{field} is not a number: {value!r}", field=field) from exc
    else:
        raise ValidationError(f"{field} has unsupported type {type(value).__name__}", field=field)

    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    _require_column_fit(result, field)
    return result


def _require_column_fit(value: Decimal, field: str) -> None:
    _, digits, exponent = value.as_tuple()
    if not any(digits):
        return
    digits = list(digits)
    # 1.500 has scale 1
    while exponent < 0 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    if -exponent > MONEY_SCALE:
        raise ValidationError(
            f"{field} has more than {MONEY_SCALE} decimal places: {value}", field=field
        )
    if len(digits) + exponent > MONEY_PRECISION - MONEY_SCALE:
        raise ValidationError(f"{field} is too large: {value}", field=field)


def positive_money(value, field: str = "amount") -> Decimal:
    """to_money() that also requires a strictly positive amount."""
    amount = to_money(value, field)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return amount


ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AUD", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BRL",
    "BSD", "BTN", "BWP", "BYN", "BZD", "CAD", "CDF", "CHF", "CLP", "CNY",
    "COP", "CRC", "CUP", "CVE", "CZK", "DJF", "DKK", "DOP", "DZD", "EGP",
    "ERN", "ETB", "EUR", "FJD", "FKP", "GBP", "GEL", "GHS", "GIP", "GMD",
    "GNF", "GTQ", "GYD", "HKD", "HNL", "HTG", "HUF", "IDR", "ILS", "INR",
    "IQD", "IRR", "ISK", "JMD", "JOD", "JPY", "KES", "KGS", "KHR", "KMF",
    "KPW", "KRW", "KWD", "KYD", "KZT", "LAK", "LBP", "LKR", "LRD", "LSL",
    "LYD", "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR",
    "MVR", "MWK", "MXN", "MYR", "MZN", "NAD", "NGN", "NIO", "NOK", "NPR",
    "NZD", "OMR", "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG", "QAR",
    "RON", "RSD", "RUB", "RWF", "SAR", "SBD", "SCR", "SDG", "SEK", "SGD",
    "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SYP", "SZL", "THB", "TJS",
    "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS", "UAH", "UGX", "USD",
    "UYU", "UZS", "VES", "VND", "VUV", "WST", "XAF", "XCD", "XOF", "XPF",
    "YER", "ZAR", "ZMW", "ZWL",
})


def validate_currency(code: str) -> str:
    """Return the upper-cased code, or raise InvalidCurrencyError."""
    if not isinstance(code, str):
        raise InvalidCurrencyError(str(code))
    normalized = code.strip().upper()
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(code)
    return normalized
