# bonding_indexer/utils/fixed_point.py
"""
Integer fixed-point helpers (18 fractional digits).

All monetary values flow through here as plain ``int``. Division floors
toward zero for non-negative operands; signed results use truncation so that
``ratio_bps(-x, y) == -ratio_bps(x, y)``.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from ..core.errors import ValidationError


DECIMALS = 18
SCALE = 10 ** DECIMALS
BPS_DENOMINATOR = 10_000


def _require_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {type(value).__name__}",
                              field=name, value=value)
    return value


def mul(a: int, b: int) -> int:
    """a * b with both operands scaled by SCALE"""
    return _trunc_div(_require_int(a, 'a') * _require_int(b, 'b'), SCALE)


def div(a: int, b: int) -> int:
    """a / b returning a SCALE'd quotient"""
    if _require_int(b, 'b') == 0:
        raise ValidationError("Division by zero", field='b', value=b)
    return _trunc_div(_require_int(a, 'a') * SCALE, b)


def mul_div(a: int, b: int, c: int) -> int:
    if _require_int(c, 'c') == 0:
        raise ValidationError("Division by zero", field='c', value=c)
    return _trunc_div(_require_int(a, 'a') * _require_int(b, 'b'), c)


def bps_of(amount: int, bps: int) -> int:
    return mul_div(amount, bps, BPS_DENOMINATOR)


def ratio_bps(numerator: int, denominator: int) -> int:
    return mul_div(numerator, BPS_DENOMINATOR, denominator)


def abs_diff(a: int, b: int) -> int:
    return a - b if a >= b else b - a


def _trunc_div(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def to_fixed(value: Union[int, str, Decimal], decimals: int = DECIMALS) -> int:
    """Parse a whole-unit amount ("1.5", 2, Decimal("0.1")) into fixed point.

    Floats are rejected: their binary representation is not exact.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError("Floating point amounts are not accepted", value=value)
    if isinstance(value, int):
        return value * 10 ** decimals
    try:
        dec = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"Invalid decimal amount: {value!r}", value=value)
    if not dec.is_finite():
        raise ValidationError(f"Invalid decimal amount: {value!r}", value=value)

    scaled = dec.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(f"Amount {value!r} has more than {decimals} fractional digits",
                              value=value)
    return int(scaled)


def format_fixed(value: int, decimals: int = DECIMALS) -> str:
    """Exact decimal string, trailing zeros stripped ("1.5", "-0.25", "3")."""
    _require_int(value, 'value')
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10 ** decimals)
    if frac == 0:
        return f"{sign}{whole}"
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}"
