import math
import numbers
import sys

PRECISION_FACTOR = 1_000_000
MAX_FRACTION_DIGITS = 6

# Nudges values sitting one ulp below a tie (e.g. 1.0049999999999999) back onto it.
_EPSILON = sys.float_info.epsilon


def _as_number(value):
    """Return a finite float, or None for missing / non-numeric / NaN / inf input."""
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, numbers.Real):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


def normalize(value) -> float:
    """Round to 6 fractional digits, ties away from zero.

    Invalid input (None, NaN, strings, ...) normalizes to 0.0 instead of raising.
    """
    number = _as_number(value)
    if number is None:
        return 0.0

    scaled = (abs(number) + _EPSILON) * PRECISION_FACTOR
    if not math.isfinite(scaled):
        return number
    whole = math.floor(scaled)
    if scaled - whole >= 0.5:
        whole += 1
    if whole == 0:
        return 0.0
    return math.copysign(whole / PRECISION_FACTOR, number)


def percent_of(part, total) -> float:
    """Share of `part` in `total` as a normalized percentage; 0.0 when total is zero/absent."""
    denominator = _as_number(total)
    if not denominator:
        return 0.0
    numerator = _as_number(part)
    if numerator is None:
        return 0.0
    return normalize(numerator / denominator * 100)


def is_within_cap(balance, pool, ratio: float = 0.10) -> bool:
    """True when `balance` is at or below normalize(pool * ratio), the settlement threshold.

    Exactly 10.000000% is within cap. An empty or invalid pool imposes no cap.
    """
    amount = _as_number(balance)
    total = _as_number(pool)
    if amount is None or total is None or total <= 0:
        return True
    return amount <= normalize(total * ratio)


def format_currency(value, min_decimals: int = 2) -> str:
    """Grouped display string with between `min_decimals` and 6 fractional digits."""
    number = _as_number(value)
    if number is None:
        return "0.00"
    min_decimals = max(0, min(min_decimals, MAX_FRACTION_DIGITS))
    text = f"{number:,.{MAX_FRACTION_DIGITS}f}"
    whole, _, fraction = text.partition(".")
    fraction = fraction.rstrip("0")
    if len(fraction) < min_decimals:
        fraction = fraction.ljust(min_decimals, "0")
    return f"{whole}.{fraction}" if fraction else whole
