"""
Numeric policy for CFDI amounts.

Every rounding and every comparison of a derived amount against a stored one
goes through :class:`NumericPolicy`, so the whole package agrees on precision
and rounding mode (round-half-up, as the SAT filling guide prescribes).
"""
from contextlib import contextmanager
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, localcontext
from typing import Iterable, Optional, Union

MONETARY = 2
QUANTITY = 6
RATE = 6

# Products of two 24-digit amounts stay exact
ARITHMETIC_PRECISION = 100

NumberLike = Union[Decimal, int, str]

_ZERO = Decimal("0")


def to_decimal(value: Optional[NumberLike]) -> Optional[Decimal]:
    """Convert a value to Decimal without ever going through float."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Binary floating point values are not accepted, use Decimal or str")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid decimal value: {value!r}") from e


def decimal_places(value: Decimal) -> int:
    """Number of digits after the decimal point as written."""
    exponent = value.as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def format_decimal(value: Decimal) -> str:
    """Render a Decimal in plain notation, keeping its written scale."""
    return format(value, "f")


@contextmanager
def exact_arithmetic():
    """Decimal context in which sums and products of amounts are not truncated."""
    with localcontext() as context:
        context.prec = max(context.prec, ARITHMETIC_PRECISION)
        yield context


class NumericPolicy:
    """
    Currency-aware decimal arithmetic.

    Args:
        tolerance: epsilon allowed between two rounded values. The official
            rules require an exact match once both sides are rounded, so the
            default is zero.
    """

    MONETARY = MONETARY
    QUANTITY = QUANTITY
    RATE = RATE

    def __init__(self, tolerance: NumberLike = _ZERO):
        self.tolerance = to_decimal(tolerance)
        if self.tolerance < 0:
            raise ValueError("Tolerance cannot be negative")

    @staticmethod
    def round(value: NumberLike, max_decimals: int) -> Decimal:
        """Round half-up to ``max_decimals`` places."""
        value = to_decimal(value)
        quantum = Decimal(1).scaleb(-max_decimals)
        with localcontext() as context:
            # quantize needs room for every integer digit plus the requested places
            context.prec = max(context.prec, value.adjusted() + max_decimals + 2)
            return value.quantize(quantum, rounding=ROUND_HALF_UP)

    def equals_within_tolerance(self, a: NumberLike, b: NumberLike, max_decimals: int) -> bool:
        """Compare two values after rounding both to ``max_decimals``."""
        if a is None or b is None:
            return a is None and b is None
        difference = self.round(a, max_decimals) - self.round(b, max_decimals)
        return abs(difference) <= self.tolerance

    def multiply(self, a: NumberLike, b: NumberLike, max_decimals: int) -> Decimal:
        with exact_arithmetic():
            return self.round(to_decimal(a) * to_decimal(b), max_decimals)

    def total(self, values: Iterable[Optional[NumberLike]]) -> Decimal:
        """Exact sum, absent values count as zero."""
        result = _ZERO
        with exact_arithmetic():
            for value in values:
                if value is not None:
                    result += to_decimal(value)
        return result


numeric_policy = NumericPolicy()
