"""Fixed-point helpers shared by the accrual and health code."""

from contextlib import contextmanager
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal, localcontext
from typing import Iterator

# Amounts are integers up to ~1e38 and get multiplied by SCALING_FACTOR and
# 18-digit decimals, so the default 28-digit context is not enough.
PRECISION = 60

ZERO = Decimal(0)
ONE = Decimal(1)


@contextmanager
def precise() -> Iterator[None]:
    """Run a block of Decimal arithmetic with PRECISION significant digits."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        yield


def floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def ceil_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def mul_floor(amount: int, factor: Decimal) -> int:
    """amount * factor, rounded down to a whole unit."""
    with precise():
        return floor_int(Decimal(amount) * factor)


def mul_ceil(amount: int, factor: Decimal) -> int:
    """amount * factor, rounded up to a whole unit."""
    with precise():
        return ceil_int(Decimal(amount) * factor)


def to_decimal(value: str | int | float | Decimal) -> Decimal:
    """Convert user input to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
