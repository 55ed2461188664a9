"""Index accrual and scaled balance conversions.

Balances are stored "scaled": the underlying amount at any time is
scaled_amount * index / SCALING_FACTOR. Advancing an index applies interest to
every holder of the market at once.
"""

import logging
from decimal import Decimal
from enum import Enum

from services.lending.src.lending.domain.errors import InvalidTimestamp
from services.lending.src.lending.domain.math import ONE, ceil_int, floor_int, precise
from services.lending.src.lending.domain.models import AssetMarket

logger = logging.getLogger(__name__)

# Keeps precision when dividing small amounts by a large index
SCALING_FACTOR = 1_000_000

SECONDS_PER_YEAR = 31_536_000


class ScalingOperation(Enum):
    TRUNCATE = "truncate"
    CEIL = "ceil"


def calculate_applied_linear_interest_rate(
    index: Decimal, rate: Decimal, time_elapsed: int
) -> Decimal:
    """index * (1 + rate * time_elapsed / SECONDS_PER_YEAR)"""
    with precise():
        rate_factor = rate * Decimal(time_elapsed) / Decimal(SECONDS_PER_YEAR)
        return index * (ONE + rate_factor)


def _check_timestamp(market: AssetMarket, timestamp: int) -> None:
    if timestamp < market.last_updated_timestamp:
        raise InvalidTimestamp(timestamp, market.last_updated_timestamp)


def get_updated_liquidity_index(market: AssetMarket, timestamp: int) -> Decimal:
    """Liquidity index the market would have at `timestamp` (does not mutate)."""
    _check_timestamp(market, timestamp)
    elapsed = timestamp - market.last_updated_timestamp
    if elapsed > 0 and market.liquidity_rate > 0:
        return calculate_applied_linear_interest_rate(
            market.liquidity_index, market.liquidity_rate, elapsed
        )
    return market.liquidity_index


def get_updated_debt_index(market: AssetMarket, timestamp: int) -> Decimal:
    """Debt index the market would have at `timestamp` (does not mutate)."""
    _check_timestamp(market, timestamp)
    elapsed = timestamp - market.last_updated_timestamp
    if elapsed > 0 and market.borrow_rate > 0:
        return calculate_applied_linear_interest_rate(
            market.debt_index, market.borrow_rate, elapsed
        )
    return market.debt_index


def compute_scaled_amount(amount: int, index: Decimal, operation: ScalingOperation) -> int:
    """Underlying -> scaled. Multiplies by SCALING_FACTOR before dividing by the index."""
    with precise():
        scaled = Decimal(amount * SCALING_FACTOR) / index
        if operation is ScalingOperation.CEIL:
            return ceil_int(scaled)
        return floor_int(scaled)


def compute_underlying_amount(
    scaled_amount: int, index: Decimal, operation: ScalingOperation
) -> int:
    """Scaled -> underlying, undoing the SCALING_FACTOR."""
    with precise():
        underlying = Decimal(scaled_amount) * index / Decimal(SCALING_FACTOR)
        if operation is ScalingOperation.CEIL:
            return ceil_int(underlying)
        return floor_int(underlying)


# Liquidity amounts truncate and debt amounts ceil, so rounding errors always
# accumulate in favor of the protocol.


def get_scaled_liquidity_amount(amount: int, market: AssetMarket, timestamp: int) -> int:
    return compute_scaled_amount(
        amount, get_updated_liquidity_index(market, timestamp), ScalingOperation.TRUNCATE
    )


def get_underlying_liquidity_amount(
    amount_scaled: int, market: AssetMarket, timestamp: int
) -> int:
    return compute_underlying_amount(
        amount_scaled, get_updated_liquidity_index(market, timestamp), ScalingOperation.TRUNCATE
    )


def get_scaled_debt_amount(amount: int, market: AssetMarket, timestamp: int) -> int:
    return compute_scaled_amount(
        amount, get_updated_debt_index(market, timestamp), ScalingOperation.CEIL
    )


def get_underlying_debt_amount(amount_scaled: int, market: AssetMarket, timestamp: int) -> int:
    return compute_underlying_amount(
        amount_scaled, get_updated_debt_index(market, timestamp), ScalingOperation.CEIL
    )


def total_liquidity(market: AssetMarket) -> int:
    """Underlying amount deposited in the market at its current index."""
    return compute_underlying_amount(
        market.total_scaled_liquidity, market.liquidity_index, ScalingOperation.TRUNCATE
    )


def total_debt(market: AssetMarket) -> int:
    """Underlying amount borrowed from the market at its current index."""
    return compute_underlying_amount(
        market.total_scaled_debt, market.debt_index, ScalingOperation.CEIL
    )


def available_liquidity(market: AssetMarket) -> int:
    return max(total_liquidity(market) - total_debt(market), 0)


def accrue(market: AssetMarket, timestamp: int) -> int:
    """
    Advance the market's indices to `timestamp` using the current rates.

    Idempotent per timestamp: when no time has elapsed nothing changes. The
    reserve_factor share of the borrow interest accrued over the period is minted
    as scaled liquidity (so depositors' and the protocol's claims add up to what
    borrowers owe).

    Args:
        market: market to update in place
        timestamp: unix seconds, must not be before the last update

    Returns:
        Scaled liquidity minted for the protocol reserve (0 if none).

    Raises:
        InvalidTimestamp: if timestamp is before market.last_updated_timestamp
    """
    _check_timestamp(market, timestamp)
    if timestamp == market.last_updated_timestamp:
        return 0

    previous_debt_index = market.debt_index
    market.debt_index = get_updated_debt_index(market, timestamp)
    market.liquidity_index = get_updated_liquidity_index(market, timestamp)
    market.last_updated_timestamp = timestamp

    previous_total_debt = compute_underlying_amount(
        market.total_scaled_debt, previous_debt_index, ScalingOperation.CEIL
    )
    new_total_debt = total_debt(market)
    interest_accrued = max(new_total_debt - previous_total_debt, 0)

    with precise():
        reserve_amount = floor_int(Decimal(interest_accrued) * market.reserve_factor)
    if reserve_amount == 0:
        return 0

    reserve_scaled = compute_scaled_amount(
        reserve_amount, market.liquidity_index, ScalingOperation.TRUNCATE
    )
    market.total_scaled_liquidity += reserve_scaled
    logger.debug(
        f"{market.denom}: accrued {interest_accrued} interest, "
        f"{reserve_amount} to protocol reserve"
    )
    return reserve_scaled
