"""Interest rate models: utilization -> borrow rate, and borrow rate -> liquidity rate."""

import logging
from decimal import Decimal

from services.lending.src.lending.domain.errors import InvalidUtilization
from services.lending.src.lending.domain.math import ONE, ZERO, precise
from services.lending.src.lending.domain.models import (
    AssetMarket,
    DynamicInterestRateModel,
    LinearInterestRateModel,
)

logger = logging.getLogger(__name__)

# Scaled balances round in opposite directions for liquidity and debt, so a fully
# borrowed market can report a utilization a hair above 1.
UTILIZATION_TOLERANCE = Decimal("1e-6")


def compute_utilization(total_liquidity: Decimal, total_debt: Decimal) -> Decimal:
    """
    Utilization = total debt / total liquidity, clamped to [0, 1].

    Raises:
        InvalidUtilization: if the ratio exceeds 1 by more than rounding tolerance,
            or either total is negative.
    """
    if total_liquidity < 0 or total_debt < 0:
        raise InvalidUtilization(total_debt if total_debt < 0 else total_liquidity)
    if total_debt == 0:
        return ZERO
    if total_liquidity == 0:
        raise InvalidUtilization(Decimal("Infinity"))

    with precise():
        utilization = total_debt / total_liquidity
    if utilization > ONE + UTILIZATION_TOLERANCE:
        raise InvalidUtilization(utilization)
    return min(utilization, ONE)


def market_utilization(market: AssetMarket) -> Decimal:
    """Utilization of a market at its current indices."""
    with precise():
        total_liquidity = market.total_scaled_liquidity * market.liquidity_index
        total_debt = market.total_scaled_debt * market.debt_index
    return compute_utilization(total_liquidity, total_debt)


def linear_borrow_rate(model: LinearInterestRateModel, utilization: Decimal) -> Decimal:
    """
    Two-segment kinked curve.

    u <= optimal: base + slope_1 * u / optimal
    u >  optimal: base + slope_1 + slope_2 * (u - optimal) / (1 - optimal)
    """
    if utilization <= model.optimal_utilization_rate:
        if utilization == 0:
            # prevents division by zero when optimal_utilization_rate is zero
            return model.base
        return model.base + model.slope_1 * (utilization / model.optimal_utilization_rate)

    excess = utilization - model.optimal_utilization_rate
    excess_rate = ONE - model.optimal_utilization_rate
    return model.base + model.slope_1 + (model.slope_2 * excess / excess_rate)


def dynamic_borrow_rate(
    model: DynamicInterestRateModel,
    utilization: Decimal,
    current_borrow_rate: Decimal,
) -> Decimal:
    """
    Move the borrow rate by kp * |optimal - utilization|.

    Below the optimal utilization the rate goes down so more people borrow; above
    it the rate goes up. kp_2 replaces kp_1 once the error reaches
    kp_augmentation_threshold. The result is clamped to [min, max].
    """
    if model.optimal_utilization_rate > utilization:
        error_value = model.optimal_utilization_rate - utilization
        lower = True
    else:
        error_value = utilization - model.optimal_utilization_rate
        lower = False

    kp = model.kp_2 if error_value >= model.kp_augmentation_threshold else model.kp_1
    p = kp * error_value

    if lower:
        new_borrow_rate = current_borrow_rate - p if current_borrow_rate > p else ZERO
    else:
        new_borrow_rate = current_borrow_rate + p

    if new_borrow_rate < model.min_borrow_rate or new_borrow_rate > model.max_borrow_rate:
        clamped = min(max(new_borrow_rate, model.min_borrow_rate), model.max_borrow_rate)
        logger.warning(
            f"Dynamic borrow rate {new_borrow_rate} out of bounds "
            f"[{model.min_borrow_rate}, {model.max_borrow_rate}], clamped to {clamped}"
        )
        return clamped
    return new_borrow_rate


def liquidity_rate(
    borrow_rate: Decimal, utilization: Decimal, reserve_factor: Decimal
) -> Decimal:
    """Share of borrower interest passed to depositors after the reserve cut."""
    return borrow_rate * utilization * (ONE - reserve_factor)


def should_recompute_dynamic_rate(
    model: DynamicInterestRateModel, market: AssetMarket, timestamp: int
) -> bool:
    """Hysteresis gate. Expects the tx counter to already include the current tx."""
    seconds_since_update = timestamp - market.rate_last_updated
    threshold_is_met = (
        market.txs_since_last_update >= model.update_threshold_txs
        or seconds_since_update >= model.update_threshold_seconds
    )
    # at most one recompute per second, so repeated calls can't walk the rate
    # to its min or max within a single block
    return threshold_is_met and seconds_since_update != 0


def update_interest_rates(market: AssetMarket, timestamp: int) -> AssetMarket:
    """
    Recompute borrow and liquidity rates for the market's current utilization.

    Call after the market indices have been accrued to `timestamp`, otherwise the
    new rate would be applied to the elapsed period. Mutates and returns `market`.
    """
    utilization = market_utilization(market)
    model = market.interest_rate_model

    if model.kind == "dynamic":
        market.txs_since_last_update += 1
        if should_recompute_dynamic_rate(model, market, timestamp):
            previous = market.borrow_rate
            market.borrow_rate = dynamic_borrow_rate(model, utilization, market.borrow_rate)
            market.txs_since_last_update = 0
            market.rate_last_updated = timestamp
            logger.debug(
                f"{market.denom}: borrow rate recomputed {previous} -> {market.borrow_rate} "
                f"at utilization {utilization}"
            )
    else:
        market.borrow_rate = linear_borrow_rate(model, utilization)

    market.liquidity_rate = liquidity_rate(
        market.borrow_rate, utilization, market.reserve_factor
    )
    return market
