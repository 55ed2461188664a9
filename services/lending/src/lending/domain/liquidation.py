"""Liquidation bonus curve and liquidation amount calculation."""

import logging
from dataclasses import dataclass
from decimal import Decimal

from services.lending.src.lending.domain.errors import (
    CloseFactorExceeded,
    LiquidationFailed,
    NotLiquidatable,
)
from services.lending.src.lending.domain.health import HealthSnapshot
from services.lending.src.lending.domain.math import (
    ONE,
    ZERO,
    ceil_int,
    floor_int,
    mul_floor,
    precise,
)
from services.lending.src.lending.domain.models import AssetParams, LiquidationBonusCurve

logger = logging.getLogger(__name__)


def calculate_liquidation_bonus(
    health_factor: Decimal,
    curve: LiquidationBonusCurve,
    collateralization_ratio: Decimal | None = None,
) -> Decimal:
    """
    Liquidation bonus as a fraction of repaid debt value.

    bonus = min(starting_lb + slope * (1 - HF), upper), floored at min_lb

    where upper = max(min(CR - 1, max_lb), min_lb) when the collateralization
    ratio CR = total collateral / total debt is known, and max_lb otherwise. Capping
    by CR - 1 keeps the bonus from exceeding what the collateral can pay.
    """
    if collateralization_ratio is None:
        upper = curve.max_lb
    else:
        cr_adjusted = max(collateralization_ratio - ONE, ZERO)
        upper = max(min(cr_adjusted, curve.max_lb), curve.min_lb)

    calculated = curve.starting_lb + curve.slope * (ONE - health_factor)
    return max(min(calculated, upper), curve.min_lb)


def liquidation_bonus(
    health_factor: Decimal,
    curve: LiquidationBonusCurve,
    protocol_liquidation_fee: Decimal = ZERO,
    collateralization_ratio: Decimal | None = None,
) -> tuple[Decimal, Decimal]:
    """
    Returns:
        (bonus, protocol_fee): protocol_fee is the part of the bonus kept by the
        protocol, both as fractions of the repaid debt value.
    """
    bonus = calculate_liquidation_bonus(health_factor, curve, collateralization_ratio)
    return bonus, bonus * protocol_liquidation_fee


@dataclass(frozen=True)
class LiquidationAmounts:
    debt_amount_to_repay: int
    collateral_amount_to_liquidate: int
    collateral_amount_received_by_liquidator: int
    protocol_fee_amount: int
    liquidation_bonus: Decimal


def max_close_amount(debt_amount: int, close_factor: Decimal) -> int:
    return mul_floor(debt_amount, close_factor)


def check_close_factor(requested: int, debt_amount: int, close_factor: Decimal) -> None:
    """
    Raises:
        CloseFactorExceeded: if `requested` repays more than close_factor of the debt
    """
    max_repayable = max_close_amount(debt_amount, close_factor)
    if requested > max_repayable:
        raise CloseFactorExceeded(requested, max_repayable)


def calculate_liquidation_amounts(
    collateral_amount: int,
    collateral_price: Decimal,
    collateral_params: AssetParams,
    debt_amount: int,
    debt_requested_to_repay: int,
    debt_price: Decimal,
    target_health_factor: Decimal,
    health: HealthSnapshot,
    liquidation_threshold: Decimal | None = None,
) -> LiquidationAmounts:
    """
    Work out how much debt a liquidator repays and how much collateral they seize.

    The repaid debt is the smallest of:
        - the account's debt in that denom
        - the amount requested
        - the amount that takes the account to `target_health_factor`:
            (THF * debt_value - liq_adjusted_collateral) / (THF - collateral_lt * (1 + LB))
        - what the collateral can cover: collateral_value / (1 + LB) / debt_price

    The collateral seized is repaid_value * (1 + LB) / collateral_price. The
    protocol keeps protocol_liquidation_fee of the bonus (value rounded up).

    Args:
        liquidation_threshold: override for the collateral's threshold (HLS accounts)

    Raises:
        NotLiquidatable: if health is not liquidatable
        LiquidationFailed: if the amounts degenerate to repaying without seizing or
            the reverse
    """
    if not health.liquidatable:
        raise NotLiquidatable("", health.liquidation_health_factor)
    liquidation_hf = health.liquidation_health_factor
    collateral_lt = (
        collateral_params.liquidation_threshold
        if liquidation_threshold is None
        else liquidation_threshold
    )

    with precise():
        user_collateral_value = collateral_amount * collateral_price

        bonus = calculate_liquidation_bonus(
            liquidation_hf,
            collateral_params.liquidation_bonus,
            health.collateralization_ratio,
        )

        numerator = (
            target_health_factor * health.total_debt_value
            - health.liquidation_threshold_adjusted_collateral
        )
        denominator = target_health_factor - collateral_lt * (ONE + bonus)
        if denominator > 0:
            max_debt_repayable_amount = max(floor_int(numerator / denominator / debt_price), 0)
        else:
            # seizing collateral can't move the account towards the target
            max_debt_repayable_amount = debt_amount

        debt_amount_possible_to_repay = floor_int(
            user_collateral_value / (ONE + bonus) / debt_price
        )

        debt_amount_to_repay = min(
            debt_amount,
            debt_requested_to_repay,
            max_debt_repayable_amount,
            debt_amount_possible_to_repay,
        )

        debt_value_to_repay = debt_amount_to_repay * debt_price
        collateral_amount_to_liquidate = floor_int(
            debt_value_to_repay * (ONE + bonus) / collateral_price
        )

        if (collateral_amount_to_liquidate > 0) != (debt_amount_to_repay > 0):
            raise LiquidationFailed(
                f"Can't process liquidation. Invalid collateral_amount_to_liquidate "
                f"({collateral_amount_to_liquidate}) and debt_amount_to_repay "
                f"({debt_amount_to_repay})"
            )

        lb_value = debt_value_to_repay * bonus
        protocol_fee_value = ceil_int(lb_value * collateral_params.protocol_liquidation_fee)
        protocol_fee_amount = min(
            floor_int(protocol_fee_value / collateral_price), collateral_amount_to_liquidate
        )

    amounts = LiquidationAmounts(
        debt_amount_to_repay=debt_amount_to_repay,
        collateral_amount_to_liquidate=collateral_amount_to_liquidate,
        collateral_amount_received_by_liquidator=(
            collateral_amount_to_liquidate - protocol_fee_amount
        ),
        protocol_fee_amount=protocol_fee_amount,
        liquidation_bonus=bonus,
    )
    logger.debug(f"Liquidation amounts: {amounts}")
    return amounts
