"""
Capacity estimates: max borrow, max withdraw, max swap and liquidation price.

Each estimate solves for the largest whole amount that leaves the account's
max LTV health factor at or above 1:

    max_ltv_adjusted_collateral' >= total_debt_value'

The boundary is inclusive (an HF of exactly 1 is allowed) and solved amounts
are floored, so applying the returned amount never makes the account unhealthy.
All functions are read-only.
"""

from decimal import Decimal

from services.lending.src.lending.domain.accrual import available_liquidity, total_liquidity
from services.lending.src.lending.domain.errors import (
    DenomNotPresent,
    MissingHLSParams,
    MissingVaultConfig,
)
from services.lending.src.lending.domain.health import HealthComputer, HealthSnapshot
from services.lending.src.lending.domain.math import ONE, ZERO, floor_int, precise
from services.lending.src.lending.domain.models import (
    AccountKind,
    AssetMarket,
    BorrowTarget,
    BorrowTargetKind,
    LiquidationPriceKind,
    SwapKind,
)


def _headroom(health: HealthSnapshot) -> Decimal:
    return health.max_ltv_adjusted_collateral - health.total_debt_value


def _floor_div(numerator: Decimal, denominator: Decimal) -> int:
    with precise():
        return max(floor_int(numerator / denominator), 0)


def max_withdraw_amount(computer: HealthComputer, denom: str) -> int:
    """
    Largest amount of `denom` the account can withdraw from its deposits.

    Raises:
        DenomNotPresent: if the account has no deposit of `denom`
    """
    deposit = computer.positions.deposit_amount(denom)
    if deposit == 0:
        raise DenomNotPresent(denom)

    price = computer.price(denom)
    ltv = computer.max_ltv(denom)
    health = computer.compute_health()

    # De-listed assets add nothing to borrowing power, so they can always leave
    if health.total_debt_value == 0 or ltv == 0:
        return deposit
    if health.above_max_ltv:
        return 0

    with precise():
        amount = _floor_div(_headroom(health), price * ltv)
    return min(deposit, amount)


def _borrow_target_ltv(computer: HealthComputer, denom: str, target: BorrowTarget) -> Decimal:
    if target.kind == BorrowTargetKind.WALLET:
        return ZERO
    if target.kind == BorrowTargetKind.DEPOSIT:
        return computer.max_ltv(denom)

    config = computer.vaults_data.vault_configs.get(target.vault_address)
    if config is None:
        raise MissingVaultConfig(target.vault_address)
    base_params = computer.params(denom)
    if not (config.whitelisted and base_params.whitelisted):
        return ZERO
    if computer.kind == AccountKind.HIGH_LEVERED_STRATEGY:
        if config.hls is None:
            raise MissingHLSParams(target.vault_address)
        return config.hls.max_loan_to_value
    return config.max_loan_to_value


def max_borrow_amount(
    computer: HealthComputer,
    denom: str,
    target: BorrowTarget,
    market: AssetMarket | None = None,
) -> int:
    """
    Largest amount of `denom` the account can borrow into `target`.

    Borrowed funds that stay in the account (deposit or vault target) add
    `x * price * ltv` of borrowing power while adding `x * price` of debt, so
    the solved amount is headroom / (price * (1 - ltv)). Wallet borrows add debt
    only: headroom / price.

    When `market` is given the result is also bounded by its available
    liquidity and, for the deposit target, by the remaining deposit cap.
    """
    price = computer.price(denom)
    health = computer.compute_health()
    if health.above_max_ltv:
        return 0

    ltv = _borrow_target_ltv(computer, denom, target)
    # validated params keep ltv < 1
    with precise():
        amount = _floor_div(_headroom(health), price * (ONE - ltv))

    if market is not None:
        amount = min(amount, available_liquidity(market))
        if target.kind == BorrowTargetKind.DEPOSIT:
            remaining_cap = computer.params(denom).deposit_cap - total_liquidity(market)
            amount = min(amount, max(remaining_cap, 0))
    return amount


def max_swap_amount(
    computer: HealthComputer,
    from_denom: str,
    to_denom: str,
    kind: SwapKind = SwapKind.DEFAULT,
    from_market: AssetMarket | None = None,
) -> int:
    """
    Largest amount of `from_denom` that can be swapped into `to_denom`.

    Swaps are assumed value-conserving at oracle prices. A default swap only
    spends deposits. A margin swap may also borrow `from_denom` once the deposit
    is used up; the borrowed part is bounded by `from_market` liquidity when given.
    """
    deposit = computer.positions.deposit_amount(from_denom)
    if kind == SwapKind.DEFAULT and deposit == 0:
        return 0

    health = computer.compute_health()
    if health.above_max_ltv:
        return 0

    from_price = computer.price(from_denom)
    from_ltv = computer.max_ltv(from_denom)
    to_ltv = computer.max_ltv(to_denom)
    headroom = _headroom(health)

    if kind == SwapKind.DEFAULT:
        if health.total_debt_value == 0 or to_ltv >= from_ltv:
            return deposit
        with precise():
            amount = _floor_div(headroom, from_price * (from_ltv - to_ltv))
        return min(deposit, amount)

    with precise():
        ltv_loss_per_unit = from_price * (from_ltv - to_ltv)
        headroom_after_deposit = headroom - deposit * ltv_loss_per_unit

    if headroom_after_deposit < 0:
        # the deposit alone can't be fully swapped
        return min(deposit, _floor_div(headroom, ltv_loss_per_unit))

    with precise():
        borrowable = _floor_div(headroom_after_deposit, from_price * (ONE - to_ltv))
    if from_market is not None:
        borrowable = min(borrowable, available_liquidity(from_market))
    return deposit + borrowable


def liquidation_price(
    computer: HealthComputer,
    denom: str,
    kind: LiquidationPriceKind = LiquidationPriceKind.ASSET,
) -> Decimal:
    """
    Price of `denom` at which the liquidation health factor equals exactly 1.

    ASSET kind: the deposit price below which the account becomes liquidatable.
    Returns 0 when no price of the asset can make it liquidatable.

    DEBT kind: the debt price above which the account becomes liquidatable.
    Returns 0 when the rest of the account is already liquidatable regardless.

    Raises:
        DenomNotPresent: if the account holds no position of `denom` of that kind
    """
    health = computer.compute_health()

    if kind == LiquidationPriceKind.ASSET:
        amount = computer.positions.deposit_amount(denom)
        if amount == 0:
            raise DenomNotPresent(denom)
        if health.total_debt_value == 0:
            return ZERO
        threshold = computer.liquidation_threshold(denom)
        with precise():
            asset_ltac = amount * computer.price(denom) * threshold
            other_ltac = health.liquidation_threshold_adjusted_collateral - asset_ltac
            debt_value = health.total_debt_value
            if debt_value <= other_ltac or threshold == 0:
                return ZERO
            return (debt_value - other_ltac) / (amount * threshold)

    amount = computer.positions.debt_amount(denom)
    if amount == 0:
        raise DenomNotPresent(denom)
    with precise():
        other_debt = health.total_debt_value - amount * computer.price(denom)
        ltac = health.liquidation_threshold_adjusted_collateral
        if ltac <= other_debt:
            return ZERO
        return (ltac - other_debt) / amount
