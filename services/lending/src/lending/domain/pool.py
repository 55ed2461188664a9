"""
Lending pool: the state-mutating operations over markets and scaled ledgers.

Every mutation follows the same sequence:
    1. lock the involved accounts and markets (sorted, to avoid deadlocks)
    2. copy the involved markets and their ledgers
    3. accrue the copied markets to `now`
    4. mutate scaled balances and market totals on the copies
    5. update interest rates of the touched markets
    6. validate the resulting health

and only then persists and swaps the copies in. Readers never observe a
mutation that is still in progress or one that failed.
"""

import copy
import logging
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterator, Protocol

from services.lending.src.lending.domain import accrual
from services.lending.src.lending.domain.accrual import ScalingOperation
from services.lending.src.lending.domain.capacity import (
    liquidation_price,
    max_borrow_amount,
    max_swap_amount,
    max_withdraw_amount,
)
from services.lending.src.lending.domain.errors import (
    BelowLiquidationThreshold,
    CannotLiquidateSelf,
    DepositCapExceeded,
    InsufficientCapacity,
    InsufficientLiquidity,
    InvalidAmount,
    LiquidationFailed,
    MarketNotFound,
    NotLiquidatable,
    OperationNotEnabled,
)
from services.lending.src.lending.domain.health import HealthComputer, HealthSnapshot
from services.lending.src.lending.domain.interest_rate import update_interest_rates
from services.lending.src.lending.domain.liquidation import (
    LiquidationAmounts,
    calculate_liquidation_amounts,
    check_close_factor,
)
from services.lending.src.lending.domain.models import (
    AccountKind,
    AssetMarket,
    AssetParams,
    BorrowTarget,
    BorrowTargetKind,
    LiquidationPriceKind,
    Positions,
    SwapKind,
    VaultPosition,
)
from services.lending.src.lending.domain.positions import (
    PositionAggregator,
    PriceFeed,
    VaultReporter,
)
from services.lending.src.lending.domain.registry import MarketRegistry

logger = logging.getLogger(__name__)

DEFAULT_CLOSE_FACTOR = Decimal("0.5")
DEFAULT_TARGET_HEALTH_FACTOR = Decimal("1.2")
DEFAULT_REWARDS_COLLECTOR = "rewards-collector"

Ledger = dict[str, dict[str, int]]


class PoolStore(Protocol):
    """Durable storage for committed market state and ledger slices."""

    def save(self, markets: list[AssetMarket], collateral: Ledger, debt: Ledger) -> None: ...


@dataclass
class WorkingState:
    """Uncommitted copies of the markets and ledger slices one mutation touches."""

    markets: dict[str, AssetMarket]
    collateral: Ledger
    debt: Ledger


def _check_amount(amount: int) -> None:
    if amount <= 0:
        raise InvalidAmount(f"Amount must be greater than zero, got {amount}")


def _add_scaled(balances: dict[str, int], account_id: str, denom: str, delta: int) -> None:
    new_amount = balances.get(account_id, 0) + delta
    if new_amount < 0:
        raise InsufficientCapacity(f"Scaled balance of {account_id} in {denom} would go negative")
    if new_amount == 0:
        balances.pop(account_id, None)
    else:
        balances[account_id] = new_amount


def _health_allows(before: HealthSnapshot | None, after: HealthSnapshot) -> bool:
    """
    A mutation may leave the account above max LTV only if it already was and
    the max LTV health factor did not get worse (e.g. withdrawing a de-listed
    asset that backs no borrowing power).
    """
    if not after.above_max_ltv:
        return True
    return (
        before is not None
        and before.above_max_ltv
        and after.max_ltv_health_factor >= before.max_ltv_health_factor
    )


class LendingPool:
    """
    Owns the market registry and the scaled collateral and debt ledgers.

    Ledgers map denom -> account_id -> scaled amount. Borrowed funds are paid
    out to the borrower's wallet; deposits are always posted as collateral.
    Committed markets and per-denom ledger dicts are replaced on commit, never
    modified in place.
    """

    def __init__(
        self,
        registry: MarketRegistry,
        price_feed: PriceFeed,
        vault_reporter: VaultReporter | None = None,
        close_factor: Decimal = DEFAULT_CLOSE_FACTOR,
        target_health_factor: Decimal = DEFAULT_TARGET_HEALTH_FACTOR,
        rewards_collector: str = DEFAULT_REWARDS_COLLECTOR,
        store: PoolStore | None = None,
    ):
        self.registry = registry
        self.aggregator = PositionAggregator(registry, price_feed, vault_reporter)
        self.close_factor = close_factor
        self.target_health_factor = target_health_factor
        self.rewards_collector = rewards_collector
        self.store = store

        self._collateral: Ledger = {}
        self._debt: Ledger = {}
        self._vaults: dict[str, list[VaultPosition]] = {}
        self._account_kinds: dict[str, AccountKind] = {}

        # guards reads and swaps of committed state
        self._state_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._account_locks: dict[str, threading.Lock] = {}
        self._market_locks: dict[str, threading.Lock] = {}

    # Locking and atomicity

    def _lock(self, locks: dict[str, threading.Lock], key: str) -> threading.Lock:
        with self._locks_guard:
            return locks.setdefault(key, threading.Lock())

    @contextmanager
    def _locked(self, accounts: list[str], denoms: list[str]) -> Iterator[None]:
        with ExitStack() as stack:
            for account_id in sorted(set(accounts)):
                stack.enter_context(self._lock(self._account_locks, account_id))
            for denom in sorted(set(denoms)):
                stack.enter_context(self._lock(self._market_locks, denom))
            yield

    def _working(self, denoms: list[str]) -> WorkingState:
        with self._state_lock:
            return WorkingState(
                markets={d: copy.deepcopy(self.registry.get_market(d)) for d in set(denoms)},
                collateral={d: dict(self._collateral.get(d, {})) for d in set(denoms)},
                debt={d: dict(self._debt.get(d, {})) for d in set(denoms)},
            )

    @contextmanager
    def _transaction(self, denoms: list[str]) -> Iterator[WorkingState]:
        """Mutate copies of the given markets; commit them only if the block succeeds."""
        working = self._working(denoms)
        yield working
        if self.store is not None:
            self.store.save(
                [working.markets[d] for d in sorted(working.markets)],
                working.collateral,
                working.debt,
            )
        with self._state_lock:
            for market in working.markets.values():
                self.registry.restore_market(market)
            self._collateral.update(working.collateral)
            self._debt.update(working.debt)

    def collateral_ledger(self) -> Ledger:
        with self._state_lock:
            return {d: dict(b) for d, b in self._collateral.items() if b}

    def debt_ledger(self) -> Ledger:
        with self._state_lock:
            return {d: dict(b) for d, b in self._debt.items() if b}

    def load_ledgers(self, collateral: Ledger, debt: Ledger) -> None:
        """Replace both ledgers, e.g. with balances read back from storage."""
        with self._state_lock:
            self._collateral = {denom: dict(balances) for denom, balances in collateral.items()}
            self._debt = {denom: dict(balances) for denom, balances in debt.items()}

    def _accrue_market(self, working: WorkingState, denom: str, now: int) -> int:
        """Accrue the working copy of a market; returns the scaled reserve minted."""
        reserve_scaled = accrual.accrue(working.markets[denom], now)
        if reserve_scaled:
            _add_scaled(working.collateral[denom], self.rewards_collector, denom, reserve_scaled)
        return reserve_scaled

    def _require_params(self, denom: str) -> AssetParams:
        params = self.registry.get_asset_params(denom)
        if params is None:
            raise MarketNotFound(denom)
        return params

    # Accounts

    def set_account_kind(self, account_id: str, kind: AccountKind) -> None:
        self._account_kinds[account_id] = kind

    def account_kind(self, account_id: str) -> AccountKind:
        return self._account_kinds.get(account_id, AccountKind.DEFAULT)

    def update_vault_positions(self, account_id: str, vaults: list[VaultPosition]) -> None:
        """Replace an account's vault positions; the resulting health must stay >= 1."""
        with self._locked([account_id], []):
            previous = self._vaults.get(account_id)
            self._vaults[account_id] = list(vaults)
            try:
                self._assert_healthy(account_id, self._latest_timestamp())
            except Exception:
                if previous is None:
                    self._vaults.pop(account_id, None)
                else:
                    self._vaults[account_id] = previous
                raise

    def _latest_timestamp(self) -> int:
        return max((m.last_updated_timestamp for m in self.registry.markets()), default=0)

    # Queries

    def accrue_reserve(self, denom: str, now: int) -> int:
        """Advance one market's indices to `now`; returns the scaled reserve minted."""
        with self._locked([], [denom]), self._transaction([denom]) as working:
            return self._accrue_market(working, denom, now)

    def accrue(self, denom: str, now: int) -> AssetMarket:
        """Advance one market's indices to `now`. Idempotent per timestamp."""
        self.accrue_reserve(denom, now)
        return self.registry.get_market(denom)

    def _positions(
        self, account_id: str, now: int, working: WorkingState | None = None
    ) -> Positions:
        with self._state_lock:
            collateral = {d: b.get(account_id, 0) for d, b in list(self._collateral.items())}
            debt = {d: b.get(account_id, 0) for d, b in list(self._debt.items())}
            markets = {d: self.registry.get_market(d) for d in set(collateral) | set(debt)}
        if working is not None:
            for denom, market in working.markets.items():
                collateral[denom] = working.collateral[denom].get(account_id, 0)
                debt[denom] = working.debt[denom].get(account_id, 0)
                markets[denom] = market
        return self.aggregator.build_positions(
            account_id, collateral, debt, now, self._vaults.get(account_id), markets=markets
        )

    def _computer(
        self,
        account_id: str,
        now: int,
        extra_denoms: list[str] | None = None,
        working: WorkingState | None = None,
    ) -> HealthComputer:
        positions = self._positions(account_id, now, working)
        aggregated = self.aggregator.aggregate(positions, extra_denoms)
        return HealthComputer.from_aggregated(aggregated, self.account_kind(account_id))

    def positions(self, account_id: str, now: int) -> Positions:
        return self._positions(account_id, now)

    def health_computer(
        self, account_id: str, now: int, extra_denoms: list[str] | None = None
    ) -> HealthComputer:
        return self._computer(account_id, now, extra_denoms)

    def health(self, account_id: str, now: int) -> HealthSnapshot:
        return self._computer(account_id, now).compute_health()

    def _accrued_market(self, denom: str, now: int) -> AssetMarket:
        market = copy.deepcopy(self.registry.get_market(denom))
        accrual.accrue(market, now)
        return market

    def _fits(self, denom: str, apply: Callable[[WorkingState], object]) -> bool:
        """Dry-run a mutation on uncommitted copies."""
        try:
            apply(self._working([denom]))
        except (BelowLiquidationThreshold, InsufficientCapacity):
            return False
        return True

    def _largest_fitting(self, estimate: int, fits: Callable[[int], bool]) -> int:
        """
        Largest amount near `estimate` the pool accepts.

        The estimate is solved on underlying amounts; once indices have grown, the
        scaled ledger rounds the applied amount by up to one unit either way.
        """
        amount = estimate
        if amount > 0 and fits(amount):
            while fits(amount + 1):
                amount += 1
            return amount
        while amount > 0 and not fits(amount):
            amount -= 1
        return amount

    def max_borrow(self, account_id: str, denom: str, target: BorrowTarget, now: int) -> int:
        computer = self._computer(account_id, now, [denom])
        estimate = max_borrow_amount(computer, denom, target, self._accrued_market(denom, now))
        if target.kind != BorrowTargetKind.WALLET:
            return estimate
        return self._largest_fitting(
            estimate,
            lambda amount: self._fits(
                denom, lambda working: self._apply_borrow(working, account_id, denom, amount, now)
            ),
        )

    def max_withdraw(self, account_id: str, denom: str, now: int) -> int:
        computer = self._computer(account_id, now)
        estimate = min(
            max_withdraw_amount(computer, denom),
            accrual.available_liquidity(self._accrued_market(denom, now)),
        )
        return self._largest_fitting(
            estimate,
            lambda amount: self._fits(
                denom,
                lambda working: self._apply_withdraw(working, account_id, denom, amount, now),
            ),
        )

    def max_swap(
        self, account_id: str, from_denom: str, to_denom: str, kind: SwapKind, now: int
    ) -> int:
        computer = self._computer(account_id, now, [from_denom, to_denom])
        return max_swap_amount(
            computer, from_denom, to_denom, kind, self._accrued_market(from_denom, now)
        )

    def liquidation_price(
        self, account_id: str, denom: str, kind: LiquidationPriceKind, now: int
    ) -> Decimal:
        return liquidation_price(self._computer(account_id, now), denom, kind)

    def _assert_healthy(
        self,
        account_id: str,
        now: int,
        working: WorkingState | None = None,
        before: HealthSnapshot | None = None,
    ) -> HealthSnapshot:
        health = self._computer(account_id, now, working=working).compute_health()
        if not _health_allows(before, health):
            logger.info(
                f"Rejected operation for {account_id}: "
                f"max LTV health factor would be {health.max_ltv_health_factor}"
            )
            raise BelowLiquidationThreshold(health.max_ltv_health_factor)
        return health

    # Mutations

    def deposit(self, account_id: str, denom: str, amount: int, now: int) -> int:
        """
        Post `amount` of `denom` as collateral.

        Returns:
            Scaled amount minted to the account.

        Raises:
            OperationNotEnabled: if deposits are disabled for the asset
            DepositCapExceeded: if the market's total liquidity would exceed its cap
        """
        _check_amount(amount)
        params = self._require_params(denom)
        if not params.deposit_enabled:
            raise OperationNotEnabled("deposit", denom)

        with self._locked([account_id], [denom]), self._transaction([denom]) as working:
            self._accrue_market(working, denom, now)
            market = working.markets[denom]
            if accrual.total_liquidity(market) + amount > params.deposit_cap:
                raise DepositCapExceeded(denom, params.deposit_cap)

            scaled = accrual.get_scaled_liquidity_amount(amount, market, now)
            _add_scaled(working.collateral[denom], account_id, denom, scaled)
            market.total_scaled_liquidity += scaled
            update_interest_rates(market, now)

        logger.info(f"{account_id} deposited {amount} {denom}")
        return scaled

    def withdraw(self, account_id: str, denom: str, amount: int | None, now: int) -> int:
        """
        Withdraw collateral. `amount=None` withdraws the whole balance.

        Returns:
            Underlying amount withdrawn.

        Raises:
            InsufficientCapacity: amount above the account's balance
            InsufficientLiquidity: amount above what is not lent out
            BelowLiquidationThreshold: the account would end up above max LTV
                (or, if it already was, with a lower max LTV health factor)
        """
        if amount is not None:
            _check_amount(amount)
        self._require_params(denom)

        with self._locked([account_id], [denom]), self._transaction([denom]) as working:
            withdrawn = self._apply_withdraw(working, account_id, denom, amount, now)

        logger.info(f"{account_id} withdrew {withdrawn} {denom}")
        return withdrawn

    def _apply_withdraw(
        self, working: WorkingState, account_id: str, denom: str, amount: int | None, now: int
    ) -> int:
        self._accrue_market(working, denom, now)
        market = working.markets[denom]
        balances = working.collateral[denom]
        balance_scaled = balances.get(account_id, 0)
        balance = accrual.compute_underlying_amount(
            balance_scaled, market.liquidity_index, ScalingOperation.TRUNCATE
        )
        if balance == 0:
            raise InsufficientCapacity(f"{account_id} has no {denom} to withdraw")
        if amount is None:
            amount = balance
        if amount > balance:
            raise InsufficientCapacity(f"Requested {amount} {denom} exceeds balance {balance}")
        available = accrual.available_liquidity(market)
        if amount > available:
            raise InsufficientLiquidity(denom, amount, available)

        before = self._computer(account_id, now, working=working).compute_health()
        if amount == balance:
            burn_scaled = balance_scaled
        else:
            burn_scaled = min(
                accrual.compute_scaled_amount(
                    amount, market.liquidity_index, ScalingOperation.CEIL
                ),
                balance_scaled,
            )
        _add_scaled(balances, account_id, denom, -burn_scaled)
        market.total_scaled_liquidity -= burn_scaled
        update_interest_rates(market, now)
        self._assert_healthy(account_id, now, working, before)
        return amount

    def borrow(self, account_id: str, denom: str, amount: int, now: int) -> int:
        """
        Borrow `amount` of `denom` into the account's wallet.

        Returns:
            Scaled debt minted to the account.

        Raises:
            OperationNotEnabled: if borrowing is disabled for the asset
            InsufficientLiquidity: amount above the market's available liquidity
            BelowLiquidationThreshold: the account would end up above max LTV
        """
        _check_amount(amount)
        params = self._require_params(denom)
        if not params.borrow_enabled:
            raise OperationNotEnabled("borrow", denom)

        with self._locked([account_id], [denom]), self._transaction([denom]) as working:
            scaled = self._apply_borrow(working, account_id, denom, amount, now)

        logger.info(f"{account_id} borrowed {amount} {denom}")
        return scaled

    def _apply_borrow(
        self, working: WorkingState, account_id: str, denom: str, amount: int, now: int
    ) -> int:
        self._accrue_market(working, denom, now)
        market = working.markets[denom]
        available = accrual.available_liquidity(market)
        if amount > available:
            raise InsufficientLiquidity(denom, amount, available)

        scaled = accrual.get_scaled_debt_amount(amount, market, now)
        _add_scaled(working.debt[denom], account_id, denom, scaled)
        market.total_scaled_debt += scaled
        update_interest_rates(market, now)
        self._assert_healthy(account_id, now, working)
        return scaled

    def repay(self, account_id: str, denom: str, amount: int, now: int) -> int:
        """
        Repay up to `amount` of the account's debt.

        Returns:
            The refund: the part of `amount` above the outstanding debt.
        """
        _check_amount(amount)
        self._require_params(denom)

        with self._locked([account_id], [denom]), self._transaction([denom]) as working:
            self._accrue_market(working, denom, now)
            market = working.markets[denom]
            repaid = self._burn_debt(working, account_id, market, amount)
            update_interest_rates(market, now)

        logger.info(f"{account_id} repaid {repaid} {denom}")
        return amount - repaid

    def _burn_debt(
        self, working: WorkingState, account_id: str, market: AssetMarket, amount: int
    ) -> int:
        """Burn up to `amount` of debt at the market's current index; returns the amount repaid."""
        balances = working.debt[market.denom]
        debt_scaled = balances.get(account_id, 0)
        debt = accrual.compute_underlying_amount(
            debt_scaled, market.debt_index, ScalingOperation.CEIL
        )
        if debt == 0:
            raise InvalidAmount(f"{account_id} has no {market.denom} debt to repay")

        repaid = min(amount, debt)
        if repaid == debt:
            burn_scaled = debt_scaled
        else:
            burn_scaled = min(
                accrual.compute_scaled_amount(repaid, market.debt_index, ScalingOperation.TRUNCATE),
                debt_scaled,
            )
        _add_scaled(balances, account_id, market.denom, -burn_scaled)
        market.total_scaled_debt -= burn_scaled
        return repaid

    def liquidate(
        self,
        liquidator_id: str,
        liquidatee_id: str,
        collateral_denom: str,
        debt_denom: str,
        amount: int,
        now: int,
    ) -> LiquidationAmounts:
        """
        Repay part of a liquidatable account's debt in exchange for its collateral
        plus a bonus.

        The liquidator supplies the repaid debt from outside the pool and receives
        the seized collateral as a deposit. The protocol fee share of the bonus is
        credited to the rewards collector.

        Raises:
            CannotLiquidateSelf: liquidator and liquidatee are the same account
            NotLiquidatable: the liquidatee's liquidation health factor is >= 1
            CloseFactorExceeded: `amount` repays more than close_factor of the debt
            LiquidationFailed: degenerate amounts or health not improved
        """
        _check_amount(amount)
        if liquidator_id == liquidatee_id:
            raise CannotLiquidateSelf(f"{liquidator_id} cannot liquidate itself")
        collateral_params = self._require_params(collateral_denom)
        self._require_params(debt_denom)

        denoms = [collateral_denom, debt_denom]
        locked = self._locked([liquidator_id, liquidatee_id], denoms)
        with locked, self._transaction(denoms) as working:
            for denom in set(denoms):
                self._accrue_market(working, denom, now)
            collateral_market = working.markets[collateral_denom]
            debt_market = working.markets[debt_denom]

            computer = self._computer(liquidatee_id, now, denoms, working)
            health = computer.compute_health()
            if not health.liquidatable:
                raise NotLiquidatable(liquidatee_id, health.liquidation_health_factor)

            positions = computer.positions
            debt_amount = positions.debt_amount(debt_denom)
            if debt_amount == 0:
                raise LiquidationFailed(f"{liquidatee_id} has no {debt_denom} debt")
            collateral_amount = positions.deposit_amount(collateral_denom)
            if collateral_amount == 0:
                raise LiquidationFailed(f"{liquidatee_id} has no {collateral_denom} collateral")
            check_close_factor(amount, debt_amount, self.close_factor)

            amounts = calculate_liquidation_amounts(
                collateral_amount=collateral_amount,
                collateral_price=computer.price(collateral_denom),
                collateral_params=collateral_params,
                debt_amount=debt_amount,
                debt_requested_to_repay=amount,
                debt_price=computer.price(debt_denom),
                target_health_factor=self.target_health_factor,
                health=health,
                liquidation_threshold=computer.liquidation_threshold(collateral_denom),
            )

            self._burn_debt(working, liquidatee_id, debt_market, amounts.debt_amount_to_repay)
            self._transfer_collateral(
                working, liquidatee_id, liquidator_id, collateral_market, amounts
            )

            update_interest_rates(debt_market, now)
            if collateral_denom != debt_denom:
                update_interest_rates(collateral_market, now)

            new_health = self._computer(liquidatee_id, now, working=working).compute_health()
            self._assert_health_improved(liquidatee_id, health, new_health)

        logger.info(
            f"{liquidator_id} liquidated {liquidatee_id}: repaid {amounts.debt_amount_to_repay} "
            f"{debt_denom}, seized {amounts.collateral_amount_to_liquidate} {collateral_denom} "
            f"(bonus {amounts.liquidation_bonus}, protocol fee {amounts.protocol_fee_amount})"
        )
        return amounts

    def _transfer_collateral(
        self,
        working: WorkingState,
        liquidatee_id: str,
        liquidator_id: str,
        market: AssetMarket,
        amounts: LiquidationAmounts,
    ) -> None:
        denom = market.denom
        balances = working.collateral[denom]
        balance_scaled = balances.get(liquidatee_id, 0)
        balance = accrual.compute_underlying_amount(
            balance_scaled, market.liquidity_index, ScalingOperation.TRUNCATE
        )
        if amounts.collateral_amount_to_liquidate >= balance:
            seized_scaled = balance_scaled
        else:
            seized_scaled = min(
                accrual.compute_scaled_amount(
                    amounts.collateral_amount_to_liquidate,
                    market.liquidity_index,
                    ScalingOperation.CEIL,
                ),
                balance_scaled,
            )
        fee_scaled = min(
            accrual.compute_scaled_amount(
                amounts.protocol_fee_amount, market.liquidity_index, ScalingOperation.TRUNCATE
            ),
            seized_scaled,
        )

        # Scaled units move between accounts; market totals are unchanged
        _add_scaled(balances, liquidatee_id, denom, -seized_scaled)
        _add_scaled(balances, liquidator_id, denom, seized_scaled - fee_scaled)
        if fee_scaled:
            _add_scaled(balances, self.rewards_collector, denom, fee_scaled)

    @staticmethod
    def _assert_health_improved(
        account_id: str, before: HealthSnapshot, after: HealthSnapshot
    ) -> None:
        if after.total_debt_value == 0:
            return
        if after.liquidation_health_factor <= before.liquidation_health_factor:
            logger.info(
                f"Rejected liquidation of {account_id}: health factor "
                f"{before.liquidation_health_factor} -> {after.liquidation_health_factor}"
            )
            raise LiquidationFailed(
                f"Liquidation did not improve health factor of {account_id} "
                f"({before.liquidation_health_factor} -> {after.liquidation_health_factor})"
            )
