"""Tests for the lending pool's deposit, withdraw, borrow, repay and liquidate flows."""

import threading
from dataclasses import replace
from decimal import Decimal

import pytest

from services.lending.src.lending.adapters.oracle.client import MockPriceFeed
from services.lending.src.lending.adapters.params.config import get_default_config
from services.lending.src.lending.adapters.vaults import StaticVaultReporter
from services.lending.src.lending.domain.accrual import SCALING_FACTOR, SECONDS_PER_YEAR
from services.lending.src.lending.domain.errors import (
    BelowLiquidationThreshold,
    CannotLiquidateSelf,
    CloseFactorExceeded,
    DepositCapExceeded,
    InsufficientCapacity,
    InsufficientLiquidity,
    InvalidAmount,
    InvalidTimestamp,
    MarketNotFound,
    MissingHLSParams,
    MissingVaultValues,
    NotLiquidatable,
    OperationNotEnabled,
)
from services.lending.src.lending.domain.interest_rate import market_utilization
from services.lending.src.lending.domain.models import (
    AccountKind,
    BorrowTarget,
    LiquidationPriceKind,
    SwapKind,
    VaultConfig,
    VaultPosition,
)
from services.lending.src.lending.domain.pool import LendingPool


@pytest.fixture
def price_feed():
    return MockPriceFeed({"uatom": 1, "uusdc": 1, "uosmo": 1})


@pytest.fixture
def pool(price_feed):
    return LendingPool(get_default_config().build_registry(0), price_feed)


@pytest.fixture
def borrowed_pool(pool):
    """lender supplies 10000 uusdc; alice posts 1000 uatom and borrows 500 uusdc (HF 1.4)."""
    pool.deposit("lender", "uusdc", 10_000, 0)
    pool.deposit("alice", "uatom", 1000, 0)
    pool.borrow("alice", "uusdc", 500, 0)
    return pool


class TestDeposit:
    """Deposits, caps and disabled markets."""

    def test_mints_scaled_collateral(self, pool):
        scaled = pool.deposit("alice", "uatom", 1000, 0)

        assert scaled == 1000 * SCALING_FACTOR
        assert pool.collateral_ledger() == {"uatom": {"alice": 1000 * SCALING_FACTOR}}
        assert pool.registry.get_market("uatom").total_scaled_liquidity == 1000 * SCALING_FACTOR

    def test_zero_amount_raises(self, pool):
        with pytest.raises(InvalidAmount):
            pool.deposit("alice", "uatom", 0, 0)

    def test_unknown_market_raises(self, pool):
        with pytest.raises(MarketNotFound):
            pool.deposit("alice", "unknown", 1, 0)

    def test_deposit_cap(self, pool):
        params = pool.registry.get_asset_params("uatom")
        pool.registry.update_asset_params(replace(params, deposit_cap=1500))
        pool.deposit("alice", "uatom", 1000, 0)

        with pytest.raises(DepositCapExceeded):
            pool.deposit("bob", "uatom", 501, 0)
        assert pool.deposit("bob", "uatom", 500, 0) == 500 * SCALING_FACTOR

    def test_disabled_deposits_raise(self, pool):
        params = pool.registry.get_asset_params("uatom")
        pool.registry.update_asset_params(replace(params, deposit_enabled=False))
        with pytest.raises(OperationNotEnabled):
            pool.deposit("alice", "uatom", 1000, 0)

    def test_backwards_timestamp_raises(self, pool):
        pool.deposit("alice", "uatom", 1000, 100)
        with pytest.raises(InvalidTimestamp):
            pool.deposit("alice", "uatom", 1000, 50)
        assert pool.collateral_ledger()["uatom"]["alice"] == 1000 * SCALING_FACTOR


class TestBorrow:
    """Borrows checked against max LTV and liquidity."""

    def test_health_after_borrow(self, borrowed_pool):
        health = borrowed_pool.health("alice", 0)
        assert health.max_ltv_health_factor == Decimal("1.4")
        assert health.total_debt_value == 500

    def test_max_borrow_to_wallet(self, borrowed_pool):
        assert borrowed_pool.max_borrow("alice", "uusdc", BorrowTarget.wallet(), 0) == 200

    def test_borrowing_the_max_is_allowed(self, borrowed_pool):
        borrowed_pool.borrow("alice", "uusdc", 200, 0)
        assert borrowed_pool.health("alice", 0).max_ltv_health_factor == 1

    def test_borrowing_past_the_max_raises_and_rolls_back(self, borrowed_pool):
        debt_before = borrowed_pool.debt_ledger()
        market_before = borrowed_pool.registry.get_market("uusdc")
        scaled_debt_before = market_before.total_scaled_debt
        borrow_rate_before = market_before.borrow_rate

        with pytest.raises(BelowLiquidationThreshold):
            borrowed_pool.borrow("alice", "uusdc", 201, 0)

        market_after = borrowed_pool.registry.get_market("uusdc")
        assert borrowed_pool.debt_ledger() == debt_before
        assert market_after.total_scaled_debt == scaled_debt_before
        assert market_after.borrow_rate == borrow_rate_before

    def test_borrow_above_liquidity_raises(self, pool):
        pool.deposit("lender", "uusdc", 100, 0)
        pool.deposit("alice", "uatom", 1000, 0)
        with pytest.raises(InsufficientLiquidity) as exc_info:
            pool.borrow("alice", "uusdc", 101, 0)
        assert exc_info.value.available == 100

    def test_borrow_updates_interest_rate(self, borrowed_pool):
        market = borrowed_pool.registry.get_market("uusdc")
        # utilization 0.05 on the 0.8 / 0.07 kink
        assert market.borrow_rate == Decimal("0.004375")

    def test_debt_grows_with_time(self, borrowed_pool):
        health = borrowed_pool.health("alice", SECONDS_PER_YEAR)
        assert health.total_debt_value == 503

    def test_disabled_borrowing_raises(self, borrowed_pool):
        params = borrowed_pool.registry.get_asset_params("uusdc")
        borrowed_pool.registry.update_asset_params(replace(params, borrow_enabled=False))
        with pytest.raises(OperationNotEnabled):
            borrowed_pool.borrow("alice", "uusdc", 1, 0)


class TestWithdraw:
    """Withdrawals checked against balance, liquidity and health."""

    def test_max_withdraw(self, borrowed_pool):
        assert borrowed_pool.max_withdraw("alice", "uatom", 0) == 285

    def test_withdrawing_the_max_is_allowed(self, borrowed_pool):
        assert borrowed_pool.withdraw("alice", "uatom", 285, 0) == 285
        assert not borrowed_pool.health("alice", 0).above_max_ltv

    def test_withdrawing_past_the_max_raises(self, borrowed_pool):
        with pytest.raises(BelowLiquidationThreshold):
            borrowed_pool.withdraw("alice", "uatom", 286, 0)
        assert borrowed_pool.collateral_ledger()["uatom"]["alice"] == 1000 * SCALING_FACTOR

    def test_withdraw_everything(self, pool):
        pool.deposit("alice", "uatom", 1000, 0)
        assert pool.withdraw("alice", "uatom", None, 0) == 1000
        assert pool.collateral_ledger() == {}

    def test_more_than_balance_raises(self, pool):
        pool.deposit("alice", "uatom", 1000, 0)
        with pytest.raises(InsufficientCapacity):
            pool.withdraw("alice", "uatom", 1001, 0)

    def test_nothing_to_withdraw_raises(self, pool):
        with pytest.raises(InsufficientCapacity):
            pool.withdraw("alice", "uatom", None, 0)

    def test_lent_out_liquidity_cannot_be_withdrawn(self, borrowed_pool):
        assert borrowed_pool.max_withdraw("lender", "uusdc", 0) == 9500
        with pytest.raises(InsufficientLiquidity):
            borrowed_pool.withdraw("lender", "uusdc", 9501, 0)


class TestRepay:
    """Repayment and refunds."""

    def test_partial_repay(self, borrowed_pool):
        assert borrowed_pool.repay("alice", "uusdc", 200, 0) == 0
        assert borrowed_pool.health("alice", 0).total_debt_value == 300

    def test_overpayment_is_refunded(self, borrowed_pool):
        assert borrowed_pool.repay("alice", "uusdc", 600, 0) == 100
        assert "uusdc" not in borrowed_pool.debt_ledger()
        assert borrowed_pool.registry.get_market("uusdc").total_scaled_debt == 0

    def test_repay_without_debt_raises(self, pool):
        with pytest.raises(InvalidAmount):
            pool.repay("alice", "uusdc", 100, 0)


class TestAccrue:

    def test_reserve_is_credited_to_rewards_collector(self, pool):
        pool.deposit("lender", "uusdc", 1_000_000, 0)
        pool.deposit("alice", "uatom", 2_000_000, 0)
        pool.borrow("alice", "uusdc", 800_000, 0)

        market = pool.accrue("uusdc", SECONDS_PER_YEAR)

        assert market.debt_index == Decimal("1.07")
        assert pool.collateral_ledger()["uusdc"]["rewards-collector"] > 0

    def test_accrue_is_idempotent(self, borrowed_pool):
        first = borrowed_pool.accrue("uusdc", 100)
        index = first.debt_index
        assert borrowed_pool.accrue("uusdc", 100).debt_index == index


class TestLiquidate:
    """Liquidation of accounts below the liquidation threshold."""

    @pytest.fixture
    def unhealthy_pool(self, pool, price_feed):
        """alice borrows right up to max LTV, then her collateral drops 10%."""
        pool.deposit("lender", "uusdc", 10_000, 0)
        pool.deposit("alice", "uatom", 1000, 0)
        pool.borrow("alice", "uusdc", 700, 0)
        price_feed.set_price("uatom", "0.9")
        return pool

    def test_liquidation_moves_collateral_and_debt(self, unhealthy_pool):
        health_before = unhealthy_pool.health("alice", 0)
        assert health_before.liquidatable

        amounts = unhealthy_pool.liquidate("bob", "alice", "uatom", "uusdc", 300, 0)

        assert amounts.debt_amount_to_repay == 300
        assert amounts.collateral_amount_to_liquidate == 360
        assert amounts.protocol_fee_amount == 13
        assert amounts.collateral_amount_received_by_liquidator == 347

        collateral = unhealthy_pool.collateral_ledger()["uatom"]
        assert collateral["alice"] == 640 * SCALING_FACTOR
        assert collateral["bob"] == 347 * SCALING_FACTOR
        assert collateral["rewards-collector"] == 13 * SCALING_FACTOR

        health_after = unhealthy_pool.health("alice", 0)
        assert health_after.total_debt_value == 400
        assert health_after.liquidation_health_factor > health_before.liquidation_health_factor

    def test_healthy_account_cannot_be_liquidated(self, borrowed_pool):
        with pytest.raises(NotLiquidatable):
            borrowed_pool.liquidate("bob", "alice", "uatom", "uusdc", 100, 0)

    def test_close_factor_limits_repay(self, unhealthy_pool):
        with pytest.raises(CloseFactorExceeded):
            unhealthy_pool.liquidate("bob", "alice", "uatom", "uusdc", 351, 0)
        assert unhealthy_pool.debt_ledger()["uusdc"]["alice"] == 700 * SCALING_FACTOR

    def test_self_liquidation_raises(self, unhealthy_pool):
        with pytest.raises(CannotLiquidateSelf):
            unhealthy_pool.liquidate("alice", "alice", "uatom", "uusdc", 100, 0)


class TestAccountQueries:

    def test_max_swap(self, borrowed_pool):
        assert borrowed_pool.max_swap("alice", "uatom", "uusdc", SwapKind.DEFAULT, 0) == 1000

    def test_liquidation_price(self, borrowed_pool):
        price = borrowed_pool.liquidation_price("alice", "uusdc", LiquidationPriceKind.DEBT, 0)
        assert price == Decimal("1.5")

    def test_hls_account_without_hls_params_raises(self, borrowed_pool):
        borrowed_pool.set_account_kind("alice", AccountKind.HIGH_LEVERED_STRATEGY)
        assert borrowed_pool.account_kind("alice") == AccountKind.HIGH_LEVERED_STRATEGY
        # uatom has no HLS params in the default config
        with pytest.raises(MissingHLSParams):
            borrowed_pool.health("alice", 0)


class TestVaultPositions:
    """Vault positions reported for an account."""

    @pytest.fixture
    def vault_pool(self, price_feed):
        registry = get_default_config().build_registry(0)
        registry.set_vault_config(
            VaultConfig(
                address="vault1",
                max_loan_to_value=Decimal("0.5"),
                liquidation_threshold=Decimal("0.6"),
                deposit_cap=Decimal(10**9),
            )
        )
        reporter = StaticVaultReporter(price_feed)
        reporter.set_vault("vault1", "uosmo", Decimal(1))
        pool = LendingPool(registry, price_feed, reporter)
        pool.deposit("lender", "uusdc", 10_000, 0)
        pool.deposit("alice", "uatom", 1000, 0)
        pool.borrow("alice", "uusdc", 500, 0)
        return pool

    def test_vault_adds_borrowing_power(self, vault_pool):
        vault_pool.update_vault_positions("alice", [VaultPosition("vault1", locked=1000)])

        health = vault_pool.health("alice", 0)

        assert health.total_collateral_value == 2000
        assert health.max_ltv_adjusted_collateral == 1200
        assert vault_pool.max_borrow("alice", "uusdc", BorrowTarget.wallet(), 0) == 700

    def test_unreported_vault_is_rolled_back(self, vault_pool):
        vault_pool.registry.set_vault_config(
            VaultConfig(
                address="vault2",
                max_loan_to_value=Decimal("0.5"),
                liquidation_threshold=Decimal("0.6"),
                deposit_cap=Decimal(10**9),
            )
        )
        with pytest.raises(MissingVaultValues):
            vault_pool.update_vault_positions("alice", [VaultPosition("vault2", locked=1)])
        assert vault_pool.positions("alice", 0).vaults == []


class TestDelistedCollateral:
    """Withdrawing a de-listed asset from an account that is already above max LTV."""

    @pytest.fixture
    def delisted_pool(self, pool, price_feed):
        pool.deposit("lender", "uusdc", 10_000, 0)
        pool.deposit("alice", "uatom", 1000, 0)
        pool.deposit("alice", "uosmo", 100, 0)
        pool.borrow("alice", "uusdc", 500, 0)
        price_feed.set_price("uatom", "0.7")
        params = pool.registry.get_asset_params("uosmo")
        pool.registry.update_asset_params(replace(params, whitelisted=False))
        return pool

    def test_account_is_above_max_ltv(self, delisted_pool):
        # 1000 * 0.7 * 0.7 = 490 against 500 of debt
        health = delisted_pool.health("alice", 0)
        assert health.above_max_ltv
        assert health.max_ltv_health_factor == Decimal("0.98")

    def test_full_delisted_balance_can_be_withdrawn(self, delisted_pool):
        assert delisted_pool.max_withdraw("alice", "uosmo", 0) == 100

        assert delisted_pool.withdraw("alice", "uosmo", 100, 0) == 100

        assert "uosmo" not in delisted_pool.collateral_ledger()
        assert delisted_pool.health("alice", 0).max_ltv_health_factor == Decimal("0.98")

    def test_listed_collateral_stays_locked(self, delisted_pool):
        assert delisted_pool.max_withdraw("alice", "uatom", 0) == 0
        with pytest.raises(BelowLiquidationThreshold):
            delisted_pool.withdraw("alice", "uatom", 1, 0)


class TestIsolation:
    """Readers see committed state only."""

    class RecordingPriceFeed(MockPriceFeed):
        """Captures what the pool has committed each time a health check prices an account."""

        def __init__(self, prices):
            super().__init__(prices)
            self.pool = None
            self.seen = []

        def get_prices(self, denoms):
            if self.pool is not None:
                self.seen.append(
                    (
                        self.pool.debt_ledger(),
                        self.pool.registry.get_market("uusdc").total_scaled_debt,
                        self.pool.positions("alice", 0).debts,
                    )
                )
            return super().get_prices(denoms)

    @pytest.fixture
    def recording_pool(self):
        feed = self.RecordingPriceFeed({"uatom": 1, "uusdc": 1, "uosmo": 1})
        pool = LendingPool(get_default_config().build_registry(0), feed)
        pool.deposit("lender", "uusdc", 10_000, 0)
        pool.deposit("alice", "uatom", 1000, 0)
        pool.borrow("alice", "uusdc", 500, 0)
        feed.pool = pool
        return pool, feed

    def test_mutation_in_progress_is_not_visible(self, recording_pool):
        pool, feed = recording_pool
        committed = (
            pool.debt_ledger(),
            pool.registry.get_market("uusdc").total_scaled_debt,
            pool.positions("alice", 0).debts,
        )

        pool.borrow("alice", "uusdc", 100, 0)

        assert feed.seen
        assert all(seen == committed for seen in feed.seen)
        assert pool.debt_ledger()["uusdc"]["alice"] == 600 * SCALING_FACTOR

    def test_failed_mutation_is_never_visible(self, recording_pool):
        pool, feed = recording_pool
        committed = (
            pool.debt_ledger(),
            pool.registry.get_market("uusdc").total_scaled_debt,
            pool.positions("alice", 0).debts,
        )

        with pytest.raises(BelowLiquidationThreshold):
            pool.borrow("alice", "uusdc", 201, 0)

        assert feed.seen
        assert all(seen == committed for seen in feed.seen)
        assert (
            pool.debt_ledger(),
            pool.registry.get_market("uusdc").total_scaled_debt,
            pool.positions("alice", 0).debts,
        ) == committed

    def test_reads_during_concurrent_deposits(self, pool):
        errors = []
        done = threading.Event()

        def write():
            try:
                for i in range(200):
                    pool.deposit(f"account-{i}", "uatom", 10, 0)
                    pool.deposit(f"account-{i}", "uusdc", 10, 0)
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        def read():
            try:
                while not done.is_set():
                    pool.positions("account-0", 0)
                    pool.collateral_ledger()
                    pool.health("account-199", 0)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=write), threading.Thread(target=read)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(pool.collateral_ledger()["uatom"]) == 200


class TestMarketInvariants:
    """Indices and utilization over a mixed sequence of operations."""

    HALF_YEAR = SECONDS_PER_YEAR // 2

    STEPS = [
        (0, "deposit", ("lender", "uusdc", 10_000)),
        (0, "deposit", ("alice", "uatom", 10_000)),
        (60, "borrow", ("alice", "uusdc", 4000)),
        (3600, "deposit", ("bob", "uusdc", 2000)),
        (86_400, "borrow", ("alice", "uusdc", 2000)),
        (86_400, "repay", ("alice", "uusdc", 1000)),
        (86_400, "borrow", ("bob", "uatom", 500)),
        (HALF_YEAR, "withdraw", ("lender", "uusdc", 3000)),
        (HALF_YEAR, "deposit", ("carol", "uatom", 5000)),
        (SECONDS_PER_YEAR, "repay", ("alice", "uusdc", 10_000)),
        (SECONDS_PER_YEAR, "repay", ("bob", "uatom", 1000)),
        (SECONDS_PER_YEAR, "withdraw", ("bob", "uusdc", None)),
    ]

    def test_indices_never_decrease_and_utilization_stays_in_range(self, pool):
        indices = {
            m.denom: (m.liquidity_index, m.debt_index) for m in pool.registry.markets()
        }

        for timestamp, operation, args in self.STEPS:
            getattr(pool, operation)(*args, timestamp)
            for denom in list(indices):
                market = pool.accrue(denom, timestamp)
                previous_liquidity_index, previous_debt_index = indices[denom]

                assert market.liquidity_index >= previous_liquidity_index
                assert market.debt_index >= previous_debt_index
                assert 0 <= market_utilization(market) <= 1
                indices[denom] = (market.liquidity_index, market.debt_index)

        assert pool.registry.get_market("uusdc").debt_index > 1
        assert pool.registry.get_market("uatom").debt_index > 1
        assert pool.debt_ledger() == {}


class TestCapacityAtGrownIndex:
    """The max borrow and withdraw estimates are exact once interest has accrued."""

    @pytest.fixture(params=[("1.37", "0.99"), ("0.5", "2"), ("12.5", "1")])
    def grown_pool(self, request, pool, price_feed):
        atom_price, usdc_price = request.param
        price_feed.set_price("uatom", atom_price)
        price_feed.set_price("uusdc", usdc_price)
        pool.deposit("lender", "uusdc", 10_000_000, 0)
        pool.deposit("lender", "uatom", 10_000_000, 0)
        pool.deposit("alice", "uatom", 1_000_000, 0)
        pool.borrow("alice", "uusdc", 100_000, 0)
        pool.deposit("bob", "uusdc", 5_000_000, 0)
        pool.borrow("bob", "uatom", 200_000, 0)
        return pool

    def test_indices_have_grown(self, grown_pool):
        for denom in ["uatom", "uusdc"]:
            market = grown_pool.accrue(denom, SECONDS_PER_YEAR)
            assert market.liquidity_index > 1
            assert market.debt_index > 1

    def test_max_borrow_is_the_largest_accepted_amount(self, grown_pool):
        amount = grown_pool.max_borrow("alice", "uusdc", BorrowTarget.wallet(), SECONDS_PER_YEAR)
        assert amount > 0

        with pytest.raises((BelowLiquidationThreshold, InsufficientCapacity)):
            grown_pool.borrow("alice", "uusdc", amount + 1, SECONDS_PER_YEAR)
        grown_pool.borrow("alice", "uusdc", amount, SECONDS_PER_YEAR)

        health = grown_pool.health("alice", SECONDS_PER_YEAR)
        assert 1 <= health.max_ltv_health_factor < Decimal("1.0001")

    def test_max_withdraw_is_the_largest_accepted_amount(self, grown_pool):
        amount = grown_pool.max_withdraw("bob", "uusdc", SECONDS_PER_YEAR)
        assert amount > 0

        with pytest.raises((BelowLiquidationThreshold, InsufficientCapacity)):
            grown_pool.withdraw("bob", "uusdc", amount + 1, SECONDS_PER_YEAR)
        assert grown_pool.withdraw("bob", "uusdc", amount, SECONDS_PER_YEAR) == amount

        health = grown_pool.health("bob", SECONDS_PER_YEAR)
        assert 1 <= health.max_ltv_health_factor < Decimal("1.0001")


class TestHealthBoundary:
    """A health factor of exactly 1 is accepted; anything below is not."""

    @pytest.mark.parametrize(
        "collateral_denom, collateral, atom_price, borrow",
        [
            ("uatom", 1000, "1", 700),
            ("uatom", 1000, "2", 1400),
            ("uatom", 300, "0.5", 105),
            ("uusdc", 1000, "1", 800),
        ],
    )
    def test_borrow_to_exactly_max_ltv(
        self, pool, price_feed, collateral_denom, collateral, atom_price, borrow
    ):
        price_feed.set_price("uatom", atom_price)
        pool.deposit("lender", "uusdc", 10_000, 0)
        pool.deposit("alice", collateral_denom, collateral, 0)

        assert pool.max_borrow("alice", "uusdc", BorrowTarget.wallet(), 0) == borrow
        with pytest.raises(BelowLiquidationThreshold):
            pool.borrow("alice", "uusdc", borrow + 1, 0)
        pool.borrow("alice", "uusdc", borrow, 0)

        assert pool.health("alice", 0).max_ltv_health_factor == 1

    @pytest.mark.parametrize("debt, withdrawable", [(350, 500), (700, 0), (70, 900)])
    def test_withdraw_to_exactly_max_ltv(self, borrowed_pool, debt, withdrawable):
        borrowed_pool.repay("alice", "uusdc", 500, 0)
        borrowed_pool.borrow("alice", "uusdc", debt, 0)

        assert borrowed_pool.max_withdraw("alice", "uatom", 0) == withdrawable
        with pytest.raises(BelowLiquidationThreshold):
            borrowed_pool.withdraw("alice", "uatom", withdrawable + 1, 0)
        if withdrawable:
            borrowed_pool.withdraw("alice", "uatom", withdrawable, 0)

        assert borrowed_pool.health("alice", 0).max_ltv_health_factor == 1
