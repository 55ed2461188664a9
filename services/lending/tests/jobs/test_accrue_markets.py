"""Tests for the accrue_markets job."""

import sys
from decimal import Decimal

import pytest

from services.lending.src.lending.db.engine import get_engine, init_db
from services.lending.src.lending.db.repository import (
    COLLATERAL,
    MarketRepository,
    ScaledBalanceRepository,
)
from services.lending.src.lending.domain.accrual import SCALING_FACTOR, SECONDS_PER_YEAR
from services.lending.src.lending.domain.models import AssetMarket, LinearInterestRateModel
from services.lending.src.lending.jobs import accrue_markets
from services.lending.src.lending.jobs.accrue_markets import accrue_all_markets, accrue_pool_markets
from services.lending.src.lending.state import build_pool


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'lending.db'}"


@pytest.fixture
def engine(database_url):
    engine = get_engine(database_url)
    init_db(engine)
    return engine


def borrowed_market(last_updated_timestamp: int = 0) -> AssetMarket:
    return AssetMarket(
        denom="uusdc",
        interest_rate_model=LinearInterestRateModel(
            optimal_utilization_rate=Decimal("0.8"),
            base=Decimal(0),
            slope_1=Decimal("0.07"),
            slope_2=Decimal("0.45"),
        ),
        reserve_factor=Decimal("0.1"),
        borrow_rate=Decimal("0.07"),
        liquidity_rate=Decimal("0.0504"),
        total_scaled_liquidity=1_000_000 * SCALING_FACTOR,
        total_scaled_debt=800_000 * SCALING_FACTOR,
        last_updated_timestamp=last_updated_timestamp,
        rate_last_updated=last_updated_timestamp,
    )


class TestAccruePoolMarkets:
    """Accrual of an already loaded pool."""

    def test_accrues_every_market_of_the_pool(self, engine):
        MarketRepository(engine).upsert_markets([borrowed_market()])
        pool = build_pool(engine, 0, "collector")

        results = accrue_pool_markets(pool, SECONDS_PER_YEAR)

        assert set(results) == {"uatom", "uosmo", "uusdc"}
        assert results["uusdc"] > 0
        assert pool.collateral_ledger()["uusdc"] == {"collector": results["uusdc"]}
        assert all(
            m.last_updated_timestamp == SECONDS_PER_YEAR for m in pool.registry.markets()
        )

    def test_reserve_is_minted_once_per_period(self, engine):
        MarketRepository(engine).upsert_markets([borrowed_market()])
        pool = build_pool(engine, 0, "collector")

        first = accrue_pool_markets(pool, SECONDS_PER_YEAR)
        restarted = build_pool(engine, SECONDS_PER_YEAR, "collector")
        second = accrue_pool_markets(restarted, SECONDS_PER_YEAR)

        assert second == {"uatom": 0, "uosmo": 0, "uusdc": 0}
        assert restarted.collateral_ledger()["uusdc"] == {"collector": first["uusdc"]}
        stored = MarketRepository(engine).get_market("uusdc")
        assert stored.total_scaled_liquidity == 1_000_000 * SCALING_FACTOR + first["uusdc"]


class TestAccrueAllMarkets:
    """Accrual through the command line entry point."""

    def test_accrues_and_credits_reserve(self, engine, database_url):
        MarketRepository(engine).upsert_markets([borrowed_market()])

        results = accrue_all_markets(
            timestamp=SECONDS_PER_YEAR,
            database_url=database_url,
            rewards_collector="collector",
        )

        assert results["uusdc"] > 0
        # freshly seeded markets have nothing to accrue
        assert results["uatom"] == 0
        assert results["uosmo"] == 0

        market = MarketRepository(engine).get_market("uusdc")
        assert market.last_updated_timestamp == SECONDS_PER_YEAR
        assert abs(market.debt_index - Decimal("1.07")) < Decimal("1e-9")

        balances = ScaledBalanceRepository(engine).get_account_balances("collector", COLLATERAL)
        assert balances == {"uusdc": results["uusdc"]}

    def test_rerun_at_same_timestamp_mints_nothing(self, engine, database_url):
        MarketRepository(engine).upsert_markets([borrowed_market()])
        accrue_all_markets(timestamp=SECONDS_PER_YEAR, database_url=database_url)

        results = accrue_all_markets(timestamp=SECONDS_PER_YEAR, database_url=database_url)

        assert results == {"uatom": 0, "uosmo": 0, "uusdc": 0}

    def test_market_ahead_of_timestamp_fails(self, engine, database_url):
        MarketRepository(engine).upsert_markets([borrowed_market(2000)])

        results = accrue_all_markets(timestamp=1000, database_url=database_url)

        assert results["uusdc"] == -1
        assert results["uatom"] == 0


class TestMain:
    """Exit codes of the command line entry point."""

    def test_returns_zero_on_success(self, monkeypatch, database_url):
        monkeypatch.setattr(
            sys, "argv", ["accrue_markets", "--timestamp", "1000", "--database-url", database_url]
        )
        assert accrue_markets.main() == 0

    def test_returns_one_when_a_market_fails(self, monkeypatch, engine, database_url):
        MarketRepository(engine).upsert_markets([borrowed_market(2000)])
        monkeypatch.setattr(
            sys, "argv", ["accrue_markets", "--timestamp", "1000", "--database-url", database_url]
        )
        assert accrue_markets.main() == 1
