"""Build the lending pool from configuration and the database."""

import logging

from sqlalchemy.engine import Engine

from services.lending.src.lending.adapters.oracle.client import HttpPriceFeed, MockPriceFeed
from services.lending.src.lending.adapters.params.config import get_default_config
from services.lending.src.lending.config import settings
from services.lending.src.lending.db.engine import get_engine, init_db
from services.lending.src.lending.db.repository import PoolStateRepository
from services.lending.src.lending.domain.pool import LendingPool
from services.lending.src.lending.utils.timestamps import utc_now_seconds

logger = logging.getLogger(__name__)


def load_pool_state(pool: LendingPool, repo: PoolStateRepository) -> int:
    """
    Replace the pool's markets and ledgers with the stored ones.

    Configured markets missing from the database are stored as they are.

    Returns:
        Number of markets seeded
    """
    markets, collateral, debt = repo.load()

    stored = set()
    for market in markets:
        if not pool.registry.has_market(market.denom):
            logger.warning(f"Ignoring stored market {market.denom}: no parameters configured")
            continue
        pool.registry.restore_market(market)
        stored.add(market.denom)

    known = {m.denom for m in pool.registry.markets()}
    pool.load_ledgers(
        {denom: balances for denom, balances in collateral.items() if denom in known},
        {denom: balances for denom, balances in debt.items() if denom in known},
    )

    missing = [m for m in pool.registry.markets() if m.denom not in stored]
    if missing:
        logger.info(f"Seeding {len(missing)} markets: {', '.join(m.denom for m in missing)}")
        repo.markets.upsert_markets(missing)
    logger.info(f"Loaded {len(stored)} markets from the database")
    return len(missing)


def build_pool(
    engine: Engine | None = None,
    timestamp: int | None = None,
    rewards_collector: str | None = None,
) -> LendingPool:
    """
    Create a pool over the configured markets, priced by the configured oracle,
    restored from and persisting to the database.
    """
    if settings.oracle_url:
        price_feed = HttpPriceFeed(settings.oracle_url, timeout=settings.oracle_timeout)
    else:
        logger.warning("ORACLE_URL not set, using in-memory price feed")
        price_feed = MockPriceFeed()

    now = timestamp if timestamp is not None else utc_now_seconds()
    engine = engine or get_engine()
    init_db(engine)
    repo = PoolStateRepository(engine)
    pool = LendingPool(
        get_default_config().build_registry(now),
        price_feed,
        close_factor=settings.close_factor,
        target_health_factor=settings.target_health_factor,
        rewards_collector=rewards_collector or settings.rewards_collector,
        store=repo,
    )
    load_pool_state(pool, repo)
    return pool
