"""
Market index accrual job.

Advances every market's indices to the current time through a lending pool.
The pool credits the protocol reserves minted by the accrual to the rewards
collector's collateral balance and stores each market as it commits.

The API schedules `accrue_pool_markets` on its own pool. Run this script only
while the API is stopped, otherwise two pools write the same rows.

Usage:
    python -m services.lending.src.lending.jobs.accrue_markets
    python -m services.lending.src.lending.jobs.accrue_markets --timestamp 1700000000
"""
import argparse
import logging
import sys

from services.lending.src.lending.db.engine import get_engine
from services.lending.src.lending.domain.errors import LendingError
from services.lending.src.lending.domain.pool import LendingPool
from services.lending.src.lending.state import build_pool
from services.lending.src.lending.utils.timestamps import to_datetime, utc_now_seconds

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def accrue_pool_markets(pool: LendingPool, timestamp: int) -> dict[str, int]:
    """
    Accrue every market of `pool` to `timestamp`.

    Returns:
        Dict mapping denom to scaled reserve minted, or -1 if the market failed
    """
    logger.info(f"Accruing markets to {to_datetime(timestamp).isoformat()}")

    results: dict[str, int] = {}
    for denom in [m.denom for m in pool.registry.markets()]:
        try:
            minted = pool.accrue_reserve(denom, timestamp)
        except LendingError as e:
            logger.error(f"Accrual failed for {denom}: {e}")
            results[denom] = -1
            continue

        results[denom] = minted
        market = pool.registry.get_market(denom)
        logger.info(
            f"{denom}: liquidity_index={market.liquidity_index} "
            f"debt_index={market.debt_index} reserve_minted={minted}"
        )

    return results


def accrue_all_markets(
    timestamp: int | None = None,
    database_url: str | None = None,
    rewards_collector: str | None = None,
) -> dict[str, int]:
    """Load the pool from the database and accrue every market to `timestamp` (default: now)."""
    now = timestamp if timestamp is not None else utc_now_seconds()

    pool = build_pool(get_engine(database_url), now, rewards_collector)
    return accrue_pool_markets(pool, now)


def main() -> int:
    parser = argparse.ArgumentParser(description="Accrue interest on all lending markets")
    parser.add_argument(
        "--timestamp",
        type=int,
        default=None,
        help="Unix seconds to accrue to (default: now)",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Database URL (default: from settings)",
    )

    args = parser.parse_args()

    try:
        results = accrue_all_markets(timestamp=args.timestamp, database_url=args.database_url)
        logger.info("Accrual complete:")
        for denom, minted in results.items():
            status = f"{minted} scaled to reserve" if minted >= 0 else "FAILED"
            logger.info(f"  {denom}: {status}")
        return 0 if all(m >= 0 for m in results.values()) else 1
    except Exception as e:
        logger.error(f"Accrual failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
