from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine

from services.lending.src.lending.db.models import asset_markets, scaled_balances
from services.lending.src.lending.domain.models import (
    AssetMarket,
    interest_rate_model_from_dict,
    interest_rate_model_to_dict,
)

COLLATERAL = "collateral"
DEBT = "debt"

Ledger = dict[str, dict[str, int]]

_MARKET_UPDATE_COLUMNS = [
    "liquidity_index",
    "debt_index",
    "borrow_rate",
    "liquidity_rate",
    "reserve_factor",
    "total_scaled_liquidity",
    "total_scaled_debt",
    "last_updated_timestamp",
    "rate_last_updated",
    "txs_since_last_update",
    "interest_rate_model",
]


def _is_sqlite(engine: Engine) -> bool:
    return "sqlite" in str(engine.url)


def _market_to_row(market: AssetMarket) -> dict:
    return {
        "denom": market.denom,
        "liquidity_index": market.liquidity_index,
        "debt_index": market.debt_index,
        "borrow_rate": market.borrow_rate,
        "liquidity_rate": market.liquidity_rate,
        "reserve_factor": market.reserve_factor,
        "total_scaled_liquidity": market.total_scaled_liquidity,
        "total_scaled_debt": market.total_scaled_debt,
        "last_updated_timestamp": market.last_updated_timestamp,
        "rate_last_updated": market.rate_last_updated,
        "txs_since_last_update": market.txs_since_last_update,
        "interest_rate_model": interest_rate_model_to_dict(market.interest_rate_model),
    }


def _row_to_market(row) -> AssetMarket:
    return AssetMarket(
        denom=row.denom,
        interest_rate_model=interest_rate_model_from_dict(row.interest_rate_model),
        reserve_factor=row.reserve_factor,
        liquidity_index=row.liquidity_index,
        debt_index=row.debt_index,
        borrow_rate=row.borrow_rate,
        liquidity_rate=row.liquidity_rate,
        total_scaled_liquidity=row.total_scaled_liquidity,
        total_scaled_debt=row.total_scaled_debt,
        last_updated_timestamp=row.last_updated_timestamp,
        txs_since_last_update=row.txs_since_last_update,
        rate_last_updated=row.rate_last_updated,
    )


def _upsert_markets(conn: Connection, markets: Sequence[AssetMarket], is_sqlite: bool) -> int:
    insert = sqlite_insert if is_sqlite else pg_insert
    stmt = insert(asset_markets).values([_market_to_row(m) for m in markets])
    stmt = stmt.on_conflict_do_update(
        index_elements=["denom"],
        set_={col: stmt.excluded[col] for col in _MARKET_UPDATE_COLUMNS},
    )
    result = conn.execute(stmt)
    return result.rowcount


def _replace_balances(
    conn: Connection, side: str, ledger: dict[str, dict[str, int]], is_sqlite: bool
) -> int:
    """Overwrite the balances of every denom in `ledger`; other denoms are kept."""
    if not ledger:
        return 0
    conn.execute(
        delete(scaled_balances)
        .where(scaled_balances.c.side == side)
        .where(scaled_balances.c.denom.in_(list(ledger)))
    )
    rows = [
        {"account_id": account_id, "denom": denom, "side": side, "amount_scaled": amount}
        for denom, balances in ledger.items()
        for account_id, amount in balances.items()
        if amount
    ]
    if not rows:
        return 0
    insert = sqlite_insert if is_sqlite else pg_insert
    result = conn.execute(insert(scaled_balances).values(rows))
    return result.rowcount


class MarketRepository:
    def __init__(self, engine: Engine):
        self.engine = engine
        self._is_sqlite = _is_sqlite(engine)

    def upsert_markets(self, markets: Sequence[AssetMarket]) -> int:
        if not markets:
            return 0
        with self.engine.begin() as conn:
            return _upsert_markets(conn, markets, self._is_sqlite)

    def get_market(self, denom: str) -> AssetMarket | None:
        stmt = select(asset_markets).where(asset_markets.c.denom == denom)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
            return _row_to_market(row) if row else None

    def get_all_markets(self) -> list[AssetMarket]:
        stmt = select(asset_markets).order_by(asset_markets.c.denom)
        with self.engine.connect() as conn:
            return [_row_to_market(row) for row in conn.execute(stmt)]


class ScaledBalanceRepository:
    """Stores the scaled collateral and debt ledgers (denom -> account -> scaled)."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._is_sqlite = _is_sqlite(engine)

    def replace_balances(self, side: str, ledger: dict[str, dict[str, int]]) -> int:
        """Overwrite one side's balances for the denoms in `ledger`. Zero balances are dropped."""
        with self.engine.begin() as conn:
            return _replace_balances(conn, side, ledger, self._is_sqlite)

    def get_ledger(self, side: str) -> dict[str, dict[str, int]]:
        stmt = (
            select(scaled_balances)
            .where(scaled_balances.c.side == side)
            .order_by(scaled_balances.c.denom, scaled_balances.c.account_id)
        )
        ledger: dict[str, dict[str, int]] = {}
        with self.engine.connect() as conn:
            for row in conn.execute(stmt):
                ledger.setdefault(row.denom, {})[row.account_id] = row.amount_scaled
        return ledger

    def get_account_balances(self, account_id: str, side: str) -> dict[str, int]:
        stmt = (
            select(scaled_balances)
            .where(scaled_balances.c.account_id == account_id)
            .where(scaled_balances.c.side == side)
        )
        with self.engine.connect() as conn:
            return {row.denom: row.amount_scaled for row in conn.execute(stmt)}


class PoolStateRepository:
    """
    Writes a lending pool's committed markets and ledger slices in one
    database transaction, and reads the whole state back at startup.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._is_sqlite = _is_sqlite(engine)
        self.markets = MarketRepository(engine)
        self.balances = ScaledBalanceRepository(engine)

    def save(
        self,
        markets: list[AssetMarket],
        collateral: dict[str, dict[str, int]],
        debt: dict[str, dict[str, int]],
    ) -> None:
        with self.engine.begin() as conn:
            if markets:
                _upsert_markets(conn, markets, self._is_sqlite)
            _replace_balances(conn, COLLATERAL, collateral, self._is_sqlite)
            _replace_balances(conn, DEBT, debt, self._is_sqlite)

    def load(self) -> tuple[list[AssetMarket], Ledger, Ledger]:
        return (
            self.markets.get_all_markets(),
            self.balances.get_ledger(COLLATERAL),
            self.balances.get_ledger(DEBT),
        )
