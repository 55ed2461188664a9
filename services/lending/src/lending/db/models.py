from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
)


class DecimalText(TypeDecorator):
    """Decimal stored as its exact string form (SQLite Numeric goes through float)."""

    impl = String(100)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else Decimal(value)


class IntegerText(TypeDecorator):
    """Arbitrary size integer stored as decimal digits."""

    impl = String(100)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(int(value))

    def process_result_value(self, value, dialect):
        return None if value is None else int(value)


metadata = MetaData()

asset_markets = Table(
    "asset_markets",
    metadata,
    Column("denom", String(128), primary_key=True),
    # Indices and rates (unitless)
    Column("liquidity_index", DecimalText, nullable=False),
    Column("debt_index", DecimalText, nullable=False),
    Column("borrow_rate", DecimalText, nullable=False),
    Column("liquidity_rate", DecimalText, nullable=False),
    Column("reserve_factor", DecimalText, nullable=False),
    # Scaled totals (base units * SCALING_FACTOR)
    Column("total_scaled_liquidity", IntegerText, nullable=False),
    Column("total_scaled_debt", IntegerText, nullable=False),
    # Unix seconds UTC
    Column("last_updated_timestamp", BigInteger, nullable=False),
    Column("rate_last_updated", BigInteger, nullable=False),
    Column("txs_since_last_update", Integer, nullable=False, default=0),
    Column("interest_rate_model", JSON, nullable=False),
)

scaled_balances = Table(
    "scaled_balances",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(128), nullable=False),
    Column("denom", String(128), nullable=False),
    # "collateral" or "debt"
    Column("side", String(16), nullable=False),
    Column("amount_scaled", IntegerText, nullable=False),
    UniqueConstraint("account_id", "denom", "side", name="uq_scaled_balance_key"),
    Index("ix_scaled_balances_denom", "denom", "side"),
)
