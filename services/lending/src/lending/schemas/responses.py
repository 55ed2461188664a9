from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict


class MarketResponse(BaseModel):
    """Accrual state of one asset market."""

    model_config = ConfigDict(from_attributes=True)

    denom: str
    interest_rate_model: dict[str, Any]
    reserve_factor: Decimal
    liquidity_index: Decimal
    debt_index: Decimal
    borrow_rate: Decimal
    liquidity_rate: Decimal
    utilization: Decimal
    total_scaled_liquidity: int
    total_scaled_debt: int
    total_liquidity: int
    total_debt: int
    last_updated_timestamp: int
    rate_last_updated: int
    txs_since_last_update: int


class MarketsResponse(BaseModel):
    markets: list[MarketResponse]


class HealthResponse(BaseModel):
    """Health snapshot. Health factors are null when the account has no debt."""

    model_config = ConfigDict(from_attributes=True)

    total_collateral_value: Decimal
    total_debt_value: Decimal
    max_ltv_adjusted_collateral: Decimal
    liquidation_threshold_adjusted_collateral: Decimal
    max_ltv_health_factor: Decimal | None = None
    liquidation_health_factor: Decimal | None = None
    liquidatable: bool
    above_max_ltv: bool


class AmountResponse(BaseModel):
    denom: str
    amount: int


class PriceResponse(BaseModel):
    denom: str
    price: Decimal


class LiquidationBonusResponse(BaseModel):
    bonus: Decimal
    protocol_fee: Decimal


class MutationResponse(BaseModel):
    account_id: str
    denom: str
    amount: int


class LiquidationResponse(BaseModel):
    liquidator_id: str
    liquidatee_id: str
    debt_amount_repaid: int
    collateral_amount_liquidated: int
    collateral_amount_received_by_liquidator: int
    protocol_fee_amount: int
    liquidation_bonus: Decimal
