from fastapi import APIRouter, Depends, HTTPException, Query

from services.lending.src.lending.domain import accrual
from services.lending.src.lending.domain.errors import (
    InvalidTimestamp,
    InvalidUtilization,
    MarketNotFound,
)
from services.lending.src.lending.domain.interest_rate import market_utilization
from services.lending.src.lending.domain.models import AssetMarket, interest_rate_model_to_dict
from services.lending.src.lending.domain.pool import LendingPool
from services.lending.src.lending.routes.deps import get_pool
from services.lending.src.lending.schemas.responses import MarketResponse, MarketsResponse
from services.lending.src.lending.utils.timestamps import utc_now_seconds

router = APIRouter(prefix="/markets", tags=["markets"])


def market_to_response(market: AssetMarket) -> MarketResponse:
    """Convert domain market to response model."""
    return MarketResponse(
        denom=market.denom,
        interest_rate_model=interest_rate_model_to_dict(market.interest_rate_model),
        reserve_factor=market.reserve_factor,
        liquidity_index=market.liquidity_index,
        debt_index=market.debt_index,
        borrow_rate=market.borrow_rate,
        liquidity_rate=market.liquidity_rate,
        utilization=market_utilization(market),
        total_scaled_liquidity=market.total_scaled_liquidity,
        total_scaled_debt=market.total_scaled_debt,
        total_liquidity=accrual.total_liquidity(market),
        total_debt=accrual.total_debt(market),
        last_updated_timestamp=market.last_updated_timestamp,
        rate_last_updated=market.rate_last_updated,
        txs_since_last_update=market.txs_since_last_update,
    )


@router.get("", response_model=MarketsResponse)
def list_markets(pool: LendingPool = Depends(get_pool)) -> MarketsResponse:
    """List every market with its current (last accrued) state."""
    return MarketsResponse(markets=[market_to_response(m) for m in pool.registry.markets()])


@router.get("/{denom}", response_model=MarketResponse)
def get_market(denom: str, pool: LendingPool = Depends(get_pool)) -> MarketResponse:
    try:
        market = pool.registry.get_market(denom)
    except MarketNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return market_to_response(market)


@router.post("/{denom}/accrue", response_model=MarketResponse)
def accrue_market(
    denom: str,
    timestamp: int | None = Query(default=None, ge=0, description="Unix seconds (default: now)"),
    pool: LendingPool = Depends(get_pool),
) -> MarketResponse:
    """
    Advance a market's indices to `timestamp`. The pool persists the result.

    Idempotent per timestamp.
    """
    now = timestamp if timestamp is not None else utc_now_seconds()
    try:
        market = pool.accrue(denom, now)
    except MarketNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidTimestamp, InvalidUtilization) as e:
        raise HTTPException(status_code=422, detail=str(e))

    return market_to_response(market)
