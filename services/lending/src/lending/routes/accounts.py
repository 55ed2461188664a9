"""Account operations against the in-process lending pool."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from services.lending.src.lending.domain.errors import (
    HealthError,
    InvalidAmount,
    InvalidTimestamp,
    LendingError,
    MarketNotFound,
)
from services.lending.src.lending.domain.pool import LendingPool
from services.lending.src.lending.routes.deps import get_pool
from services.lending.src.lending.schemas.requests import (
    AmountRequest,
    LiquidateRequest,
    WithdrawRequest,
)
from services.lending.src.lending.schemas.responses import (
    HealthResponse,
    LiquidationResponse,
    MutationResponse,
)
from services.lending.src.lending.utils.timestamps import utc_now_seconds

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


def to_http_error(e: LendingError) -> HTTPException:
    """404 for unknown markets, 422 for bad input, 409 for rejected mutations."""
    if isinstance(e, MarketNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidAmount, InvalidTimestamp, HealthError)):
        return HTTPException(status_code=422, detail=str(e))
    logger.info(f"Rejected: {e}")
    return HTTPException(status_code=409, detail=str(e))


def _now(timestamp: int | None) -> int:
    return timestamp if timestamp is not None else utc_now_seconds()


@router.get("/{account_id}/health", response_model=HealthResponse)
def get_account_health(
    account_id: str,
    timestamp: int | None = Query(default=None, ge=0),
    pool: LendingPool = Depends(get_pool),
) -> HealthResponse:
    try:
        health = pool.health(account_id, _now(timestamp))
    except LendingError as e:
        raise to_http_error(e)
    return HealthResponse.model_validate(health)


@router.post("/{account_id}/deposit", response_model=MutationResponse)
def deposit(
    account_id: str,
    request: AmountRequest,
    pool: LendingPool = Depends(get_pool),
) -> MutationResponse:
    try:
        pool.deposit(account_id, request.denom, request.amount, _now(request.timestamp))
    except LendingError as e:
        raise to_http_error(e)
    return MutationResponse(account_id=account_id, denom=request.denom, amount=request.amount)


@router.post("/{account_id}/withdraw", response_model=MutationResponse)
def withdraw(
    account_id: str,
    request: WithdrawRequest,
    pool: LendingPool = Depends(get_pool),
) -> MutationResponse:
    try:
        amount = pool.withdraw(account_id, request.denom, request.amount, _now(request.timestamp))
    except LendingError as e:
        raise to_http_error(e)
    return MutationResponse(account_id=account_id, denom=request.denom, amount=amount)


@router.post("/{account_id}/borrow", response_model=MutationResponse)
def borrow(
    account_id: str,
    request: AmountRequest,
    pool: LendingPool = Depends(get_pool),
) -> MutationResponse:
    try:
        pool.borrow(account_id, request.denom, request.amount, _now(request.timestamp))
    except LendingError as e:
        raise to_http_error(e)
    return MutationResponse(account_id=account_id, denom=request.denom, amount=request.amount)


@router.post("/{account_id}/repay", response_model=MutationResponse)
def repay(
    account_id: str,
    request: AmountRequest,
    pool: LendingPool = Depends(get_pool),
) -> MutationResponse:
    """Repay debt. The response amount is what was actually repaid."""
    try:
        refund = pool.repay(account_id, request.denom, request.amount, _now(request.timestamp))
    except LendingError as e:
        raise to_http_error(e)
    return MutationResponse(
        account_id=account_id, denom=request.denom, amount=request.amount - refund
    )


@router.post("/{account_id}/liquidate", response_model=LiquidationResponse)
def liquidate(
    account_id: str,
    request: LiquidateRequest,
    pool: LendingPool = Depends(get_pool),
) -> LiquidationResponse:
    """Liquidate `request.liquidatee_id` with `account_id` as the liquidator."""
    try:
        amounts = pool.liquidate(
            account_id,
            request.liquidatee_id,
            request.collateral_denom,
            request.debt_denom,
            request.amount,
            _now(request.timestamp),
        )
    except LendingError as e:
        raise to_http_error(e)
    return LiquidationResponse(
        liquidator_id=account_id,
        liquidatee_id=request.liquidatee_id,
        debt_amount_repaid=amounts.debt_amount_to_repay,
        collateral_amount_liquidated=amounts.collateral_amount_to_liquidate,
        collateral_amount_received_by_liquidator=amounts.collateral_amount_received_by_liquidator,
        protocol_fee_amount=amounts.protocol_fee_amount,
        liquidation_bonus=amounts.liquidation_bonus,
    )
