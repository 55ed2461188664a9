"""Stateless health and capacity endpoints: the request carries all inputs."""

from fastapi import APIRouter, HTTPException

from services.lending.src.lending.domain.capacity import (
    liquidation_price,
    max_borrow_amount,
    max_swap_amount,
    max_withdraw_amount,
)
from services.lending.src.lending.domain.errors import LendingError
from services.lending.src.lending.schemas.requests import (
    HealthRequest,
    LiquidationPriceRequest,
    MaxBorrowRequest,
    MaxSwapRequest,
    MaxWithdrawRequest,
)
from services.lending.src.lending.schemas.responses import (
    AmountResponse,
    HealthResponse,
    PriceResponse,
)

router = APIRouter(prefix="/health", tags=["health"])


@router.post("/compute", response_model=HealthResponse)
def compute(request: HealthRequest) -> HealthResponse:
    """
    Compute collateral value, debt value and both health factors.

    Health factors are null for accounts without debt.
    """
    try:
        health = request.to_computer().compute_health()
    except LendingError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return HealthResponse.model_validate(health)


@router.post("/max-borrow", response_model=AmountResponse)
def max_borrow(request: MaxBorrowRequest) -> AmountResponse:
    try:
        amount = max_borrow_amount(request.to_computer(), request.denom, request.borrow_target())
    except LendingError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return AmountResponse(denom=request.denom, amount=amount)


@router.post("/max-withdraw", response_model=AmountResponse)
def max_withdraw(request: MaxWithdrawRequest) -> AmountResponse:
    try:
        amount = max_withdraw_amount(request.to_computer(), request.denom)
    except LendingError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return AmountResponse(denom=request.denom, amount=amount)


@router.post("/max-swap", response_model=AmountResponse)
def max_swap(request: MaxSwapRequest) -> AmountResponse:
    try:
        amount = max_swap_amount(
            request.to_computer(), request.from_denom, request.to_denom, request.kind
        )
    except LendingError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return AmountResponse(denom=request.from_denom, amount=amount)


@router.post("/liquidation-price", response_model=PriceResponse)
def get_liquidation_price(request: LiquidationPriceRequest) -> PriceResponse:
    """Price of `denom` at which the liquidation health factor reaches 1."""
    try:
        price = liquidation_price(request.to_computer(), request.denom, request.kind)
    except LendingError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return PriceResponse(denom=request.denom, price=price)
