from fastapi import APIRouter, HTTPException

from services.lending.src.lending.domain.errors import InvalidParams
from services.lending.src.lending.domain.liquidation import liquidation_bonus
from services.lending.src.lending.schemas.requests import LiquidationBonusRequest
from services.lending.src.lending.schemas.responses import LiquidationBonusResponse

router = APIRouter(prefix="/liquidation", tags=["liquidation"])


@router.post("/bonus", response_model=LiquidationBonusResponse)
def get_liquidation_bonus(request: LiquidationBonusRequest) -> LiquidationBonusResponse:
    """Liquidation bonus and protocol fee, as fractions of the repaid debt value."""
    curve = request.curve.to_domain()
    try:
        curve.validate()
    except InvalidParams as e:
        raise HTTPException(status_code=422, detail=str(e))

    bonus, protocol_fee = liquidation_bonus(
        request.health_factor,
        curve,
        request.protocol_liquidation_fee,
        request.collateralization_ratio,
    )
    return LiquidationBonusResponse(bonus=bonus, protocol_fee=protocol_fee)
