from services.lending.src.lending.schemas.responses import (
    AmountResponse,
    HealthResponse,
    LiquidationBonusResponse,
    MarketResponse,
    MarketsResponse,
    PriceResponse,
)

__all__ = [
    "AmountResponse",
    "HealthResponse",
    "LiquidationBonusResponse",
    "MarketResponse",
    "MarketsResponse",
    "PriceResponse",
]
