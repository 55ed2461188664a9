from fastapi import APIRouter

from services.lending.src.lending.routes.accounts import router as accounts_router
from services.lending.src.lending.routes.health import router as health_router
from services.lending.src.lending.routes.liquidation import router as liquidation_router
from services.lending.src.lending.routes.markets import router as markets_router

api_router = APIRouter(prefix="/api")
api_router.include_router(markets_router)
api_router.include_router(health_router)
api_router.include_router(liquidation_router)
api_router.include_router(accounts_router)

__all__ = ["api_router"]
