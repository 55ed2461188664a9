"""In-memory registry of asset markets, asset params and vault configs."""

import logging

from services.lending.src.lending.domain.errors import (
    InvalidParams,
    MarketAlreadyExists,
    MarketNotFound,
)
from services.lending.src.lending.domain.models import AssetMarket, AssetParams, VaultConfig

logger = logging.getLogger(__name__)


class MarketRegistry:
    """
    Holds one AssetMarket and one AssetParams per denom, plus vault configs.

    Markets carry accrual state (indices, rates, scaled totals); params carry the
    risk configuration the health computer reads. Both are validated on write.
    """

    def __init__(self) -> None:
        self._markets: dict[str, AssetMarket] = {}
        self._params: dict[str, AssetParams] = {}
        self._vaults: dict[str, VaultConfig] = {}

    def init_market(
        self, market: AssetMarket, params: AssetParams, timestamp: int = 0
    ) -> AssetMarket:
        """
        Register a new market with its risk params.

        Raises:
            MarketAlreadyExists: if the denom is already registered
            InvalidParams: if the market or params fail validation
        """
        if market.denom in self._markets:
            raise MarketAlreadyExists(market.denom)
        market.validate()
        params.validate()
        if params.denom != market.denom:
            raise InvalidParams("denom", params.denom, f"== {market.denom}")

        market.last_updated_timestamp = timestamp
        market.rate_last_updated = timestamp
        self._markets[market.denom] = market
        self._params[market.denom] = params
        logger.info(f"Initialized market {market.denom} ({market.interest_rate_model.kind} rate model)")
        return market

    def get_market(self, denom: str) -> AssetMarket:
        try:
            return self._markets[denom]
        except KeyError:
            raise MarketNotFound(denom) from None

    def has_market(self, denom: str) -> bool:
        return denom in self._markets

    def markets(self) -> list[AssetMarket]:
        """All markets sorted by denom."""
        return [self._markets[d] for d in sorted(self._markets)]

    def restore_market(self, market: AssetMarket) -> None:
        """Put back a previously saved market state (commit of a mutation or load from storage)."""
        if market.denom not in self._params:
            raise MarketNotFound(market.denom)
        self._markets[market.denom] = market

    def get_asset_params(self, denom: str) -> AssetParams | None:
        return self._params.get(denom)

    def update_asset_params(self, params: AssetParams) -> None:
        if params.denom not in self._markets:
            raise MarketNotFound(params.denom)
        params.validate()
        self._params[params.denom] = params
        logger.info(f"Updated asset params for {params.denom}")

    def set_vault_config(self, config: VaultConfig) -> None:
        config.validate()
        self._vaults[config.address] = config
        logger.info(f"Set vault config for {config.address}")

    def get_vault_config(self, address: str) -> VaultConfig | None:
        return self._vaults.get(address)
