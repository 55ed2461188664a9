"""Position aggregation: collect an account's exposure plus the prices and params to value it."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Protocol

from services.lending.src.lending.domain.accrual import (
    get_underlying_debt_amount,
    get_underlying_liquidity_amount,
)
from services.lending.src.lending.domain.errors import MissingParams, MissingVaultConfig
from services.lending.src.lending.domain.models import (
    AssetMarket,
    AssetParams,
    Coin,
    Positions,
    VaultConfig,
    VaultPosition,
    VaultPositionValue,
)
from services.lending.src.lending.domain.registry import MarketRegistry

logger = logging.getLogger(__name__)


class PriceFeed(Protocol):
    def get_price(self, denom: str) -> Decimal: ...

    def get_prices(self, denoms: list[str]) -> dict[str, Decimal]: ...


class VaultReporter(Protocol):
    def get_vault_value(self, vault_address: str, position: VaultPosition) -> VaultPositionValue: ...


class MarketParamStore(Protocol):
    def get_asset_params(self, denom: str) -> AssetParams | None: ...

    def get_vault_config(self, address: str) -> VaultConfig | None: ...


@dataclass
class DenomsData:
    """Prices and asset params for every denom a health computation touches."""

    prices: dict[str, Decimal] = field(default_factory=dict)
    params: dict[str, AssetParams] = field(default_factory=dict)


@dataclass
class VaultsData:
    vault_values: dict[str, VaultPositionValue] = field(default_factory=dict)
    vault_configs: dict[str, VaultConfig] = field(default_factory=dict)


@dataclass
class AggregatedPosition:
    """Everything the health computer needs, resolved to one consistent snapshot."""

    positions: Positions
    denoms_data: DenomsData
    vaults_data: VaultsData


class PositionAggregator:
    """
    Builds an AggregatedPosition for an account.

    Scaled balances are converted to underlying amounts at the market indices as
    of `timestamp` (without mutating markets). Prices for every denom involved,
    including vault base denoms, are fetched in one batched call.
    """

    def __init__(
        self,
        registry: MarketRegistry,
        price_feed: PriceFeed,
        vault_reporter: VaultReporter | None = None,
        params_store: MarketParamStore | None = None,
    ):
        self.registry = registry
        self.price_feed = price_feed
        self.vault_reporter = vault_reporter
        # risk params default to the ones registered alongside the markets
        self.params_store = params_store or registry

    def build_positions(
        self,
        account_id: str,
        collateral_scaled: dict[str, int],
        debt_scaled: dict[str, int],
        timestamp: int,
        vaults: list[VaultPosition] | None = None,
        markets: Mapping[str, AssetMarket] | None = None,
    ) -> Positions:
        """
        Convert scaled balances to underlying amounts.

        `markets` supplies the market state to convert with, per denom; denoms it
        does not cover are read from the registry.
        """
        markets = markets or {}
        deposits = []
        for denom in sorted(collateral_scaled):
            scaled = collateral_scaled[denom]
            if scaled == 0:
                continue
            market = markets.get(denom) or self.registry.get_market(denom)
            amount = get_underlying_liquidity_amount(scaled, market, timestamp)
            if amount > 0:
                deposits.append(Coin(denom, amount))

        debts = []
        for denom in sorted(debt_scaled):
            scaled = debt_scaled[denom]
            if scaled == 0:
                continue
            market = markets.get(denom) or self.registry.get_market(denom)
            debts.append(Coin(denom, get_underlying_debt_amount(scaled, market, timestamp)))

        return Positions(
            account_id=account_id,
            deposits=deposits,
            debts=debts,
            vaults=list(vaults or []),
        )

    def aggregate(self, positions: Positions, extra_denoms: list[str] | None = None) -> AggregatedPosition:
        """
        Resolve vault values, params and prices for `positions`.

        `extra_denoms` adds denoms not yet held (e.g. the target of a borrow or swap
        estimate) so their price and params are part of the same snapshot.
        """
        vaults_data = self._vaults_data(positions)

        denoms = positions.coin_denoms()
        for value in vaults_data.vault_values.values():
            if value.base_coin.denom not in denoms:
                denoms.append(value.base_coin.denom)
        for denom in extra_denoms or []:
            if denom not in denoms:
                denoms.append(denom)

        params = {}
        for denom in denoms:
            asset_params = self.params_store.get_asset_params(denom)
            if asset_params is None:
                raise MissingParams(denom)
            params[denom] = asset_params

        prices = self.price_feed.get_prices(denoms) if denoms else {}
        logger.debug(f"Aggregated {positions.account_id}: {len(denoms)} denoms priced")

        return AggregatedPosition(
            positions=positions,
            denoms_data=DenomsData(prices=prices, params=params),
            vaults_data=vaults_data,
        )

    def _vaults_data(self, positions: Positions) -> VaultsData:
        data = VaultsData()
        if not positions.vaults:
            return data
        for v in positions.vaults:
            config = self.params_store.get_vault_config(v.vault_address)
            if config is None:
                raise MissingVaultConfig(v.vault_address)
            data.vault_configs[v.vault_address] = config
            if self.vault_reporter is not None:
                data.vault_values[v.vault_address] = self.vault_reporter.get_vault_value(
                    v.vault_address, v
                )
        return data
