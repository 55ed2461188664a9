from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from services.lending.src.lending.domain.models import (
    AssetMarket,
    AssetParams,
    DynamicInterestRateModel,
    HlsParams,
    InterestRateModel,
    LinearInterestRateModel,
    LiquidationBonusCurve,
    VaultConfig,
)
from services.lending.src.lending.domain.registry import MarketRegistry


class LinearRateModelConfig(BaseModel):
    kind: Literal["linear"] = "linear"
    optimal_utilization_rate: Decimal
    base: Decimal = Decimal(0)
    slope_1: Decimal
    slope_2: Decimal

    def to_domain(self) -> LinearInterestRateModel:
        return LinearInterestRateModel(
            optimal_utilization_rate=self.optimal_utilization_rate,
            base=self.base,
            slope_1=self.slope_1,
            slope_2=self.slope_2,
        )


class DynamicRateModelConfig(BaseModel):
    kind: Literal["dynamic"] = "dynamic"
    min_borrow_rate: Decimal
    max_borrow_rate: Decimal
    kp_1: Decimal
    kp_2: Decimal
    optimal_utilization_rate: Decimal
    kp_augmentation_threshold: Decimal
    update_threshold_txs: int = Field(..., ge=1)
    update_threshold_seconds: int = Field(..., ge=0)

    def to_domain(self) -> DynamicInterestRateModel:
        return DynamicInterestRateModel(
            min_borrow_rate=self.min_borrow_rate,
            max_borrow_rate=self.max_borrow_rate,
            kp_1=self.kp_1,
            kp_2=self.kp_2,
            optimal_utilization_rate=self.optimal_utilization_rate,
            kp_augmentation_threshold=self.kp_augmentation_threshold,
            update_threshold_txs=self.update_threshold_txs,
            update_threshold_seconds=self.update_threshold_seconds,
        )


RateModelConfig = Annotated[
    Union[LinearRateModelConfig, DynamicRateModelConfig], Field(discriminator="kind")
]


class LiquidationBonusConfig(BaseModel):
    starting_lb: Decimal
    slope: Decimal
    min_lb: Decimal
    max_lb: Decimal

    def to_domain(self) -> LiquidationBonusCurve:
        return LiquidationBonusCurve(
            starting_lb=self.starting_lb,
            slope=self.slope,
            min_lb=self.min_lb,
            max_lb=self.max_lb,
        )


class HlsConfig(BaseModel):
    max_loan_to_value: Decimal
    liquidation_threshold: Decimal

    def to_domain(self) -> HlsParams:
        return HlsParams(
            max_loan_to_value=self.max_loan_to_value,
            liquidation_threshold=self.liquidation_threshold,
        )


class AssetParamsConfig(BaseModel):
    denom: str
    max_loan_to_value: Decimal
    liquidation_threshold: Decimal
    liquidation_bonus: LiquidationBonusConfig
    protocol_liquidation_fee: Decimal = Decimal(0)
    deposit_cap: int = Field(..., ge=0, description="Max total deposits in base units")
    whitelisted: bool = True
    hls: HlsConfig | None = None
    deposit_enabled: bool = True
    borrow_enabled: bool = True

    def to_domain(self) -> AssetParams:
        return AssetParams(
            denom=self.denom,
            max_loan_to_value=self.max_loan_to_value,
            liquidation_threshold=self.liquidation_threshold,
            liquidation_bonus=self.liquidation_bonus.to_domain(),
            protocol_liquidation_fee=self.protocol_liquidation_fee,
            deposit_cap=self.deposit_cap,
            whitelisted=self.whitelisted,
            hls=self.hls.to_domain() if self.hls else None,
            deposit_enabled=self.deposit_enabled,
            borrow_enabled=self.borrow_enabled,
        )


class MarketConfig(BaseModel):
    params: AssetParamsConfig
    reserve_factor: Decimal
    interest_rate_model: RateModelConfig

    @property
    def denom(self) -> str:
        return self.params.denom

    def rate_model(self) -> InterestRateModel:
        return self.interest_rate_model.to_domain()

    def to_market(self) -> AssetMarket:
        return AssetMarket(
            denom=self.denom,
            interest_rate_model=self.rate_model(),
            reserve_factor=self.reserve_factor,
        )


class VaultConfigModel(BaseModel):
    address: str
    max_loan_to_value: Decimal
    liquidation_threshold: Decimal
    deposit_cap: Decimal = Field(..., description="Max total vault value")
    whitelisted: bool = True
    hls: HlsConfig | None = None

    def to_domain(self) -> VaultConfig:
        return VaultConfig(
            address=self.address,
            max_loan_to_value=self.max_loan_to_value,
            liquidation_threshold=self.liquidation_threshold,
            deposit_cap=self.deposit_cap,
            whitelisted=self.whitelisted,
            hls=self.hls.to_domain() if self.hls else None,
        )


class LendingConfig(BaseModel):
    markets: list[MarketConfig]
    vaults: list[VaultConfigModel] = []

    def get_market(self, denom: str) -> MarketConfig | None:
        for market in self.markets:
            if market.denom == denom:
                return market
        return None

    def build_registry(self, timestamp: int = 0) -> MarketRegistry:
        """Create a registry with every configured market and vault, validated."""
        registry = MarketRegistry()
        for market in self.markets:
            registry.init_market(market.to_market(), market.params.to_domain(), timestamp)
        for vault in self.vaults:
            registry.set_vault_config(vault.to_domain())
        return registry


def get_default_config() -> LendingConfig:
    """Default markets: a volatile asset (dynamic rates) and two stablecoins (linear rates)."""
    return LendingConfig(
        markets=[
            MarketConfig(
                params=AssetParamsConfig(
                    denom="uosmo",
                    max_loan_to_value=Decimal("0.59"),
                    liquidation_threshold=Decimal("0.61"),
                    liquidation_bonus=LiquidationBonusConfig(
                        starting_lb=Decimal("0.01"),
                        slope=Decimal(2),
                        min_lb=Decimal("0.01"),
                        max_lb=Decimal("0.05"),
                    ),
                    protocol_liquidation_fee=Decimal("0.5"),
                    deposit_cap=10_000_000_000_000,
                    hls=HlsConfig(
                        max_loan_to_value=Decimal("0.8"),
                        liquidation_threshold=Decimal("0.85"),
                    ),
                ),
                reserve_factor=Decimal("0.1"),
                interest_rate_model=DynamicRateModelConfig(
                    min_borrow_rate=Decimal(0),
                    max_borrow_rate=Decimal(2),
                    kp_1=Decimal("0.02"),
                    kp_2=Decimal("0.05"),
                    optimal_utilization_rate=Decimal("0.7"),
                    kp_augmentation_threshold=Decimal("0.15"),
                    update_threshold_txs=5,
                    update_threshold_seconds=600,
                ),
            ),
            MarketConfig(
                params=AssetParamsConfig(
                    denom="uusdc",
                    max_loan_to_value=Decimal("0.8"),
                    liquidation_threshold=Decimal("0.85"),
                    liquidation_bonus=LiquidationBonusConfig(
                        starting_lb=Decimal("0.01"),
                        slope=Decimal(2),
                        min_lb=Decimal("0.01"),
                        max_lb=Decimal("0.03"),
                    ),
                    protocol_liquidation_fee=Decimal("0.5"),
                    deposit_cap=50_000_000_000_000,
                ),
                reserve_factor=Decimal("0.1"),
                interest_rate_model=LinearRateModelConfig(
                    optimal_utilization_rate=Decimal("0.8"),
                    base=Decimal(0),
                    slope_1=Decimal("0.07"),
                    slope_2=Decimal("0.45"),
                ),
            ),
            MarketConfig(
                params=AssetParamsConfig(
                    denom="uatom",
                    max_loan_to_value=Decimal("0.7"),
                    liquidation_threshold=Decimal("0.75"),
                    liquidation_bonus=LiquidationBonusConfig(
                        starting_lb=Decimal("0.02"),
                        slope=Decimal(2),
                        min_lb=Decimal("0.02"),
                        max_lb=Decimal("0.08"),
                    ),
                    protocol_liquidation_fee=Decimal("0.5"),
                    deposit_cap=5_000_000_000_000,
                ),
                reserve_factor=Decimal("0.2"),
                interest_rate_model=LinearRateModelConfig(
                    optimal_utilization_rate=Decimal("0.6"),
                    base=Decimal(0),
                    slope_1=Decimal("0.15"),
                    slope_2=Decimal(3),
                ),
            ),
        ],
    )
