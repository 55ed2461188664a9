"""Health computation: collateral value, debt value and the two health factor ratios."""

from dataclasses import dataclass, field
from decimal import Decimal

from services.lending.src.lending.domain.errors import (
    MissingHLSParams,
    MissingParams,
    MissingPrice,
    MissingVaultConfig,
    MissingVaultValues,
)
from services.lending.src.lending.domain.math import ONE, ZERO, precise
from services.lending.src.lending.domain.models import AccountKind, AssetParams, Coin, Positions
from services.lending.src.lending.domain.positions import (
    AggregatedPosition,
    DenomsData,
    VaultsData,
)


@dataclass
class CollateralValue:
    total_collateral_value: Decimal = ZERO
    max_ltv_adjusted_collateral: Decimal = ZERO
    liquidation_threshold_adjusted_collateral: Decimal = ZERO

    def __add__(self, other: "CollateralValue") -> "CollateralValue":
        return CollateralValue(
            self.total_collateral_value + other.total_collateral_value,
            self.max_ltv_adjusted_collateral + other.max_ltv_adjusted_collateral,
            self.liquidation_threshold_adjusted_collateral
            + other.liquidation_threshold_adjusted_collateral,
        )


@dataclass(frozen=True)
class HealthSnapshot:
    """
    Derived account health. Never persisted.

    Health factors are None when the account has no debt (infinitely healthy).
    """

    total_collateral_value: Decimal
    total_debt_value: Decimal
    max_ltv_adjusted_collateral: Decimal
    liquidation_threshold_adjusted_collateral: Decimal
    max_ltv_health_factor: Decimal | None
    liquidation_health_factor: Decimal | None

    @property
    def liquidatable(self) -> bool:
        """True if liquidation HF < 1."""
        hf = self.liquidation_health_factor
        return hf is not None and hf < ONE

    @property
    def above_max_ltv(self) -> bool:
        """True if max LTV HF < 1. An HF of exactly 1 is still allowed."""
        hf = self.max_ltv_health_factor
        return hf is not None and hf < ONE

    @property
    def collateralization_ratio(self) -> Decimal | None:
        if self.total_debt_value == 0:
            return None
        with precise():
            return self.total_collateral_value / self.total_debt_value


@dataclass
class HealthComputer:
    """
    Computes health for one account from data resolved up front.

    All inputs (positions, prices, params, vault data) are supplied at
    construction so the computation is pure and can be re-run against modified
    positions by the capacity estimator.
    """

    kind: AccountKind
    positions: Positions
    denoms_data: DenomsData = field(default_factory=DenomsData)
    vaults_data: VaultsData = field(default_factory=VaultsData)

    @classmethod
    def from_aggregated(
        cls, aggregated: AggregatedPosition, kind: AccountKind = AccountKind.DEFAULT
    ) -> "HealthComputer":
        return cls(
            kind=kind,
            positions=aggregated.positions,
            denoms_data=aggregated.denoms_data,
            vaults_data=aggregated.vaults_data,
        )

    def compute_health(self) -> HealthSnapshot:
        collateral = self.calculate_collateral_value()
        total_debt_value = self.calculate_total_debt_value()

        if total_debt_value == 0:
            max_ltv_hf = None
            liquidation_hf = None
        else:
            with precise():
                max_ltv_hf = collateral.max_ltv_adjusted_collateral / total_debt_value
                liquidation_hf = (
                    collateral.liquidation_threshold_adjusted_collateral / total_debt_value
                )

        return HealthSnapshot(
            total_collateral_value=collateral.total_collateral_value,
            total_debt_value=total_debt_value,
            max_ltv_adjusted_collateral=collateral.max_ltv_adjusted_collateral,
            liquidation_threshold_adjusted_collateral=(
                collateral.liquidation_threshold_adjusted_collateral
            ),
            max_ltv_health_factor=max_ltv_hf,
            liquidation_health_factor=liquidation_hf,
        )

    def price(self, denom: str) -> Decimal:
        price = self.denoms_data.prices.get(denom)
        if price is None:
            raise MissingPrice(denom)
        return price

    def params(self, denom: str) -> AssetParams:
        params = self.denoms_data.params.get(denom)
        if params is None:
            raise MissingParams(denom)
        return params

    def max_ltv(self, denom: str) -> Decimal:
        """Effective max LTV for this account kind; zero for de-listed assets."""
        params = self.params(denom)
        if not params.whitelisted:
            return ZERO
        if self.kind == AccountKind.HIGH_LEVERED_STRATEGY:
            if params.hls is None:
                raise MissingHLSParams(denom)
            return params.hls.max_loan_to_value
        return params.max_loan_to_value

    def liquidation_threshold(self, denom: str) -> Decimal:
        params = self.params(denom)
        if self.kind == AccountKind.HIGH_LEVERED_STRATEGY:
            if params.hls is None:
                raise MissingHLSParams(denom)
            return params.hls.liquidation_threshold
        return params.liquidation_threshold

    def calculate_total_debt_value(self) -> Decimal:
        total = ZERO
        with precise():
            for debt in self.positions.debts:
                total += debt.amount * self.price(debt.denom)
        return total

    def calculate_collateral_value(self) -> CollateralValue:
        return self.calculate_coins_value(self.positions.deposits) + self.calculate_vaults_value()

    def calculate_coins_value(self, coins: list[Coin]) -> CollateralValue:
        result = CollateralValue()
        with precise():
            for c in coins:
                coin_value = c.amount * self.price(c.denom)
                result.total_collateral_value += coin_value
                result.max_ltv_adjusted_collateral += coin_value * self.max_ltv(c.denom)
                result.liquidation_threshold_adjusted_collateral += (
                    coin_value * self.liquidation_threshold(c.denom)
                )
        return result

    def calculate_vaults_value(self) -> CollateralValue:
        result = CollateralValue()
        for v in self.positions.vaults:
            values = self.vaults_data.vault_values.get(v.vault_address)
            if values is None:
                raise MissingVaultValues(v.vault_address)
            config = self.vaults_data.vault_configs.get(v.vault_address)
            if config is None:
                raise MissingVaultConfig(v.vault_address)
            base_params = self.params(values.base_coin.denom)

            if self.kind == AccountKind.HIGH_LEVERED_STRATEGY:
                if config.hls is None:
                    raise MissingHLSParams(v.vault_address)
                vault_max_ltv = config.hls.max_loan_to_value
                vault_threshold = config.hls.liquidation_threshold
            else:
                vault_max_ltv = config.max_loan_to_value
                vault_threshold = config.liquidation_threshold

            # Vault or its base asset de-listed: drop max LTV to zero
            if not (config.whitelisted and base_params.whitelisted):
                vault_max_ltv = ZERO

            vault_value = values.vault_coin.value
            with precise():
                result.total_collateral_value += vault_value
                result.max_ltv_adjusted_collateral += vault_value * vault_max_ltv
                result.liquidation_threshold_adjusted_collateral += vault_value * vault_threshold

            # Unlocking amounts are valued as plain deposits of the base denom
            if v.unlocking:
                result = result + self.calculate_coins_value(
                    [Coin(values.base_coin.denom, v.unlocking)]
                )
        return result


def compute_health(
    positions: Positions,
    denoms_data: DenomsData,
    vaults_data: VaultsData | None = None,
    kind: AccountKind = AccountKind.DEFAULT,
) -> HealthSnapshot:
    """Convenience wrapper around HealthComputer(...).compute_health()."""
    return HealthComputer(
        kind=kind,
        positions=positions,
        denoms_data=denoms_data,
        vaults_data=vaults_data or VaultsData(),
    ).compute_health()
