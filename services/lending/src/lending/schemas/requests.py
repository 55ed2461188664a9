from decimal import Decimal

from pydantic import BaseModel, Field

from services.lending.src.lending.adapters.params.config import (
    AssetParamsConfig,
    LiquidationBonusConfig,
    VaultConfigModel,
)
from services.lending.src.lending.domain.health import HealthComputer
from services.lending.src.lending.domain.models import (
    AccountKind,
    BorrowTarget,
    BorrowTargetKind,
    Coin,
    CoinValue,
    LiquidationPriceKind,
    Positions,
    SwapKind,
    VaultPosition,
    VaultPositionValue,
)
from services.lending.src.lending.domain.positions import DenomsData, VaultsData


class CoinModel(BaseModel):
    denom: str
    amount: int = Field(..., ge=0)


class VaultPositionModel(BaseModel):
    vault_address: str
    locked: int = Field(default=0, ge=0)
    unlocking: int = Field(default=0, ge=0)


class VaultValueModel(BaseModel):
    """Value of an account's vault position, as reported by the vault."""

    vault_address: str
    vault_coin_value: Decimal = Field(..., ge=0)
    base_denom: str


class HealthRequest(BaseModel):
    """Everything a stateless health computation needs, supplied up front."""

    account_id: str = "account"
    account_kind: AccountKind = AccountKind.DEFAULT
    deposits: list[CoinModel] = []
    debts: list[CoinModel] = []
    vaults: list[VaultPositionModel] = []
    prices: dict[str, Decimal] = {}
    asset_params: list[AssetParamsConfig] = []
    vault_configs: list[VaultConfigModel] = []
    vault_values: list[VaultValueModel] = []

    def to_computer(self) -> HealthComputer:
        positions = Positions(
            account_id=self.account_id,
            deposits=[Coin(c.denom, c.amount) for c in self.deposits],
            debts=[Coin(c.denom, c.amount) for c in self.debts],
            vaults=[VaultPosition(v.vault_address, v.locked, v.unlocking) for v in self.vaults],
        )
        unlocking = {v.vault_address: v.unlocking for v in self.vaults}
        locked = {v.vault_address: v.locked for v in self.vaults}
        vaults_data = VaultsData(
            vault_values={
                v.vault_address: VaultPositionValue(
                    vault_coin=CoinValue(
                        f"vault/{v.vault_address}",
                        locked.get(v.vault_address, 0),
                        v.vault_coin_value,
                    ),
                    base_coin=CoinValue(
                        v.base_denom, unlocking.get(v.vault_address, 0), Decimal(0)
                    ),
                )
                for v in self.vault_values
            },
            vault_configs={c.address: c.to_domain() for c in self.vault_configs},
        )
        return HealthComputer(
            kind=self.account_kind,
            positions=positions,
            denoms_data=DenomsData(
                prices=dict(self.prices),
                params={p.denom: p.to_domain() for p in self.asset_params},
            ),
            vaults_data=vaults_data,
        )


class MaxBorrowRequest(HealthRequest):
    denom: str
    target: BorrowTargetKind = BorrowTargetKind.WALLET
    vault_address: str | None = None

    def borrow_target(self) -> BorrowTarget:
        if self.target == BorrowTargetKind.VAULT:
            return BorrowTarget.vault(self.vault_address or "")
        return BorrowTarget(self.target)


class MaxWithdrawRequest(HealthRequest):
    denom: str


class MaxSwapRequest(HealthRequest):
    from_denom: str
    to_denom: str
    kind: SwapKind = SwapKind.DEFAULT


class LiquidationPriceRequest(HealthRequest):
    denom: str
    kind: LiquidationPriceKind = LiquidationPriceKind.ASSET


class LiquidationBonusRequest(BaseModel):
    health_factor: Decimal = Field(..., ge=0)
    curve: LiquidationBonusConfig
    protocol_liquidation_fee: Decimal = Field(default=Decimal(0), ge=0, le=1)
    collateralization_ratio: Decimal | None = None


class AmountRequest(BaseModel):
    denom: str
    amount: int = Field(..., gt=0)
    timestamp: int | None = Field(default=None, ge=0, description="Unix seconds (default: now)")


class WithdrawRequest(BaseModel):
    denom: str
    amount: int | None = Field(default=None, gt=0, description="Omit to withdraw everything")
    timestamp: int | None = Field(default=None, ge=0)


class LiquidateRequest(BaseModel):
    liquidatee_id: str
    collateral_denom: str
    debt_denom: str
    amount: int = Field(..., gt=0, description="Debt amount the liquidator offers to repay")
    timestamp: int | None = Field(default=None, ge=0)
