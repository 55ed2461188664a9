from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Union

from services.lending.src.lending.domain.errors import InvalidParams
from services.lending.src.lending.domain.math import ONE, ZERO, to_decimal


def _decimal_param_le_one(value: Decimal, name: str) -> None:
    if value < 0 or value > ONE:
        raise InvalidParams(name, value, "0 <= value <= 1")


def _decimal_param_non_negative(value: Decimal, name: str) -> None:
    if value < 0:
        raise InvalidParams(name, value, ">= 0")


class AccountKind(str, Enum):
    DEFAULT = "default"
    HIGH_LEVERED_STRATEGY = "high_levered_strategy"


class BorrowTargetKind(str, Enum):
    DEPOSIT = "deposit"
    WALLET = "wallet"
    VAULT = "vault"


@dataclass(frozen=True)
class BorrowTarget:
    """Where borrowed funds end up, which decides whether they count as collateral."""

    kind: BorrowTargetKind
    vault_address: str | None = None

    @classmethod
    def deposit(cls) -> "BorrowTarget":
        return cls(BorrowTargetKind.DEPOSIT)

    @classmethod
    def wallet(cls) -> "BorrowTarget":
        return cls(BorrowTargetKind.WALLET)

    @classmethod
    def vault(cls, vault_address: str) -> "BorrowTarget":
        return cls(BorrowTargetKind.VAULT, vault_address)


class SwapKind(str, Enum):
    DEFAULT = "default"
    MARGIN = "margin"


class LiquidationPriceKind(str, Enum):
    ASSET = "asset"
    DEBT = "debt"


# Interest rate models


@dataclass(frozen=True)
class LinearInterestRateModel:
    """Kinked two-slope model: slope_1 up to the optimal utilization, slope_2 above it."""

    optimal_utilization_rate: Decimal
    base: Decimal
    slope_1: Decimal
    slope_2: Decimal
    kind: Literal["linear"] = "linear"

    def validate(self) -> None:
        _decimal_param_le_one(self.optimal_utilization_rate, "optimal_utilization_rate")
        _decimal_param_non_negative(self.base, "base")
        _decimal_param_non_negative(self.slope_1, "slope_1")
        _decimal_param_non_negative(self.slope_2, "slope_2")


@dataclass(frozen=True)
class DynamicInterestRateModel:
    """Proportional controller nudging the borrow rate towards the optimal utilization."""

    min_borrow_rate: Decimal
    max_borrow_rate: Decimal
    kp_1: Decimal
    kp_2: Decimal
    optimal_utilization_rate: Decimal
    kp_augmentation_threshold: Decimal
    # Rate is recomputed once either threshold is met
    update_threshold_txs: int
    update_threshold_seconds: int
    kind: Literal["dynamic"] = "dynamic"

    def validate(self) -> None:
        _decimal_param_non_negative(self.min_borrow_rate, "min_borrow_rate")
        if self.min_borrow_rate > self.max_borrow_rate:
            raise InvalidParams(
                "max_borrow_rate", self.max_borrow_rate, f">= {self.min_borrow_rate}"
            )
        _decimal_param_le_one(self.optimal_utilization_rate, "optimal_utilization_rate")
        _decimal_param_non_negative(self.kp_1, "kp_1")
        _decimal_param_non_negative(self.kp_2, "kp_2")
        _decimal_param_non_negative(self.kp_augmentation_threshold, "kp_augmentation_threshold")
        if self.update_threshold_txs < 1:
            raise InvalidParams("update_threshold_txs", self.update_threshold_txs, ">= 1")
        if self.update_threshold_seconds < 0:
            raise InvalidParams(
                "update_threshold_seconds", self.update_threshold_seconds, ">= 0"
            )


InterestRateModel = Union[LinearInterestRateModel, DynamicInterestRateModel]

_LINEAR_FIELDS = ("optimal_utilization_rate", "base", "slope_1", "slope_2")
_DYNAMIC_DECIMAL_FIELDS = (
    "min_borrow_rate",
    "max_borrow_rate",
    "kp_1",
    "kp_2",
    "optimal_utilization_rate",
    "kp_augmentation_threshold",
)


def interest_rate_model_to_dict(model: InterestRateModel) -> dict[str, Any]:
    """Serialize a model to a JSON-friendly dict (decimals as strings)."""
    if model.kind == "linear":
        data: dict[str, Any] = {name: str(getattr(model, name)) for name in _LINEAR_FIELDS}
    else:
        data = {name: str(getattr(model, name)) for name in _DYNAMIC_DECIMAL_FIELDS}
        data["update_threshold_txs"] = model.update_threshold_txs
        data["update_threshold_seconds"] = model.update_threshold_seconds
    data["kind"] = model.kind
    return data


def interest_rate_model_from_dict(data: dict[str, Any]) -> InterestRateModel:
    kind = data.get("kind")
    if kind == "linear":
        return LinearInterestRateModel(
            **{name: to_decimal(data[name]) for name in _LINEAR_FIELDS}
        )
    if kind == "dynamic":
        return DynamicInterestRateModel(
            **{name: to_decimal(data[name]) for name in _DYNAMIC_DECIMAL_FIELDS},
            update_threshold_txs=int(data["update_threshold_txs"]),
            update_threshold_seconds=int(data["update_threshold_seconds"]),
        )
    raise InvalidParams("kind", kind, "'linear' or 'dynamic'")


# Risk parameters


@dataclass(frozen=True)
class LiquidationBonusCurve:
    starting_lb: Decimal
    slope: Decimal
    min_lb: Decimal
    max_lb: Decimal

    def validate(self) -> None:
        _decimal_param_le_one(self.starting_lb, "starting_lb")
        _decimal_param_non_negative(self.slope, "slope")
        _decimal_param_le_one(self.min_lb, "min_lb")
        _decimal_param_le_one(self.max_lb, "max_lb")
        if self.min_lb > self.max_lb:
            raise InvalidParams("max_lb", self.max_lb, f">= {self.min_lb}")


@dataclass(frozen=True)
class HlsParams:
    """Risk parameters applied to high levered strategy accounts."""

    max_loan_to_value: Decimal
    liquidation_threshold: Decimal

    def validate(self) -> None:
        _validate_ltv_and_threshold(self.max_loan_to_value, self.liquidation_threshold)


def _validate_ltv_and_threshold(max_ltv: Decimal, liquidation_threshold: Decimal) -> None:
    _decimal_param_le_one(max_ltv, "max_loan_to_value")
    _decimal_param_le_one(liquidation_threshold, "liquidation_threshold")
    if max_ltv >= liquidation_threshold:
        raise InvalidParams(
            "liquidation_threshold", liquidation_threshold, f"> {max_ltv}"
        )


@dataclass(frozen=True)
class AssetParams:
    denom: str
    max_loan_to_value: Decimal
    liquidation_threshold: Decimal
    liquidation_bonus: LiquidationBonusCurve
    protocol_liquidation_fee: Decimal
    deposit_cap: int
    whitelisted: bool = True
    hls: HlsParams | None = None
    deposit_enabled: bool = True
    borrow_enabled: bool = True

    def validate(self) -> None:
        _validate_ltv_and_threshold(self.max_loan_to_value, self.liquidation_threshold)
        self.liquidation_bonus.validate()
        _decimal_param_le_one(self.protocol_liquidation_fee, "protocol_liquidation_fee")
        if self.deposit_cap < 0:
            raise InvalidParams("deposit_cap", self.deposit_cap, ">= 0")
        if self.hls is not None:
            self.hls.validate()


@dataclass(frozen=True)
class VaultConfig:
    address: str
    max_loan_to_value: Decimal
    liquidation_threshold: Decimal
    deposit_cap: Decimal
    whitelisted: bool = True
    hls: HlsParams | None = None

    def validate(self) -> None:
        _validate_ltv_and_threshold(self.max_loan_to_value, self.liquidation_threshold)
        if self.hls is not None:
            self.hls.validate()


# Market state


@dataclass
class AssetMarket:
    """Mutable accrual state of one asset market.

    `last_updated_timestamp` tracks the indices; `rate_last_updated` tracks the
    last borrow rate recompute of a dynamic model. They diverge whenever the
    dynamic model's update thresholds have not been met.
    """

    denom: str
    interest_rate_model: InterestRateModel
    reserve_factor: Decimal
    liquidity_index: Decimal = ONE
    debt_index: Decimal = ONE
    borrow_rate: Decimal = ZERO
    liquidity_rate: Decimal = ZERO
    total_scaled_liquidity: int = 0
    total_scaled_debt: int = 0
    last_updated_timestamp: int = 0
    txs_since_last_update: int = 0
    rate_last_updated: int = 0

    def validate(self) -> None:
        _decimal_param_le_one(self.reserve_factor, "reserve_factor")
        self.interest_rate_model.validate()


# Positions


@dataclass(frozen=True)
class Coin:
    denom: str
    amount: int


@dataclass(frozen=True)
class CoinValue:
    denom: str
    amount: int
    value: Decimal


@dataclass(frozen=True)
class VaultPosition:
    vault_address: str
    locked: int = 0
    unlocking: int = 0


@dataclass(frozen=True)
class VaultPositionValue:
    """Value of a vault position as reported by the vault itself.

    `vault_coin` is the locked vault share value, `base_coin` names the vault's
    underlying denom (unlocking amounts are valued as that denom).
    """

    vault_coin: CoinValue
    base_coin: CoinValue


@dataclass
class Positions:
    """An account's full exposure: deposits, debts and vault positions."""

    account_id: str
    deposits: list[Coin] = field(default_factory=list)
    debts: list[Coin] = field(default_factory=list)
    vaults: list[VaultPosition] = field(default_factory=list)

    def deposit_amount(self, denom: str) -> int:
        return sum(c.amount for c in self.deposits if c.denom == denom)

    def debt_amount(self, denom: str) -> int:
        return sum(c.amount for c in self.debts if c.denom == denom)

    def coin_denoms(self) -> list[str]:
        """Distinct denoms of deposits and debts, in first-seen order."""
        seen: dict[str, None] = {}
        for c in [*self.deposits, *self.debts]:
            seen.setdefault(c.denom, None)
        return list(seen)
