"""Error taxonomy for the lending core.

Every rejection is a local pre-commit check: the operation that raised did not
change any market or ledger state. Nothing is retried here.
"""

from decimal import Decimal


class LendingError(Exception):
    """Base class for all lending core errors."""


class InvalidParams(LendingError):
    """Raised when asset, vault or interest rate model parameters are invalid."""

    def __init__(self, param_name: str, invalid_value: object, predicate: str):
        self.param_name = param_name
        self.invalid_value = invalid_value
        self.predicate = predicate
        super().__init__(
            f"Invalid param {param_name}: {invalid_value} (expected {predicate})"
        )


class InvalidAmount(LendingError):
    """Raised for zero or negative amounts."""


class InvalidTimestamp(LendingError):
    """Raised when asked to accrue a market backwards in time."""

    def __init__(self, timestamp: int, last_updated: int):
        self.timestamp = timestamp
        self.last_updated = last_updated
        super().__init__(
            f"Cannot accrue to timestamp {timestamp}: market was last updated at {last_updated}"
        )


class InvalidUtilization(LendingError):
    """Utilization fell outside [0, 1] beyond rounding tolerance (bookkeeping bug)."""

    def __init__(self, utilization: Decimal):
        self.utilization = utilization
        super().__init__(f"Utilization rate out of bounds: {utilization}")


class MarketNotFound(LendingError):
    def __init__(self, denom: str):
        self.denom = denom
        super().__init__(f"Market not initialized: {denom}")


class MarketAlreadyExists(LendingError):
    def __init__(self, denom: str):
        self.denom = denom
        super().__init__(f"Market already initialized: {denom}")


class OperationNotEnabled(LendingError):
    def __init__(self, operation: str, denom: str):
        self.operation = operation
        self.denom = denom
        super().__init__(f"{operation} not enabled for {denom}")


class InsufficientCapacity(LendingError):
    """Requested amount exceeds what the account or market can accommodate."""


class InsufficientLiquidity(InsufficientCapacity):
    def __init__(self, denom: str, requested: int, available: int):
        self.denom = denom
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} {denom} exceeds available liquidity {available}"
        )


class DepositCapExceeded(InsufficientCapacity):
    def __init__(self, denom: str, deposit_cap: int):
        self.denom = denom
        self.deposit_cap = deposit_cap
        super().__init__(f"Deposit cap exceeded for {denom} (cap: {deposit_cap})")


class BelowLiquidationThreshold(LendingError):
    """The mutation would leave max_ltv_health_factor below 1."""

    def __init__(self, health_factor: Decimal | None):
        self.health_factor = health_factor
        super().__init__(f"Health factor after operation would be {health_factor}")


class NotLiquidatable(LendingError):
    def __init__(self, account_id: str, health_factor: Decimal | None):
        self.account_id = account_id
        self.health_factor = health_factor
        super().__init__(
            f"Account {account_id} is not liquidatable (health factor: {health_factor})"
        )


class CloseFactorExceeded(LendingError):
    def __init__(self, requested: int, max_repayable: int):
        self.requested = requested
        self.max_repayable = max_repayable
        super().__init__(
            f"Requested repay {requested} exceeds close factor limit {max_repayable}"
        )


class LiquidationFailed(LendingError):
    """Liquidation amounts were degenerate or did not improve the account's health."""


class CannotLiquidateSelf(LendingError):
    pass


# Health computer input errors


class HealthError(LendingError):
    """Raised when a health computation is missing input data."""


class MissingPrice(HealthError):
    def __init__(self, denom: str):
        self.denom = denom
        super().__init__(f"Missing price for {denom}")


class MissingParams(HealthError):
    def __init__(self, denom: str):
        self.denom = denom
        super().__init__(f"Missing asset params for {denom}")


class MissingHLSParams(HealthError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Missing HLS params for {key}")


class MissingVaultConfig(HealthError):
    def __init__(self, vault_address: str):
        self.vault_address = vault_address
        super().__init__(f"Missing vault config for {vault_address}")


class MissingVaultValues(HealthError):
    def __init__(self, vault_address: str):
        self.vault_address = vault_address
        super().__init__(f"Missing vault values for {vault_address}")


class DenomNotPresent(HealthError):
    def __init__(self, denom: str):
        self.denom = denom
        super().__init__(f"Denom not present in positions: {denom}")
