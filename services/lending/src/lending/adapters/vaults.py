"""In-memory vault reporter: values vault shares through their base asset price."""

from dataclasses import dataclass
from decimal import Decimal

from services.lending.src.lending.domain.errors import MissingVaultValues
from services.lending.src.lending.domain.math import precise
from services.lending.src.lending.domain.models import CoinValue, VaultPosition, VaultPositionValue
from services.lending.src.lending.domain.positions import PriceFeed


@dataclass(frozen=True)
class VaultInfo:
    base_denom: str
    # base asset units redeemable per locked vault share
    base_per_share: Decimal


class StaticVaultReporter:
    def __init__(self, price_feed: PriceFeed, vaults: dict[str, VaultInfo] | None = None):
        self.price_feed = price_feed
        self.vaults = dict(vaults or {})

    def set_vault(self, address: str, base_denom: str, base_per_share: Decimal) -> None:
        self.vaults[address] = VaultInfo(base_denom, base_per_share)

    def get_vault_value(self, vault_address: str, position: VaultPosition) -> VaultPositionValue:
        info = self.vaults.get(vault_address)
        if info is None:
            raise MissingVaultValues(vault_address)

        base_price = self.price_feed.get_price(info.base_denom)
        with precise():
            vault_value = position.locked * info.base_per_share * base_price
            unlocking_value = position.unlocking * base_price

        return VaultPositionValue(
            vault_coin=CoinValue(f"vault/{vault_address}", position.locked, vault_value),
            base_coin=CoinValue(info.base_denom, position.unlocking, unlocking_value),
        )
