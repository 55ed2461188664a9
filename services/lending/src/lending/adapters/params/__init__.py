from services.lending.src.lending.adapters.params.config import (
    LendingConfig,
    MarketConfig,
    get_default_config,
)

__all__ = ["LendingConfig", "MarketConfig", "get_default_config"]
