import os
from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> str | None:
    """Find .env file, preferring .env.local for local development."""
    for env_file in [".env.local", ".env"]:
        for base in [".", os.environ.get("REPO_ROOT", "")]:
            if base:
                path = Path(base) / env_file
                if path.exists():
                    return str(path)
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Falls back to SQLite for local development if DATABASE_URL is not set
    database_url: str = "sqlite:///./local.db"

    # Max fraction of one debt position repayable in a single liquidation
    close_factor: Decimal = Decimal("0.5")
    # Health factor a liquidation may bring an account up to, not beyond
    target_health_factor: Decimal = Decimal("1.2")
    # Account credited with protocol reserves and liquidation fees
    rewards_collector: str = "rewards-collector"

    # Price oracle; the in-memory feed is used when unset
    oracle_url: str | None = None
    oracle_timeout: float = 10.0


settings = Settings()
