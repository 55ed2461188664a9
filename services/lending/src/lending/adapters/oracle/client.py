import logging
from decimal import Decimal
from typing import Any

import httpx

from services.lending.src.lending.domain.errors import MissingPrice
from services.lending.src.lending.domain.math import to_decimal

logger = logging.getLogger(__name__)


class HttpPriceFeed:
    """
    Price feed backed by an HTTP oracle.

    Expects `GET {base_url}/prices?denoms=a,b` to answer
    `{"prices": [{"denom": "a", "price": "1.5"}, ...]}`. Prices are opaque quotes:
    staleness and confidence checks are the oracle's job.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _fetch(self, denoms: list[str]) -> dict[str, Any]:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.get(
                f"{self.base_url}/prices", params={"denoms": ",".join(denoms)}
            )
            response.raise_for_status()
            return response.json()

    def get_prices(self, denoms: list[str]) -> dict[str, Decimal]:
        """Fetch prices for all `denoms` in one request."""
        if not denoms:
            return {}
        data = self._fetch(denoms)

        prices = {}
        for item in data.get("prices", []):
            denom = item.get("denom")
            if denom in denoms and item.get("price") is not None:
                prices[denom] = to_decimal(item["price"])

        missing = [d for d in denoms if d not in prices]
        if missing:
            logger.warning(f"Oracle returned no price for {', '.join(missing)}")
            raise MissingPrice(missing[0])
        return prices

    def get_price(self, denom: str) -> Decimal:
        return self.get_prices([denom])[denom]


class MockPriceFeed(HttpPriceFeed):
    """In-memory price feed for tests and local runs without an oracle."""

    def __init__(self, prices: dict[str, Decimal | str | int] | None = None):
        super().__init__("http://mock")
        self.prices = {d: to_decimal(p) for d, p in (prices or {}).items()}
        self.call_history: list[tuple[str, dict]] = []

    def set_price(self, denom: str, price: Decimal | str | int) -> None:
        self.prices[denom] = to_decimal(price)

    def get_prices(self, denoms: list[str]) -> dict[str, Decimal]:
        self.call_history.append(("get_prices", {"denoms": list(denoms)}))
        result = {}
        for denom in denoms:
            if denom not in self.prices:
                raise MissingPrice(denom)
            result[denom] = self.prices[denom]
        return result
