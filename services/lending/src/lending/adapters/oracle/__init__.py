from services.lending.src.lending.adapters.oracle.client import HttpPriceFeed, MockPriceFeed

__all__ = ["HttpPriceFeed", "MockPriceFeed"]
