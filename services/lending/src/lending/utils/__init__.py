"""Utility modules."""

from services.lending.src.lending.utils.timestamps import (
    to_datetime,
    utc_now_seconds,
)

__all__ = ["utc_now_seconds", "to_datetime"]
