"""Shared FastAPI dependencies."""

import threading

from services.lending.src.lending.domain.pool import LendingPool
from services.lending.src.lending.state import build_pool

_pool: LendingPool | None = None
_pool_lock = threading.Lock()


def get_pool() -> LendingPool:
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = build_pool()
        return _pool
