"""Engine construction and schema creation for the pool state tables."""

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from services.lending.src.lending.config import settings
from services.lending.src.lending.db.models import metadata

logger = logging.getLogger(__name__)


def get_engine(database_url: str | None = None) -> Engine:
    """
    Create an engine for `database_url` (default: settings).

    An in-memory SQLite database lives in a single connection, shared by the
    request threads and the accrual scheduler.
    """
    url = make_url(database_url or settings.database_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=False)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
    logger.info(f"Ensured tables: {', '.join(sorted(metadata.tables))}")
