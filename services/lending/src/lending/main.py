import logging
import os
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.lending.src.lending.routes import api_router

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: BackgroundScheduler | None = None


def run_accrual() -> None:
    """Accrue every market of the service pool to the current time."""
    from services.lending.src.lending.jobs.accrue_markets import accrue_pool_markets
    from services.lending.src.lending.routes.deps import get_pool
    from services.lending.src.lending.utils.timestamps import utc_now_seconds

    logger.info("Starting market accrual...")
    try:
        results = accrue_pool_markets(get_pool(), utc_now_seconds())
        failed = [denom for denom, minted in results.items() if minted < 0]
        logger.info(f"Accrued {len(results) - len(failed)} markets")
        if failed:
            logger.error(f"Accrual failed for: {', '.join(failed)}")
    except Exception as e:
        logger.error(f"Market accrual failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start the accrual scheduler on startup."""
    global scheduler

    if os.getenv("RUN_MIGRATIONS", "true").lower() == "true":
        from services.lending.src.lending.db.engine import get_engine, init_db

        init_db(get_engine())

    if os.getenv("ENABLE_ACCRUAL_JOB", "true").lower() == "true":
        interval = int(os.getenv("ACCRUAL_INTERVAL_MINUTES", "60"))
        logger.info(f"Starting accrual scheduler (every {interval} minutes)")

        scheduler = BackgroundScheduler()
        scheduler.add_job(
            run_accrual,
            "interval",
            minutes=interval,
            id="accrual",
            name="Market index accrual",
        )
        scheduler.start()

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Scheduler shutdown complete")


app = FastAPI(title="Lending Risk Engine API", lifespan=lifespan)

cors_origins = ["http://localhost:3000"]
if os.getenv("CORS_ORIGIN"):
    cors_origins.append(os.getenv("CORS_ORIGIN"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "lending-risk-engine-api", "docs": "/docs"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
