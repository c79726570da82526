"""FastAPI application entry point for BingoSim.

The lifespan builds the process runtime, then runs the local dispatcher and
the maintenance sweep (lease reaper + batch finalizer) as background tasks.
DISTRIBUTED batches are available when CELERY_BROKER_URL is configured.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from bingosim.api.batches import router as batches_router
from bingosim.config.logging import configure_logging
from bingosim.config.settings import get_settings
from bingosim.dispatch.distributed import CeleryRunPublisher, get_celery_app
from bingosim.dispatch.runtime import build_local_runtime
from bingosim.engine.cancellation import CancellationToken

APP_VERSION = "0.1.0"

settings = get_settings()

# --- Structured logging ---
configure_logging(settings)

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    distributed = None
    if settings.CELERY_BROKER_URL:
        distributed = CeleryRunPublisher(
            get_celery_app(settings),
            worker_count=settings.WORKER_COUNT,
            batch_size=settings.RUN_BATCH_SIZE,
        )
    runtime = build_local_runtime(settings, distributed_publisher=distributed)
    app.state.runtime = runtime

    token = CancellationToken()
    tasks = [
        asyncio.create_task(runtime.local_dispatcher().run(token)),
        asyncio.create_task(runtime.maintenance.run(
            token, interval_seconds=settings.MAINTENANCE_INTERVAL_SECONDS,
        )),
    ]
    logger.info(
        "runtime_started",
        modes=[m.value for m in runtime.batches.execution_modes],
        capacity=settings.MAX_CONCURRENT_RUNS,
    )
    try:
        yield
    finally:
        token.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("runtime_stopped")


# --- FastAPI app ---
app = FastAPI(
    title="BingoSim API",
    description="Monte Carlo simulation batches for bingo event boards.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Routers ---
app.include_router(batches_router)


# --- Infrastructure Endpoints ---


@app.get("/health")
async def health_check() -> dict:
    """Liveness probe with component health checks.

    Returns 200 always (degraded status if components are down).
    """
    checks: dict[str, bool] = {"api": True}

    # Database connectivity check
    try:
        from bingosim.db.session import async_session_factory
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        checks["database"] = False

    all_ok = all(checks.values())

    return {
        "status": "ok" if all_ok else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "checks": checks,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return application name, version, and environment."""
    return {
        "name": "BingoSim",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
