"""
FastAPI application factory for the submission verification API.

Creates the app with:
- Job routes (schedule a run, poll progress)
- Middleware stack
- Health check endpoints
- Lifespan management: database, Redis lease, page fetcher, orchestrator and dispatcher
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Dict, Optional, Union

from fastapi import Depends, FastAPI
from sqlalchemy import text

from shared.config import get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from api.dependencies import get_db, get_dispatcher, get_redis, init_dependencies
from api.middleware import setup_middleware
from api.routes.jobs import router as jobs_router
from processor.dispatcher import JobDispatcher
from processor.notifier import build_notifier
from processor.orchestrator import JobOrchestrator
from processor.store import SqlJobStore
from verifier.config import get_verifier_settings
from verifier.engine import VerificationEngine
from verifier.fetcher import PageFetcher

logger = get_logger(__name__)

_CONNECT_RETRY_ATTEMPTS = 5
_CONNECT_RETRY_BASE_DELAY_S = 1.0


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, _CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == _CONNECT_RETRY_ATTEMPTS:
                raise
            delay = _CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=_CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without DB/Redis."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Startup connects Postgres (and Redis when the job lease is on) and wires the
    processing stack; shutdown cancels in-flight runs before closing connections.
    """
    settings = get_settings()
    verifier_settings = get_verifier_settings()
    setup_logging("api")
    start_metrics_server(settings.metrics_port)

    db = DatabaseManager(settings)
    await _connect_with_retry(db.connect, "Database")

    redis: Optional[RedisManager] = None
    if settings.job_lease_enabled:
        redis = RedisManager(settings)
        await _connect_with_retry(redis.connect, "Redis")

    fetcher = PageFetcher(verifier_settings)
    await fetcher.start()

    store = SqlJobStore(db)
    orchestrator = JobOrchestrator(
        store=store,
        engine=VerificationEngine(fetcher, verifier_settings),
        notifier=build_notifier(store, settings),
        lease=redis,
        settings=settings,
    )
    dispatcher = JobDispatcher(orchestrator, settings)
    init_dependencies(db, store, dispatcher, redis)

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        lease=redis is not None,
        rendering=fetcher.rendering_enabled,
    )

    yield

    await dispatcher.shutdown()
    await fetcher.close()
    if redis is not None:
        await redis.disconnect()
    await db.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without DB/Redis."""
    app = FastAPI(
        title="Submission Verifier API",
        description="Bulk verification of certificate and post submissions",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)
    app.include_router(jobs_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness(
        db: DatabaseManager = Depends(get_db),
        redis: Optional[RedisManager] = Depends(get_redis),
        dispatcher: JobDispatcher = Depends(get_dispatcher),
    ) -> Dict[str, Union[str, bool, int]]:
        """Readiness probe: checks downstream dependencies."""
        db_ok = False
        try:
            async with db.read_session() as session:
                await session.execute(text("SELECT 1"))
            db_ok = True
        except Exception as exc:
            logger.warning("readiness_database_failed", error=str(exc))

        redis_ok = True
        if redis is not None:
            try:
                await redis.client.ping()
            except Exception as exc:
                redis_ok = False
                logger.warning("readiness_redis_failed", error=str(exc))

        return {
            "status": "ok" if (db_ok and redis_ok) else "degraded",
            "database": db_ok,
            "redis": redis_ok,
            "active_jobs": len(dispatcher.active_jobs),
        }

    return app


# For running with uvicorn directly
app = create_app()
