"""MOTA portal FastAPI application factory."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from portal.config import Settings, get_settings
from portal.dependencies import get_redis, get_session_factory, init_db, shutdown_db, shutdown_redis
from portal.middleware.error_handler import ErrorHandlerMiddleware
from portal.middleware.logging import LoggingMiddleware, setup_logging
from portal.middleware.rate_limit import RateLimitMiddleware
from portal.routers import auth, chat
from portal.services.chat_service import drain_background_tasks
from portal.services.rag_service import shutdown_rag_client

logger = logging.getLogger(__name__)

# Seconds to let in-flight chat history writes finish on shutdown
_SHUTDOWN_GRACE_SECONDS = 10


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    setup_logging(debug=settings.debug)
    logger.info("Starting %s (env=%s)", settings.app_name, settings.app_env)

    init_db(settings)

    yield

    await drain_background_tasks(timeout=_SHUTDOWN_GRACE_SECONDS)
    await shutdown_rag_client()
    await shutdown_redis()
    await shutdown_db()
    logger.info("%s shutting down", settings.app_name)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="MOTA Portal API",
        description="Google sign-in, cookie sessions and retrieval-augmented chat for the MOTA site",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )
    app.state.settings = settings
    # Every dependency built from Settings sees this instance, not the env-cached one
    app.dependency_overrides[get_settings] = lambda: settings

    # Middleware (order matters: the last added is outermost)
    if settings.rate_limit_enabled:
        app.add_middleware(RateLimitMiddleware, settings=settings)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
        max_age=600,
    )

    # Routers
    prefix = settings.api_prefix
    app.include_router(auth.router, prefix=prefix)
    app.include_router(chat.router, prefix=prefix)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "portal-api"}

    @app.get("/health/ready")
    async def health_ready():
        """Deep health check: verifies DB and Redis connectivity."""
        checks: dict = {}

        try:
            factory = get_session_factory(settings)
            async with factory() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {type(e).__name__}"

        try:
            await get_redis(settings).ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {type(e).__name__}"

        all_ok = all(v == "ok" for v in checks.values())
        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={"status": "ready" if all_ok else "degraded", "checks": checks},
        )

    # Prometheus instrumentation
    instrumentator = Instrumentator(
        excluded_handlers=["/health", "/health/ready", "/docs", "/redoc", "/openapi.json", "/metrics"],
    )
    instrumentator.instrument(app)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint with multiprocess support."""
        from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest, multiprocess

        multiproc_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR")
        if multiproc_dir:
            registry = CollectorRegistry()
            multiprocess.MultiProcessCollector(registry)
            data = generate_latest(registry)
        else:
            data = generate_latest()

        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


# Default app instance for uvicorn
app = create_app()
