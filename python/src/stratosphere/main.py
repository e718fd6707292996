"""
FastAPI application entry point.

Provides:
- Search Console access API (/api/v1/gsc/...)
- Cache and quota maintenance jobs
- Monitoring (Prometheus /metrics, Sentry) and health checks
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .api.v1 import router as api_v1_router
from .core.config import settings
from .database import async_session_maker, close_db, get_session_factory, init_db
from .monitoring.sentry_config import init_sentry
from .services.gsc.access_facade import create_gsc_access_facade
from .services.scheduler.gsc_maintenance import GSCMaintenanceScheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

init_sentry(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Startup:
    - Database tables (development only; production uses Alembic)
    - Access facade (one per process, so breaker state is shared)
    - Maintenance scheduler
    """
    logger.info("Starting Stratosphere GSC API...")

    if settings.ENVIRONMENT == "development":
        try:
            await init_db()
        except SQLAlchemyError as e:
            logger.warning(f"Database initialization skipped: {e}")

    facade = create_gsc_access_facade(get_session_factory(), settings)
    app.state.gsc_facade = facade

    maintenance = GSCMaintenanceScheduler(
        facade.cache_store,
        facade.quota_tracker,
        sweep_interval_minutes=settings.CACHE_SWEEP_INTERVAL_MINUTES,
        quota_retention_days=settings.QUOTA_RETENTION_DAYS,
    )
    maintenance.start()

    logger.info(f"API started successfully (GSC mock mode: {settings.GSC_MOCK_MODE})")

    yield

    logger.info("Shutting down Stratosphere GSC API...")
    maintenance.stop()
    await close_db()
    logger.info("API shutdown complete")


app = FastAPI(
    title="Stratosphere GSC API",
    description="Resilient multi-tenant access layer for Google Search Console",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for load balancers and monitoring.

    Returns:
        JSON with status and component health
    """
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        database = "unhealthy"

    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "environment": settings.ENVIRONMENT,
        "version": __version__,
        "components": {
            "database": database,
            "gsc_provider": "mock" if settings.GSC_MOCK_MODE else "live",
        },
    }
