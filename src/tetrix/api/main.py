"""
Tetrix API

FastAPI application exposing distribution previews, task writes, blocks,
conflict analysis and ledger views.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from tetrix.platform.config import Settings, settings
from tetrix.platform.logging import configure_logging, get_logger
from tetrix.api.routers import blocks, conflicts, distribution, ledger, tasks
from tetrix.api.database import get_database_adapter
from tetrix.api.dependencies import init_resources, close_resources

configure_logging()
logger = get_logger(__name__)

health = APIRouter(tags=["Health"])


@health.get("/health/live")
async def liveness() -> dict:
    return {"status": "alive"}


@health.get("/health/ready")
async def readiness() -> dict:
    """Ready once the configured storage answers; the memory backend always does."""
    checks = {"storage": settings.STORAGE_BACKEND}
    ready = True
    if settings.STORAGE_BACKEND == "sql":
        ready = get_database_adapter().health_check()
        checks["database"] = "healthy" if ready else "unhealthy"

    return {
        "status": "ready" if ready else "not_ready",
        "version": settings.VERSION,
        "checks": checks,
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("api_starting", backend=settings.STORAGE_BACKEND, env=settings.APP_ENV)
    try:
        await init_resources()
    except Exception:
        logger.exception("api_startup_failed")
        raise

    yield

    await close_resources()
    logger.info("api_stopped")


def create_app(config: Settings = settings) -> FastAPI:
    app = FastAPI(
        title=config.APP_NAME,
        version=config.VERSION,
        description="Capacity-aware scheduling of translation work",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS.split(",") if config.CORS_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if config.METRICS_ENABLED:
        app.mount("/metrics", make_asgi_app())

    app.include_router(health)
    app.include_router(distribution.router, prefix="/api/v1/distribution", tags=["Distribution"])
    app.include_router(tasks.router, prefix="/api/v1/tasks", tags=["Tasks"])
    app.include_router(conflicts.router, prefix="/api/v1/conflicts", tags=["Conflicts"])
    app.include_router(blocks.router, prefix="/api/v1/blocks", tags=["Blocks"])
    app.include_router(ledger.router, prefix="/api/v1/ledger", tags=["Ledger"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tetrix.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
