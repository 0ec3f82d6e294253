"""
FastAPI application entry point.

Main API server for Tradebook: trade ledger uploads, holdings and investor
rankings.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tradebook.core.config import settings
from tradebook.core.logging import setup_logging
from tradebook.core.database import close_db
from tradebook.core.metrics import metrics
from tradebook.core.redis import close_redis, get_redis
from tradebook.services.ranking_service import ranking_service

# Setup logging
setup_logging()

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Broker trade ledger with long-term holdings and investor rankings",
    debug=settings.DEBUG,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup() -> None:
    """Run on application startup."""
    # Schema is managed by Alembic
    if settings.METRICS_STREAM_ENABLED:
        metrics.set_redis(get_redis())


@app.on_event("shutdown")
async def shutdown() -> None:
    """Run on application shutdown."""
    await ranking_service.scheduler.drain()
    await close_db()
    close_redis()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


from tradebook.api.stocks import router as stocks_router
from tradebook.api.investors import router as investors_router
from tradebook.api.admin import router as admin_router

app.include_router(stocks_router, prefix="/api/v1/stocks", tags=["stocks"])
app.include_router(investors_router, prefix="/api/v1/investors", tags=["investors"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
