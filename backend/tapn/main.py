"""
TAPN Booking API - Main Application Entry Point

Venue time-slot reservations with:
- Half-open interval conflict detection per venue and day
- Pay-at-venue bookings confirmed by the venue's partner
- Pre-paid bookings reconciled from the payment gateway, refunded on conflict
- Sliding-window rate limiting per client (in-memory or Redis)
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tapn.core.config import get_settings
from tapn.core.logging import setup_logging, get_logger
from tapn.core.metrics import metrics_endpoint
from tapn.api.errors import register_exception_handlers
from tapn.api.router import api_router
from tapn.api.middleware import RequestLoggingMiddleware
from tapn.infrastructure.redis_client import get_redis, close_redis

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        rate_limit_backend=settings.RATE_LIMIT_BACKEND,
        slot_lock_backend=settings.SLOT_LOCK_BACKEND,
    )

    if "redis" in (settings.RATE_LIMIT_BACKEND, settings.SLOT_LOCK_BACKEND):
        redis_client = await get_redis()
        if redis_client:
            logger.info("redis_ready")
        else:
            logger.warning("redis_unavailable", message="Rate limiter and slot locks will fail open")

    yield

    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Venue booking API with conflict detection and payment reconciliation",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-RateLimit-Remaining", "X-RateLimit-Limit", "X-Request-ID"],
)

app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    rate_limit = {"backend": settings.RATE_LIMIT_BACKEND, "status": "ok"}
    if settings.RATE_LIMIT_BACKEND == "redis" and await get_redis() is None:
        rate_limit["status"] = "degraded"
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "rate_limit": rate_limit,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_endpoint()
