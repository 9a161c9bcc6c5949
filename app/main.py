# app/main.py
"""
Call routing and agent presence service.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import health, taskrouter, worker_status
from app.services.notification_service import notification_service
from app.services.presence.status_broadcaster import status_broadcaster
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level="DEBUG" if settings.debug else "INFO")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        if db_pool.configured:
            logger.info("Initializing database pool")
            await db_pool.initialize()
            startup_tasks.append("database_pool")
        else:
            logger.warning("SUPABASE_DB_URL not set - presence endpoints will fail")

        if fast_redis.configured:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")
        else:
            logger.warning("Redis not configured - voicemail redirects run without markers")

        logger.info("Services initialized", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "redis" in startup_tasks:
            await fast_redis.close()
        if "database_pool" in startup_tasks:
            await db_pool.close()

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    status_broadcaster.close_all()
    await notification_service.close()

    if "redis" in startup_tasks:
        logger.info("Closing Redis connection")
        await fast_redis.close()

    # Close database pool last (may have active connections)
    if "database_pool" in startup_tasks:
        logger.info("Closing database pool")
        await db_pool.close()

    logger.info("All services closed")


app = FastAPI(
    title="Call Router",
    description="TaskRouter lifecycle handling, voicemail fallback and agent presence",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(taskrouter.router)
app.include_router(worker_status.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
