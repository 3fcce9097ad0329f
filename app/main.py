"""
FastAPI Application Entry Point

This module initializes the FastAPI application with:
- CORS configuration
- Job queue setup (ARQ/Redis or in-process)
- Route registration
- Health check endpoints
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from app.core.config import settings
from app.db.database import AsyncSessionLocal, check_db_connection
from app.db.redis import (
    check_redis_connection,
    get_arq_pool,
    get_redis_pool,
    close_redis_pool,
    close_arq_pool,
)
from app.api.v1.router import api_router
from app.queue import ArqJobQueue, InMemoryJobQueue, JobQueue, create_job_queue
from app.tasks import build_worker_context, register_processors, schedule_cleanup
from app.transports import create_smtp_transport, create_webpush_transport

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def setup_job_queue() -> JobQueue:
    """
    Create the configured queue.

    arq: bind to Redis; workers run separately (app/worker.py).
    memory: run the processors inside this process, including the
    daily archive sweep. Also used when Redis can't be reached.
    """
    queue = create_job_queue()

    if isinstance(queue, ArqJobQueue):
        try:
            queue.bind(await get_arq_pool())
            logger.info("Job queue: ARQ (Redis)")
            return queue
        except (OSError, ConnectionError, RedisError) as e:
            logger.warning(f"Redis unavailable ({e}), falling back to the in-process job queue")
            queue = create_job_queue("memory")

    if isinstance(queue, InMemoryJobQueue):
        queue.context.update(
            build_worker_context(
                session_factory=AsyncSessionLocal,
                push_transport=create_webpush_transport(),
                email_transport=create_smtp_transport(),
            )
        )
        register_processors(queue)
        await schedule_cleanup(queue)
        await queue.start()
        logger.info("Job queue: in-process")

    return queue


# ============================================================
# Application Lifespan Events
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Startup:
    - Check database connection
    - Initialize Redis connection pool
    - Create the job queue

    Shutdown:
    - Stop the job queue (waits for in-process jobs)
    - Close Redis connections
    """
    # ========== STARTUP ==========
    logger.info(f"Starting {settings.PROJECT_NAME}...")
    logger.info(f"Debug mode: {settings.DEBUG}")

    try:
        db_healthy = await check_db_connection()
        if db_healthy:
            logger.info("Database connection established successfully")
        else:
            logger.warning("Database connection check failed")
    except Exception as e:
        logger.error(f"Database connection error on startup: {e}")

    if settings.QUEUE_BACKEND == "arq":
        try:
            get_redis_pool()  # Creates the pool (singleton)
            redis_healthy = await check_redis_connection()
            if redis_healthy:
                logger.info("Redis connection established successfully")
            else:
                logger.warning("Redis connection check failed - notifications will not be delivered")
        except Exception as e:
            logger.error(f"Redis connection error on startup: {e}")

    app.state.job_queue = None
    try:
        app.state.job_queue = await setup_job_queue()
    except Exception as e:
        # The API still serves reads; create endpoints answer 503
        logger.error(f"Job queue setup failed: {e}")

    yield  # Application runs here

    # ========== SHUTDOWN ==========
    logger.info(f"Shutting down {settings.PROJECT_NAME}...")

    if app.state.job_queue is not None:
        await app.state.job_queue.close()

    await close_redis_pool()
    await close_arq_pool()

    logger.info("Shutdown complete")


# ============================================================
# Create FastAPI Application
# ============================================================
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    Notification Delivery API

    Features:
    - In-app notifications with read/archive/dismiss
    - Web push delivery with retries
    - Quiet hours and per-type preferences
    - Batched notifications and email digests
    """,
    version="1.0.0",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# ----------------------------------------------------
# Middleware Configuration
# ----------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)


# ----------------------------------------------------
# Health Check Endpoints
# ----------------------------------------------------
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.PROJECT_NAME,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs" if settings.DEBUG else "disabled"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Checks:
    - Database connectivity
    - Redis connectivity (ARQ backend only)
    """
    try:
        db_healthy = await check_db_connection()

        result = {
            "status": "healthy" if db_healthy else "degraded",
            "database": "connected" if db_healthy else "disconnected",
            "queue_backend": settings.QUEUE_BACKEND,
        }

        if settings.QUEUE_BACKEND == "arq":
            redis_healthy = await check_redis_connection()
            result["redis"] = "connected" if redis_healthy else "disconnected"
            if not redis_healthy:
                result["status"] = "degraded"

        return result
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": str(e)
            }
        )

# ============================================================
# Include API Router
# ============================================================
app.include_router(
    api_router,
    prefix=settings.API_V1_PREFIX
)


# ----------------------------------------------------
# Exception Handlers
# ----------------------------------------------------
@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Handle 500 errors."""
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
