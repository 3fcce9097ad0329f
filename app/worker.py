"""
ARQ Worker Configuration

One worker class per queue, so each queue gets its own pool size and
can be scaled on its own.

Running the Workers:
-------------------
    # From project root directory
    arq app.worker.NotificationWorkerSettings
    arq app.worker.EmailWorkerSettings
    arq app.worker.CleanupWorkerSettings

    # With verbose logging
    arq app.worker.NotificationWorkerSettings --verbose

Worker Lifecycle:
----------------
1. Worker starts and connects to Redis
2. startup() binds the queue to the worker's Redis connection and
   fills ctx with the DB session factory and transports
3. Worker polls its ARQ queue for jobs and runs the processors
4. On shutdown (SIGTERM/SIGINT) ARQ waits for running jobs, then
   shutdown() releases the database engine

Scaling Workers:
---------------
Run more processes of the same worker class; they share the Redis queue.
Only one CleanupWorkerSettings process is needed.
"""

import logging
from typing import Any, Dict

from app.core.config import settings
from app.db.database import AsyncSessionLocal, engine
from app.db.redis import get_arq_redis_settings
from app.queue import CLEANUP_QUEUE, EMAIL_QUEUE, NOTIFICATION_QUEUE, ArqJobQueue
from app.tasks import build_worker_context, register_processors, schedule_cleanup
from app.transports import create_smtp_transport, create_webpush_transport

# ============================================================
# Logging Configuration
# ============================================================

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# ============================================================
# Job Queue (worker side)
# ============================================================
# Processors are registered at import time because ARQ reads
# WorkerSettings.functions when the class is defined.

job_queue = register_processors(ArqJobQueue())


# ============================================================
# Startup and Shutdown Hooks
# ============================================================

async def startup(ctx: Dict[str, Any]) -> None:
    """Called when a worker starts."""
    logger.info("ARQ Worker starting up...")

    job_queue.bind(ctx["redis"])
    ctx.update(
        build_worker_context(
            session_factory=AsyncSessionLocal,
            push_transport=create_webpush_transport(),
            email_transport=create_smtp_transport(),
        )
    )

    logger.info("ARQ Worker ready to process jobs")


async def cleanup_startup(ctx: Dict[str, Any]) -> None:
    """Cleanup worker: also queue the next daily sweep."""
    await startup(ctx)
    job = await schedule_cleanup(job_queue)
    logger.info(f"Archive sweep scheduled (job: {job.id})")


async def shutdown(ctx: Dict[str, Any]) -> None:
    """Called when a worker shuts down."""
    logger.info("ARQ Worker shutting down...")
    await job_queue.close()
    await engine.dispose()
    logger.info("ARQ Worker shutdown complete")


# ============================================================
# Worker Configuration Classes
# ============================================================

class NotificationWorkerSettings:
    """push-fanout, batch-ingest and digest-build."""

    functions = job_queue.functions_for(NOTIFICATION_QUEUE)
    queue_name = job_queue.configs[NOTIFICATION_QUEUE].arq_queue_name
    redis_settings = get_arq_redis_settings()

    on_startup = startup
    on_shutdown = shutdown

    job_timeout = 300
    keep_result = 3600
    max_jobs = job_queue.max_jobs_for(NOTIFICATION_QUEUE)
    poll_delay = 0.5
    health_check_interval = 10


class EmailWorkerSettings:
    """send-email."""

    functions = job_queue.functions_for(EMAIL_QUEUE)
    queue_name = job_queue.configs[EMAIL_QUEUE].arq_queue_name
    redis_settings = get_arq_redis_settings()

    on_startup = startup
    on_shutdown = shutdown

    job_timeout = 120
    keep_result = 3600
    max_jobs = job_queue.max_jobs_for(EMAIL_QUEUE)
    poll_delay = 0.5
    health_check_interval = 10


class CleanupWorkerSettings:
    """sweep-archived, daily at CLEANUP_HOUR."""

    functions = job_queue.functions_for(CLEANUP_QUEUE)
    queue_name = job_queue.configs[CLEANUP_QUEUE].arq_queue_name
    redis_settings = get_arq_redis_settings()

    on_startup = cleanup_startup
    on_shutdown = shutdown

    job_timeout = 600
    keep_result = 86400
    max_jobs = job_queue.max_jobs_for(CLEANUP_QUEUE)
    poll_delay = 5
    health_check_interval = 30
