"""
Job Queue Module

The active backend is determined by configuration (QUEUE_BACKEND):
- "arq": Redis + ARQ workers (production)
- "memory": in-process asyncio queue (single process, tests)
"""

from typing import Any, Dict, Optional

from app.queue.base import (
    BackoffPolicy,
    Job,
    JobOptions,
    JobQueue,
    JobStatus,
    QueueError,
    QueueStats,
)
from app.queue.config import (
    CLEANUP_QUEUE,
    EMAIL_QUEUE,
    NOTIFICATION_QUEUE,
    JobType,
    QueueConfig,
    build_queue_configs,
)
from app.queue.memory import InMemoryJobQueue
from app.queue.arq_queue import ArqJobQueue
from app.queue.schedule import DailyAt, Interval, Schedule, next_digest_run
from app.core.config import settings

ALL_QUEUES = (NOTIFICATION_QUEUE, EMAIL_QUEUE, CLEANUP_QUEUE)


def create_job_queue(
    backend: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> JobQueue:
    """
    Build the configured queue backend.

    The ARQ backend still needs a Redis pool bound with bind().

    Raises:
        ValueError: If the backend is not a valid option
    """
    backend = (backend or settings.QUEUE_BACKEND).lower()

    if backend == "memory":
        return InMemoryJobQueue(context=context)
    if backend == "arq":
        return ArqJobQueue()

    raise ValueError(f"Unknown queue backend: {backend}")


__all__ = [
    "ALL_QUEUES",
    "ArqJobQueue",
    "BackoffPolicy",
    "CLEANUP_QUEUE",
    "DailyAt",
    "EMAIL_QUEUE",
    "InMemoryJobQueue",
    "Interval",
    "Job",
    "JobOptions",
    "JobQueue",
    "JobStatus",
    "JobType",
    "NOTIFICATION_QUEUE",
    "QueueConfig",
    "QueueError",
    "QueueStats",
    "Schedule",
    "build_queue_configs",
    "create_job_queue",
    "next_digest_run",
]
