"""
Queue Table

Names, job types, concurrency and retry policy for every queue.

    Queue                   Job types                                   Concurrency   Retries
    notification-dispatch   push-fanout, batch-ingest, digest-build     5 / 3 / 1     3 attempts, backoff from 2s
    email-dispatch          send-email                                  10            5 attempts, backoff from 5s
    cleanup                 sweep-archived                              1             1 attempt
"""

from dataclasses import dataclass
from typing import Dict, Optional

from app.core.config import settings
from app.queue.base import BackoffPolicy, QueueError


# ============================================================
# NAMES
# ============================================================

NOTIFICATION_QUEUE = "notification-dispatch"
EMAIL_QUEUE = "email-dispatch"
CLEANUP_QUEUE = "cleanup"


class JobType:
    PUSH_FANOUT = "push-fanout"
    BATCH_INGEST = "batch-ingest"
    DIGEST_BUILD = "digest-build"
    SEND_EMAIL = "send-email"
    SWEEP_ARCHIVED = "sweep-archived"


# ============================================================
# QUEUE CONFIG
# ============================================================

@dataclass(frozen=True)
class QueueConfig:
    """
    Static description of one queue.

    Attributes:
        name: Logical queue name
        concurrency: Job type -> max jobs of that type running at once
        backoff: Default retry policy for every job in the queue
    """
    name: str
    concurrency: Dict[str, int]
    backoff: BackoffPolicy

    @property
    def arq_queue_name(self) -> str:
        """Redis key of the ARQ sorted set backing this queue."""
        return f"arq:{self.name}"

    def concurrency_for(self, job_type: str) -> int:
        if job_type not in self.concurrency:
            raise QueueError(f"Job type '{job_type}' is not handled by queue '{self.name}'")
        return self.concurrency[job_type]


def build_queue_configs() -> Dict[str, QueueConfig]:
    """Queue table with retry policies taken from settings."""
    return {
        NOTIFICATION_QUEUE: QueueConfig(
            name=NOTIFICATION_QUEUE,
            concurrency={
                JobType.PUSH_FANOUT: 5,
                JobType.BATCH_INGEST: 3,
                JobType.DIGEST_BUILD: 1,
            },
            backoff=BackoffPolicy(
                base_delay=settings.NOTIFICATION_BACKOFF_SECONDS,
                max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
            ),
        ),
        EMAIL_QUEUE: QueueConfig(
            name=EMAIL_QUEUE,
            concurrency={JobType.SEND_EMAIL: 10},
            backoff=BackoffPolicy(
                base_delay=settings.EMAIL_BACKOFF_SECONDS,
                max_attempts=settings.EMAIL_MAX_ATTEMPTS,
            ),
        ),
        CLEANUP_QUEUE: QueueConfig(
            name=CLEANUP_QUEUE,
            concurrency={JobType.SWEEP_ARCHIVED: 1},
            # Not retried; the next daily run picks up whatever was missed
            backoff=BackoffPolicy(base_delay=0, max_attempts=1),
        ),
    }


def get_queue_config(
    configs: Dict[str, QueueConfig],
    queue_name: str,
    job_type: Optional[str] = None
) -> QueueConfig:
    """
    Look up a queue (and optionally check it handles a job type).

    Raises:
        QueueError: Unknown queue or job type
    """
    config = configs.get(queue_name)
    if config is None:
        raise QueueError(f"Unknown queue '{queue_name}'")
    if job_type is not None:
        config.concurrency_for(job_type)
    return config
