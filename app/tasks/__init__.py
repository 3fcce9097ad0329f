"""
Background Tasks Module

Processors for every job type, and the helpers that wire them into a
JobQueue.

Task Organization:
-----------------
- notification_tasks.py: push-fanout, batch-ingest
- digest_tasks.py: digest-build
- email_tasks.py: send-email
- cleanup_tasks.py: sweep-archived

How Tasks Work:
--------------
1. NotificationService enqueues a job: await queue.enqueue(queue_name, job_type, payload)
2. The backend (Redis/ARQ or in-process) stores it until it is due
3. A worker picks it up and calls the processor with (ctx, payload)
4. A raised exception is retried with the queue's backoff policy

Running Workers (ARQ backend):
-----------------------------
    arq app.worker.NotificationWorkerSettings
    arq app.worker.EmailWorkerSettings
    arq app.worker.CleanupWorkerSettings
"""

from typing import Any, Dict, Optional

from app.queue import CLEANUP_QUEUE, EMAIL_QUEUE, NOTIFICATION_QUEUE, JobQueue, JobType
from app.tasks.cleanup_tasks import schedule_cleanup, sweep_archived
from app.tasks.digest_tasks import digest_build
from app.tasks.email_tasks import send_email
from app.tasks.notification_tasks import batch_ingest, push_fanout
from app.transports.base import EmailTransport, PushTransport
from app.utils.time_utils import Clock, utc_now

PROCESSORS = (
    (NOTIFICATION_QUEUE, JobType.PUSH_FANOUT, push_fanout),
    (NOTIFICATION_QUEUE, JobType.BATCH_INGEST, batch_ingest),
    (NOTIFICATION_QUEUE, JobType.DIGEST_BUILD, digest_build),
    (EMAIL_QUEUE, JobType.SEND_EMAIL, send_email),
    (CLEANUP_QUEUE, JobType.SWEEP_ARCHIVED, sweep_archived),
)


def register_processors(queue: JobQueue) -> JobQueue:
    """Attach every processor, with the concurrency from the queue table."""
    for queue_name, job_type, handler in PROCESSORS:
        queue.register_processor(queue_name, job_type, handler)
    return queue


def build_worker_context(
    session_factory,
    push_transport: Optional[PushTransport] = None,
    email_transport: Optional[EmailTransport] = None,
    clock: Clock = utc_now
) -> Dict[str, Any]:
    """Shared ctx entries every processor expects."""
    return {
        "session_factory": session_factory,
        "push_transport": push_transport,
        "email_transport": email_transport,
        "clock": clock,
    }


__all__ = [
    "PROCESSORS",
    "batch_ingest",
    "build_worker_context",
    "digest_build",
    "push_fanout",
    "register_processors",
    "schedule_cleanup",
    "send_email",
    "sweep_archived",
]
