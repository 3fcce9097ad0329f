"""
Cleanup Tasks

sweep-archived deletes ARCHIVED notifications older than the retention
window. Nothing else is ever deleted.
"""

import logging
from datetime import timedelta
from typing import Any, Dict

from app.core.config import settings
from app.queue import CLEANUP_QUEUE, DailyAt, Job, JobQueue, JobType
from app.repositories.notification_repo import NotificationRepository
from app.schemas.jobs import SweepPayload
from app.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


async def sweep_archived(ctx: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    job = SweepPayload.model_validate(payload)
    now = ctx.get("clock", utc_now)()
    cutoff = now - timedelta(days=job.max_age_days)

    async with ctx["session_factory"]() as session:
        deleted = await NotificationRepository(session).delete_archived_older_than(cutoff)

    logger.info(f"Swept {deleted} archived notifications created before {cutoff.isoformat()}")
    return {"deleted": deleted, "cutoff": cutoff.isoformat()}


async def schedule_cleanup(queue: JobQueue) -> Job:
    """Start the daily sweep at CLEANUP_HOUR (UTC)."""
    return await queue.schedule_recurring(
        CLEANUP_QUEUE,
        JobType.SWEEP_ARCHIVED,
        SweepPayload(max_age_days=settings.NOTIFICATION_RETENTION_DAYS).model_dump(mode="json"),
        DailyAt(hour=settings.CLEANUP_HOUR),
    )
