"""
Digest Tasks

digest-build collects a user's unread notifications from the last day
(or week) and queues one email summarizing them, grouped by type.

Each run schedules the next one, so a user with digests enabled always
has exactly one pending digest job. A job scheduled under settings
the user has since changed is stale: it does nothing and does not
reschedule, because saving the new settings already started a new chain.
"""

import logging
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Dict, List

from app.core.config import settings
from app.queue import EMAIL_QUEUE, JobOptions, JobType
from app.repositories.notification_repo import NotificationRepository
from app.repositories.preference_repo import NotificationPreferenceRepository
from app.repositories.user_repo import UserRepository
from app.schemas.jobs import DigestPayload, EmailPayload
from app.schemas.preference import DigestFrequency
from app.services.notification_service import schedule_digest
from app.utils.time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

DIGEST_WINDOWS = {
    DigestFrequency.DAILY.value: timedelta(days=1),
    DigestFrequency.WEEKLY.value: timedelta(days=7),
}


async def digest_build(ctx: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build and queue one digest email.

    Returns:
        Dict with the number of notifications included, or the reason
        the digest was skipped
    """
    job = DigestPayload.model_validate(payload)
    now = ctx.get("clock", utc_now)()
    queue = ctx["queue"]

    logger.info(f"Building {job.frequency.value} digest for user {job.user_id} (job: {ctx.get('job_id', 'unknown')})")

    async with ctx["session_factory"]() as session:
        user = await UserRepository(session).get_by_id(job.user_id)
        if not user:
            return {"user_id": str(job.user_id), "skipped": "user_not_found"}

        preferences = await NotificationPreferenceRepository(session).get_by_user(job.user_id)
        if preferences is None or not preferences.digest_enabled:
            logger.info(f"Digest disabled for user {job.user_id}, chain ends")
            return {"user_id": str(job.user_id), "skipped": "disabled"}

        current = (preferences.digest_frequency, preferences.digest_time, preferences.timezone)
        if current != (job.frequency.value, job.digest_time, job.timezone):
            logger.info(f"Digest job for user {job.user_id} is stale, settings changed")
            return {"user_id": str(job.user_id), "skipped": "stale"}

        # Keep the chain alive even if this run fails later on
        await schedule_digest(queue, preferences, now)

        window = DIGEST_WINDOWS[job.frequency.value]
        notifications = await NotificationRepository(session).find_unread_in_window(
            job.user_id,
            start=now - window,
            end=now,
            limit=settings.DIGEST_MAX_ITEMS,
        )

        if not notifications:
            logger.info(f"No unread notifications for user {job.user_id}, no digest sent")
            return {"user_id": str(job.user_id), "count": 0}

        if not preferences.email_enabled:
            logger.info(f"User {job.user_id} has email disabled, digest not sent")
            return {"user_id": str(job.user_id), "count": len(notifications), "skipped": "email_disabled"}

        groups: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        for notification in notifications:
            groups.setdefault(notification.type, []).append({
                "id": str(notification.id),
                "title": notification.title,
                "message": notification.message,
                "action_url": notification.action_url,
                "created_at": ensure_utc(notification.created_at).isoformat(),
            })

        email = EmailPayload(
            to=user.email,
            subject=f"Your {job.frequency.value} digest - {len(notifications)} updates",
            template="notification-digest",
            data={
                "user_name": user.full_name,
                "frequency": job.frequency.value,
                "total": len(notifications),
                "groups": groups,
            },
        )

    await queue.enqueue(EMAIL_QUEUE, JobType.SEND_EMAIL, email.model_dump(mode="json"), JobOptions())

    logger.info(f"Digest for user {job.user_id}: {len(notifications)} notifications in {len(groups)} groups")
    return {"user_id": str(job.user_id), "count": len(notifications), "groups": len(groups)}
