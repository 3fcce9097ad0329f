"""
Notification Delivery Tasks

Processors for the notification-dispatch queue:
- batch-ingest: persist a validated batch, then queue one push per user and due time
- push-fanout: send one push message to every subscription of a user

Every processor receives:
- ctx['session_factory']: async session factory for worker DB sessions
- ctx['queue']: the JobQueue, for follow-up jobs
- ctx['push_transport']: PushTransport, or None when push isn't configured
- ctx['clock']: source of "now"
- ctx['job_id'], ctx['job_try']: ARQ-style job metadata
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.models.notification import Notification
from app.queue import NOTIFICATION_QUEUE, JobOptions, JobType
from app.repositories.notification_repo import NotificationRepository
from app.repositories.preference_repo import NotificationPreferenceRepository
from app.repositories.subscription_repo import NotificationSubscriptionRepository
from app.repositories.user_repo import UserRepository
from app.schemas.jobs import (
    BatchIngestPayload,
    PushAction,
    PushFanoutPayload,
    PushMessage,
    PushSubscriptionInfo,
)
from app.schemas.notification import NotificationStatus
from app.services.notification_service import is_type_enabled
from app.transports.base import PushSubscriptionGoneError, PushTransport, TransportError
from app.utils.time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


# ============================================================
# PUSH MESSAGE RENDERING
# ============================================================

def build_push_message(notifications: List[Notification]) -> PushMessage:
    """
    Render the push body for one or more notifications of one user.

    A single notification is shown as-is; several collapse into one
    "You have N new notifications" message.
    """
    if len(notifications) == 1:
        notification = notifications[0]
        actions = None
        if notification.action_url:
            actions = [PushAction(action="open", title=notification.action_text or "Open")]

        return PushMessage(
            title=notification.title,
            body=notification.message,
            icon=settings.PUSH_ICON,
            badge=settings.PUSH_BADGE,
            data={
                "notification_id": str(notification.id),
                "type": notification.type,
                "action_url": notification.action_url,
                "group_key": notification.group_key,
            },
            actions=actions,
        )

    titles = [n.title for n in notifications[:3]]
    if len(notifications) > 3:
        titles.append(f"and {len(notifications) - 3} more")

    return PushMessage(
        title=f"You have {len(notifications)} new notifications",
        body=", ".join(titles),
        icon=settings.PUSH_ICON,
        badge=settings.PUSH_BADGE,
        data={
            "notification_ids": [str(n.id) for n in notifications],
            "action_url": "/notifications",
            "group_key": notifications[0].group_key,
        },
        actions=[PushAction(action="open", title="Open")],
    )


def _is_expired(notification: Notification, now) -> bool:
    expires_at = ensure_utc(notification.expires_at)
    return expires_at is not None and expires_at <= now


async def send_to_subscriptions(
    transport: PushTransport,
    subscriptions: List[PushSubscriptionInfo],
    body: str,
    concurrency: int
) -> List[Tuple[str, Optional[Exception]]]:
    """
    Send one body to every subscription, at most `concurrency` at a time.

    Each send succeeds or fails on its own.

    Returns:
        (endpoint, error) per subscription; error is None on success
    """
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def send_one(subscription: PushSubscriptionInfo) -> Tuple[str, Optional[Exception]]:
        async with semaphore:
            try:
                await transport.send(subscription, body)
                return subscription.endpoint, None
            except TransportError as e:
                return subscription.endpoint, e

    return await asyncio.gather(*(send_one(s) for s in subscriptions))


# ============================================================
# PUSH FAN-OUT
# ============================================================

async def push_fanout(ctx: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deliver one push message to all of a user's subscriptions.

    Outcomes:
        - expired notifications / push disabled / nothing to send to:
          completes with "skipped"
        - at least one send succeeded: the group is marked delivered
          for this user, gone endpoints are deactivated
        - every send failed: raises TransportError so the queue retries
    """
    job = PushFanoutPayload.model_validate(payload)
    now = ctx.get("clock", utc_now)()
    job_id = ctx.get("job_id", "unknown")

    logger.info(f"Push fan-out for user {job.user_id}, group {job.group_key} (job: {job_id})")

    async with ctx["session_factory"]() as session:
        notification_repo = NotificationRepository(session)
        preference_repo = NotificationPreferenceRepository(session)
        subscription_repo = NotificationSubscriptionRepository(session)

        notifications = await notification_repo.get_by_ids(job.notification_ids, user_id=job.user_id)
        live = [n for n in notifications if not _is_expired(n, now)]
        if not live:
            logger.info(f"Group {job.group_key}: nothing left to deliver (expired or removed)")
            return {"group_key": job.group_key, "skipped": "expired"}

        preferences = await preference_repo.get_or_create(job.user_id)
        if not preferences.push_enabled:
            logger.info(f"User {job.user_id} has push disabled, skipping group {job.group_key}")
            return {"group_key": job.group_key, "skipped": "push_disabled"}

        transport: Optional[PushTransport] = ctx.get("push_transport")
        if transport is None:
            logger.warning(f"Push transport not configured, group {job.group_key} not sent")
            return {"group_key": job.group_key, "skipped": "push_not_configured"}

        if job.subscriptions is not None:
            subscriptions = job.subscriptions
        else:
            subscriptions = [
                PushSubscriptionInfo(
                    endpoint=s.endpoint,
                    p256dh_key=s.p256dh_key,
                    auth_key=s.auth_key,
                )
                for s in await subscription_repo.find_active(job.user_id)
            ]

        if not subscriptions:
            logger.info(f"User {job.user_id} has no active push subscriptions")
            return {"group_key": job.group_key, "skipped": "no_subscriptions"}

        message = job.message
        if message is None or len(live) < len(job.notification_ids):
            # Rendered before some of the group expired or was removed
            message = build_push_message(live)
        body = message.model_dump_json(exclude_none=True)

        results = await send_to_subscriptions(
            transport,
            subscriptions,
            body,
            ctx.get("push_concurrency", settings.PUSH_FANOUT_CONCURRENCY),
        )

        sent = [endpoint for endpoint, error in results if error is None]
        gone = [endpoint for endpoint, error in results if isinstance(error, PushSubscriptionGoneError)]
        failed = [(endpoint, error) for endpoint, error in results if error is not None]

        for endpoint in gone:
            await subscription_repo.deactivate(job.user_id, endpoint)
            logger.info(f"Deactivated expired push endpoint for user {job.user_id}")

        for endpoint, error in failed:
            logger.warning(f"Push to user {job.user_id} failed: {error}")

        if not sent:
            raise TransportError(
                f"All {len(subscriptions)} push sends failed for group {job.group_key}"
            )

        updated = await notification_repo.update_by_group_key(
            job.group_key,
            {"push_sent": True, "delivered": True, "delivered_at": now},
            user_id=job.user_id,
            ids=[n.id for n in live],
        )
        await subscription_repo.touch(job.user_id, sent, now)

    logger.info(
        f"Group {job.group_key}: {len(sent)}/{len(subscriptions)} sends succeeded, "
        f"{updated} notifications marked delivered"
    )
    return {
        "group_key": job.group_key,
        "sent": len(sent),
        "failed": len(failed),
        "deactivated": len(gone),
        "delivered": updated,
    }


# ============================================================
# BATCH INGEST
# ============================================================

async def batch_ingest(ctx: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Persist a batch accepted by NotificationService.create_batch_notifications().

    Preferences are checked again (they may have changed while the
    job was waiting), and items that expired while waiting are dropped.
    A failing item is logged and skipped; the rest of the batch still
    goes through.

    Items keep their own scheduled_for: each user gets one push per
    due time, delayed until then unless the item is immediate.
    """
    job = BatchIngestPayload.model_validate(payload)
    now = ctx.get("clock", utc_now)()
    queue = ctx["queue"]

    logger.info(f"Ingesting batch {job.batch_id}: {len(job.notifications)} items (job: {ctx.get('job_id', 'unknown')})")

    persisted: "OrderedDict[Tuple[UUID, datetime], List[UUID]]" = OrderedDict()
    skipped = 0
    expired = 0
    failed = 0
    fanout_jobs = 0

    async with ctx["session_factory"]() as session:
        user_repo = UserRepository(session)
        notification_repo = NotificationRepository(session)
        preference_repo = NotificationPreferenceRepository(session)
        subscription_repo = NotificationSubscriptionRepository(session)
        preferences_by_user = {}

        # ================================================
        # STEP 1: Persist each item independently
        # ================================================
        for item in job.notifications:
            expires_at = ensure_utc(item.expires_at)
            if expires_at is not None and expires_at <= now:
                expired += 1
                logger.info(f"Batch {job.batch_id}: item for user {item.user_id} expired before ingest")
                continue

            due = now
            if item.scheduled_for is not None and not item.immediate:
                due = max(ensure_utc(item.scheduled_for), now)

            try:
                if item.user_id not in preferences_by_user:
                    user = await user_repo.get_by_id(item.user_id)
                    preferences_by_user[item.user_id] = (
                        await preference_repo.get_or_create(item.user_id) if user else None
                    )

                preferences = preferences_by_user[item.user_id]
                if preferences is None or not is_type_enabled(preferences, item.type):
                    skipped += 1
                    continue

                notification = await notification_repo.create(
                    user_id=item.user_id,
                    type=item.type.value,
                    status=NotificationStatus.UNREAD.value,
                    priority=item.priority.value,
                    title=item.title,
                    message=item.message,
                    action_url=item.action_url,
                    action_text=item.action_text,
                    data=item.data,
                    scheduled_for=due,
                    expires_at=expires_at,
                    group_key=job.group_key,
                    batch_id=job.batch_id,
                    created_at=now,
                )
                persisted.setdefault((item.user_id, due), []).append(notification.id)
            except SQLAlchemyError as e:
                await session.rollback()
                # Rollback expires loaded rows; reload preferences lazily
                preferences_by_user = {
                    user_id: None if p is None else await preference_repo.get_by_user(user_id)
                    for user_id, p in preferences_by_user.items()
                }
                failed += 1
                logger.error(f"Batch {job.batch_id}: failed to persist item for user {item.user_id}: {e}")

        # ================================================
        # STEP 2: One push per user and due time
        # ================================================
        for (user_id, due), notification_ids in persisted.items():
            preferences = await preference_repo.get_by_user(user_id)
            if preferences is None or not preferences.push_enabled:
                continue

            subscriptions = await subscription_repo.find_active(user_id)
            if not subscriptions:
                continue

            notifications = await notification_repo.get_by_ids(notification_ids, user_id=user_id)
            notifications.sort(key=lambda n: notification_ids.index(n.id))

            fanout = PushFanoutPayload(
                user_id=user_id,
                group_key=job.group_key,
                notification_ids=[n.id for n in notifications],
                subscriptions=[
                    PushSubscriptionInfo(
                        endpoint=s.endpoint,
                        p256dh_key=s.p256dh_key,
                        auth_key=s.auth_key,
                    )
                    for s in subscriptions
                ],
                message=build_push_message(notifications),
            )
            await queue.enqueue(
                NOTIFICATION_QUEUE,
                JobType.PUSH_FANOUT,
                fanout.model_dump(mode="json"),
                JobOptions(delay=(due - now).total_seconds()),
            )
            fanout_jobs += 1

    created = sum(len(items) for items in persisted.values())
    logger.info(
        f"Batch {job.batch_id}: {created} persisted, {skipped} skipped, {expired} expired, "
        f"{failed} failed, {fanout_jobs} push jobs queued"
    )
    return {
        "batch_id": job.batch_id,
        "persisted": created,
        "skipped": skipped,
        "expired": expired,
        "failed": failed,
        "fanout_jobs": fanout_jobs,
    }
