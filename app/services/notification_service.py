"""
Notification Service

Business logic for creating, scheduling and managing notifications.

Producers (courses, peer matching, gamification, AI analysis...) call
create_notification() and move on. The service:
1. Checks the user exists and hasn't switched the notification type off
2. Defers delivery to the end of the user's quiet hours
3. Persists the notification (the in-app copy is the source of truth)
4. Enqueues a push-fanout job, now or at scheduled_for

Delivery itself happens in the queue processors (app/tasks/).
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Union
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import Notification
from app.models.notification_preference import NotificationPreference
from app.models.notification_subscription import NotificationSubscription
from app.models.user import User
from app.queue import (
    NOTIFICATION_QUEUE,
    JobOptions,
    JobQueue,
    JobType,
    next_digest_run,
)
from app.repositories.notification_repo import NotificationRepository
from app.repositories.preference_repo import NotificationPreferenceRepository
from app.repositories.subscription_repo import NotificationSubscriptionRepository
from app.repositories.user_repo import UserRepository
from app.schemas.jobs import BatchIngestPayload, DigestPayload, PushFanoutPayload
from app.schemas.notification import (
    BatchSubmission,
    NotificationCreate,
    NotificationFilters,
    NotificationPage,
    NotificationResponse,
    NotificationStats,
    NotificationStatus,
    NotificationType,
    SuppressedByPreference,
)
from app.schemas.notification_data import parse_notification_data
from app.schemas.preference import DIGEST_FIELDS, PreferenceUpdate, SubscriptionCreate
from app.utils.time_utils import (
    Clock,
    ensure_utc,
    is_quiet_hours,
    next_active_time,
    utc_now,
)

logger = logging.getLogger(__name__)


# ============================================================
# EXCEPTIONS
# ============================================================

class NotificationServiceError(Exception):
    pass


class NotificationValidationError(NotificationServiceError):
    """Malformed options, time strings or data payload."""
    pass


class NotificationNotFoundError(NotificationServiceError):
    """
    Target doesn't exist, isn't owned by the caller, or is not in a
    state the operation applies to. Callers can't tell which.
    """
    pass


class UserNotFoundError(NotificationValidationError, NotificationNotFoundError):
    pass


# ============================================================
# PREFERENCE HELPERS
# ============================================================

def is_type_enabled(preferences: NotificationPreference, notification_type: NotificationType) -> bool:
    """A type is enabled unless the user stored an explicit false for it."""
    type_preferences = preferences.type_preferences or {}
    return type_preferences.get(NotificationType(notification_type).value, True) is not False


async def schedule_digest(
    queue: JobQueue,
    preferences: NotificationPreference,
    now: datetime
) -> Optional[str]:
    """
    Enqueue the next digest-build job for a user.

    The job id is derived from user and run time, so saving the same
    settings twice doesn't start a second chain.

    Returns:
        The job id, or None if digests are disabled
    """
    if not preferences.digest_enabled:
        return None

    run_at = next_digest_run(
        preferences.digest_frequency,
        preferences.digest_time,
        preferences.timezone,
        now,
    )
    payload = DigestPayload(
        user_id=preferences.user_id,
        frequency=preferences.digest_frequency,
        digest_time=preferences.digest_time,
        timezone=preferences.timezone,
    )
    job_id = f"digest:{preferences.user_id}:{run_at.isoformat()}"

    job = await queue.enqueue(
        NOTIFICATION_QUEUE,
        JobType.DIGEST_BUILD,
        payload.model_dump(mode="json"),
        JobOptions(delay=max((run_at - now).total_seconds(), 0), job_id=job_id),
    )
    logger.info(f"Digest for user {preferences.user_id} scheduled at {run_at.isoformat()}")
    return job.id


# ============================================================
# SERVICE
# ============================================================

class NotificationService:
    """
    Service for notification operations.

    Args:
        db: Database session
        queue: Job queue dispatch jobs are enqueued on
        clock: Source of "now" (overridable in tests)
    """

    def __init__(self, db: AsyncSession, queue: JobQueue, clock: Clock = utc_now):
        self.db = db
        self.queue = queue
        self.clock = clock
        self.user_repo = UserRepository(db)
        self.notification_repo = NotificationRepository(db)
        self.preference_repo = NotificationPreferenceRepository(db)
        self.subscription_repo = NotificationSubscriptionRepository(db)

    async def _require_user(self, user_id: UUID) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    def _validate_data(self, opts: NotificationCreate) -> Optional[dict]:
        try:
            return parse_notification_data(opts.type, opts.data)
        except ValidationError as e:
            raise NotificationValidationError(f"Invalid data for {opts.type.value} notification: {e}")

    # ============================================================
    # CREATE NOTIFICATION
    # ============================================================

    async def create_notification(
        self,
        opts: NotificationCreate
    ) -> Union[Notification, SuppressedByPreference]:
        """
        Create a notification and queue its delivery.

        Args:
            opts: Validated creation options

        Returns:
            The persisted notification, or SuppressedByPreference when
            the user has switched this type off (nothing is stored)

        Raises:
            UserNotFoundError: Unknown user
            NotificationValidationError: Bad data payload or stored time settings
        """
        now = self.clock()
        await self._require_user(opts.user_id)
        data = self._validate_data(opts)

        preferences = await self.preference_repo.get_or_create(opts.user_id)

        if not is_type_enabled(preferences, opts.type):
            logger.info(f"Notification {opts.type.value} suppressed for user {opts.user_id} by preference")
            return SuppressedByPreference(user_id=opts.user_id, type=opts.type)

        # ================================================
        # Quiet hours: hold delivery until the window ends
        # ================================================
        scheduled_for = ensure_utc(opts.scheduled_for)
        if scheduled_for is None:
            try:
                if is_quiet_hours(now, preferences.quiet_hours_start, preferences.quiet_hours_end, preferences.timezone):
                    scheduled_for = next_active_time(now, preferences.quiet_hours_end, preferences.timezone)
                    logger.info(
                        f"User {opts.user_id} in quiet hours, notification deferred to {scheduled_for.isoformat()}"
                    )
            except ValueError as e:
                raise NotificationValidationError(str(e))

        if scheduled_for is None:
            scheduled_for = now

        group_key = opts.group_key or f"single-{uuid4()}"

        notification = await self.notification_repo.create(
            user_id=opts.user_id,
            type=opts.type.value,
            status=NotificationStatus.UNREAD.value,
            priority=opts.priority.value,
            title=opts.title,
            message=opts.message,
            action_url=opts.action_url,
            action_text=opts.action_text,
            data=data,
            scheduled_for=scheduled_for,
            expires_at=ensure_utc(opts.expires_at),
            group_key=group_key,
            created_at=now,
        )

        # ================================================
        # Queue delivery
        # ================================================
        if opts.immediate or scheduled_for <= now:
            delay = 0.0
        else:
            delay = (scheduled_for - now).total_seconds()

        payload = PushFanoutPayload(
            user_id=opts.user_id,
            group_key=group_key,
            notification_ids=[notification.id],
        )
        await self.queue.enqueue(
            NOTIFICATION_QUEUE,
            JobType.PUSH_FANOUT,
            payload.model_dump(mode="json"),
            JobOptions(delay=delay),
        )

        logger.info(
            f"Notification {notification.id} ({opts.type.value}) created for user {opts.user_id}, "
            f"delivery in {delay:.0f}s"
        )
        return notification

    # ============================================================
    # CREATE BATCH
    # ============================================================

    async def create_batch_notifications(
        self,
        notifications: List[NotificationCreate],
        delay: Optional[int] = None
    ) -> BatchSubmission:
        """
        Validate a batch and hand it to the batch-ingest processor.

        Items for unknown users, disabled types or with bad data are
        dropped (logged, not raised). Survivors share one batch id,
        which is also their group key. Nothing is persisted here.
        """
        batch_id = f"batch-{uuid4()}"
        preferences_by_user: Dict[UUID, Optional[NotificationPreference]] = {}
        accepted: List[NotificationCreate] = []
        dropped = 0

        for item in notifications:
            if item.user_id not in preferences_by_user:
                user = await self.user_repo.get_by_id(item.user_id)
                preferences_by_user[item.user_id] = (
                    await self.preference_repo.get_or_create(item.user_id) if user else None
                )

            preferences = preferences_by_user[item.user_id]
            if preferences is None:
                logger.warning(f"Batch {batch_id}: dropping item for unknown user {item.user_id}")
                dropped += 1
                continue

            if not is_type_enabled(preferences, item.type):
                logger.info(f"Batch {batch_id}: {item.type.value} suppressed for user {item.user_id}")
                dropped += 1
                continue

            try:
                data = self._validate_data(item)
            except NotificationValidationError as e:
                logger.warning(f"Batch {batch_id}: dropping item for user {item.user_id}: {e}")
                dropped += 1
                continue

            accepted.append(item.model_copy(update={"group_key": batch_id, "data": data}))

        job_id = None
        if accepted:
            payload = BatchIngestPayload(batch_id=batch_id, group_key=batch_id, notifications=accepted)
            job = await self.queue.enqueue(
                NOTIFICATION_QUEUE,
                JobType.BATCH_INGEST,
                payload.model_dump(mode="json"),
                JobOptions(delay=delay or 0),
            )
            job_id = job.id

        logger.info(f"Batch {batch_id}: {len(accepted)} accepted, {dropped} dropped")
        return BatchSubmission(
            batch_id=batch_id,
            group_key=batch_id,
            notifications=accepted,
            dropped=dropped,
            job_id=job_id,
        )

    # ============================================================
    # LIST / STATS
    # ============================================================

    async def get_notifications(self, filters: NotificationFilters) -> NotificationPage:
        """Newest first, with the total for pagination."""
        items = await self.notification_repo.find(filters)
        total = await self.notification_repo.count(filters)
        return NotificationPage(
            items=[NotificationResponse.model_validate(n) for n in items],
            total=total,
            has_more=filters.offset + len(items) < total,
        )

    async def get_notification_stats(self, user_id: UUID) -> NotificationStats:
        rows = await self.notification_repo.get_stats(user_id)

        unread = read = total = 0
        type_stats: Dict[str, int] = {}
        for notification_type, status, count in rows:
            total += count
            type_stats[notification_type] = type_stats.get(notification_type, 0) + count
            if status == NotificationStatus.UNREAD.value:
                unread += count
            elif status == NotificationStatus.READ.value:
                read += count

        return NotificationStats(
            unread_count=unread,
            total_count=total,
            read_count=read,
            type_stats=type_stats,
        )

    # ============================================================
    # STATUS TRANSITIONS
    # ============================================================

    async def mark_as_read(self, notification_id: UUID, user_id: UUID) -> None:
        """
        UNREAD -> READ for an owned notification.

        Raises:
            NotificationNotFoundError: Missing, not owned, or not UNREAD
        """
        updated = await self.notification_repo.update_status(
            [notification_id],
            user_id,
            from_statuses=[NotificationStatus.UNREAD],
            to_status=NotificationStatus.READ,
            read_at=self.clock(),
        )
        if updated == 0:
            raise NotificationNotFoundError("Notification not found")

    async def mark_multiple_as_read(self, notification_ids: List[UUID], user_id: UUID) -> int:
        """Same rule per id; returns how many actually moved to READ."""
        return await self.notification_repo.update_status(
            notification_ids,
            user_id,
            from_statuses=[NotificationStatus.UNREAD],
            to_status=NotificationStatus.READ,
            read_at=self.clock(),
        )

    async def archive_notification(self, notification_id: UUID, user_id: UUID) -> None:
        """
        Move an owned notification to ARCHIVED (idempotent).

        Raises:
            NotificationNotFoundError: Missing, not owned, or DISMISSED
        """
        updated = await self.notification_repo.update_status(
            [notification_id],
            user_id,
            from_statuses=[NotificationStatus.UNREAD, NotificationStatus.READ, NotificationStatus.ARCHIVED],
            to_status=NotificationStatus.ARCHIVED,
        )
        if updated == 0:
            raise NotificationNotFoundError("Notification not found")

    async def dismiss_notification(self, notification_id: UUID, user_id: UUID) -> None:
        """UNREAD|READ -> DISMISSED. Dismissed rows are kept, never swept."""
        updated = await self.notification_repo.update_status(
            [notification_id],
            user_id,
            from_statuses=[NotificationStatus.UNREAD, NotificationStatus.READ],
            to_status=NotificationStatus.DISMISSED,
        )
        if updated == 0:
            raise NotificationNotFoundError("Notification not found")

    # ============================================================
    # PUSH SUBSCRIPTIONS
    # ============================================================

    async def subscribe_to_push(
        self,
        user_id: UUID,
        subscription: SubscriptionCreate
    ) -> NotificationSubscription:
        await self._require_user(user_id)
        result = await self.subscription_repo.upsert(
            user_id=user_id,
            endpoint=subscription.endpoint,
            p256dh_key=subscription.keys.p256dh,
            auth_key=subscription.keys.auth,
            user_agent=subscription.user_agent,
            now=self.clock(),
        )
        logger.info(f"Push subscription registered for user {user_id}")
        return result

    async def unsubscribe_from_push(self, user_id: UUID, endpoint: str) -> int:
        count = await self.subscription_repo.deactivate(user_id, endpoint)
        logger.info(f"Push subscription deactivated for user {user_id} ({count} rows)")
        return count

    # ============================================================
    # PREFERENCES
    # ============================================================

    async def get_preferences(self, user_id: UUID) -> NotificationPreference:
        """Stored preferences, created with defaults on first read."""
        await self._require_user(user_id)
        return await self.preference_repo.get_or_create(user_id)

    async def update_preferences(
        self,
        user_id: UUID,
        update: PreferenceUpdate
    ) -> NotificationPreference:
        """
        Partial update. Changing any digest setting re-derives the next
        digest job; jobs from the old settings become no-ops.
        """
        await self._require_user(user_id)

        fields = update.to_fields()
        current = await self.preference_repo.get_or_create(user_id)
        changed = {key for key, value in fields.items() if getattr(current, key) != value}

        preferences = await self.preference_repo.upsert(user_id, **fields)

        if changed & set(DIGEST_FIELDS) and preferences.digest_enabled:
            await schedule_digest(self.queue, preferences, self.clock())

        return preferences

