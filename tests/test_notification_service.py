"""
Tests for NotificationService: creation rules, status transitions,
subscriptions and preferences.

State is always re-read through a fresh session, the way the next
request would see it.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app.models import Notification, NotificationSubscription
from app.queue import NOTIFICATION_QUEUE, JobStatus, JobType
from app.repositories.notification_repo import NotificationRepository
from app.repositories.subscription_repo import NotificationSubscriptionRepository
from app.schemas.notification import (
    NotificationCreate,
    NotificationFilters,
    NotificationStatus,
    NotificationType,
    SuppressedByPreference,
)
from app.schemas.preference import PreferenceUpdate, SubscriptionCreate, SubscriptionKeys
from app.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
    NotificationValidationError,
    UserNotFoundError,
)
from app.utils.time_utils import ensure_utc


def notification_for(user, **overrides) -> NotificationCreate:
    fields = {
        "user_id": user.id,
        "type": NotificationType.GENERAL,
        "title": "Weekly study plan ready",
        "message": "Your plan for next week is ready to review.",
    }
    fields.update(overrides)
    return NotificationCreate(**fields)


async def load(session_factory, notification_id) -> Notification:
    async with session_factory() as session:
        return await NotificationRepository(session).get_by_id(notification_id)


# ============================================================================
# Create
# ============================================================================

class TestCreateNotification:
    @pytest.mark.asyncio
    async def test_persists_and_queues_delivery(self, service, make_user, job_queue, clock, session_factory):
        user = await make_user()

        notification = await service.create_notification(notification_for(user))

        stored = await load(session_factory, notification.id)
        assert stored.status == NotificationStatus.UNREAD.value
        assert stored.group_key.startswith("single-")
        assert ensure_utc(stored.created_at) == clock()

        jobs = job_queue.get_jobs(NOTIFICATION_QUEUE, JobType.PUSH_FANOUT)
        assert len(jobs) == 1
        assert jobs[0].run_at == clock()
        assert jobs[0].payload["notification_ids"] == [str(notification.id)]
        assert jobs[0].payload["group_key"] == stored.group_key

    @pytest.mark.asyncio
    async def test_keeps_caller_group_key(self, service, make_user):
        user = await make_user()

        notification = await service.create_notification(notification_for(user, group_key="course-42-updates"))

        assert notification.group_key == "course-42-updates"

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        opts = NotificationCreate(
            user_id=uuid4(),
            type=NotificationType.SYSTEM,
            title="Maintenance",
            message="Scheduled maintenance tonight.",
        )

        with pytest.raises(UserNotFoundError):
            await service.create_notification(opts)

    @pytest.mark.asyncio
    async def test_data_validated_against_type(self, service, make_user, job_queue):
        user = await make_user()

        with pytest.raises(NotificationValidationError):
            await service.create_notification(
                notification_for(user, type=NotificationType.COURSE, data={"course_title": "Algebra"})
            )

        assert job_queue.get_jobs() == []

    @pytest.mark.asyncio
    async def test_extra_data_keys_survive(self, service, make_user, session_factory):
        user = await make_user()

        notification = await service.create_notification(
            notification_for(user, type=NotificationType.COURSE, data={"course_id": "c-1", "lesson": 3})
        )

        stored = await load(session_factory, notification.id)
        assert stored.data == {"course_id": "c-1", "lesson": 3}

    @pytest.mark.asyncio
    async def test_data_stored_exactly_as_sent(self, service, make_user, session_factory):
        user = await make_user()
        assignment = await service.create_notification(notification_for(
            user,
            type=NotificationType.ASSIGNMENT,
            data={"assignment_id": "hw-3", "due_at": "2026-03-12", "course_id": 42},
        ))
        course = await service.create_notification(
            notification_for(user, type=NotificationType.COURSE, data={"course_id": 42})
        )

        assert (await load(session_factory, assignment.id)).data == {
            "assignment_id": "hw-3",
            "due_at": "2026-03-12",
            "course_id": 42,
        }
        assert (await load(session_factory, course.id)).data == {"course_id": 42}

    @pytest.mark.asyncio
    async def test_integer_ids_accepted_in_batches(self, service, make_user):
        user = await make_user()

        submission = await service.create_batch_notifications([
            notification_for(user, type=NotificationType.DISCUSSION, data={"thread_id": 7, "post_id": 81}),
        ])

        assert submission.dropped == 0
        assert submission.notifications[0].data == {"thread_id": 7, "post_id": 81}

    @pytest.mark.asyncio
    async def test_disabled_type_is_suppressed(self, service, make_user, set_preferences, job_queue, session_factory):
        user = await make_user()
        await set_preferences(user, type_preferences={"ACHIEVEMENT": False})

        result = await service.create_notification(notification_for(user, type=NotificationType.ACHIEVEMENT))

        assert isinstance(result, SuppressedByPreference)
        assert result.type == NotificationType.ACHIEVEMENT
        assert job_queue.get_jobs() == []
        async with session_factory() as session:
            assert await NotificationRepository(session).count(NotificationFilters(user_id=user.id)) == 0

    @pytest.mark.asyncio
    async def test_other_types_unaffected_by_disabled_type(self, service, make_user, set_preferences):
        user = await make_user()
        await set_preferences(user, type_preferences={"ACHIEVEMENT": False})

        result = await service.create_notification(notification_for(user, type=NotificationType.REMINDER))

        assert isinstance(result, Notification)


class TestQuietHours:
    @pytest.mark.asyncio
    async def test_deferred_to_end_of_window(self, service, make_user, set_preferences, job_queue, clock):
        user = await make_user()
        await set_preferences(user, quiet_hours_start="22:00", quiet_hours_end="06:00", timezone="UTC")
        clock.set(datetime(2026, 3, 10, 23, 30, tzinfo=timezone.utc))

        notification = await service.create_notification(notification_for(user))

        expected = datetime(2026, 3, 11, 6, 0, tzinfo=timezone.utc)
        assert ensure_utc(notification.scheduled_for) == expected
        job = job_queue.get_jobs(job_type=JobType.PUSH_FANOUT)[0]
        assert job.run_at == expected

    @pytest.mark.asyncio
    async def test_outside_window_delivers_now(self, service, make_user, set_preferences, job_queue, clock):
        user = await make_user()
        await set_preferences(user, quiet_hours_start="22:00", quiet_hours_end="06:00", timezone="UTC")

        notification = await service.create_notification(notification_for(user))

        assert ensure_utc(notification.scheduled_for) == clock()
        assert job_queue.get_jobs(job_type=JobType.PUSH_FANOUT)[0].run_at == clock()

    @pytest.mark.asyncio
    async def test_explicit_schedule_wins(self, service, make_user, set_preferences, job_queue, clock):
        user = await make_user()
        await set_preferences(user, quiet_hours_start="22:00", quiet_hours_end="06:00")
        clock.set(datetime(2026, 3, 10, 23, 30, tzinfo=timezone.utc))
        scheduled = datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc)

        await service.create_notification(notification_for(user, scheduled_for=scheduled))

        assert job_queue.get_jobs(job_type=JobType.PUSH_FANOUT)[0].run_at == scheduled

    @pytest.mark.asyncio
    async def test_immediate_ignores_delay(self, service, make_user, job_queue, clock):
        user = await make_user()
        scheduled = clock() + timedelta(hours=2)

        notification = await service.create_notification(
            notification_for(user, scheduled_for=scheduled, immediate=True)
        )

        assert ensure_utc(notification.scheduled_for) == scheduled
        assert job_queue.get_jobs(job_type=JobType.PUSH_FANOUT)[0].run_at == clock()


# ============================================================================
# Batch submission
# ============================================================================

class TestCreateBatch:
    @pytest.mark.asyncio
    async def test_drops_disabled_and_unknown(self, service, make_user, set_preferences, job_queue):
        alice = await make_user(full_name="Alice")
        bob = await make_user(full_name="Bob")
        await set_preferences(bob, type_preferences={"PEER_MATCH": False})

        items = [
            notification_for(alice, type=NotificationType.PEER_MATCH, data={"match_id": "m-1"}),
            notification_for(bob, type=NotificationType.PEER_MATCH, data={"match_id": "m-1"}),
            notification_for(bob, type=NotificationType.GENERAL),
            NotificationCreate(user_id=uuid4(), type=NotificationType.GENERAL, title="x", message="y"),
        ]

        submission = await service.create_batch_notifications(items, delay=30)

        assert submission.batch_id.startswith("batch-")
        assert submission.group_key == submission.batch_id
        assert submission.dropped == 2
        assert len(submission.notifications) == 2
        assert all(n.group_key == submission.batch_id for n in submission.notifications)

        job = job_queue.get_job(submission.job_id)
        assert job.job_type == JobType.BATCH_INGEST
        assert job.status == JobStatus.WAITING
        assert len(job.payload["notifications"]) == 2

    @pytest.mark.asyncio
    async def test_nothing_accepted_queues_nothing(self, service, make_user, set_preferences, job_queue):
        user = await make_user()
        await set_preferences(user, type_preferences={"GENERAL": False})

        submission = await service.create_batch_notifications([notification_for(user)])

        assert submission.job_id is None
        assert submission.dropped == 1
        assert job_queue.get_jobs() == []


# ============================================================================
# Listing & stats
# ============================================================================

class TestListing:
    @pytest.mark.asyncio
    async def test_newest_first_with_pagination(self, service, make_user, clock):
        user = await make_user()
        for n in range(3):
            await service.create_notification(notification_for(user, title=f"Update {n}"))
            clock.advance(minutes=1)

        page = await service.get_notifications(NotificationFilters(user_id=user.id, limit=2))

        assert page.total == 3
        assert page.has_more is True
        assert [item.title for item in page.items] == ["Update 2", "Update 1"]

        last = await service.get_notifications(NotificationFilters(user_id=user.id, limit=2, offset=2))
        assert [item.title for item in last.items] == ["Update 0"]
        assert last.has_more is False

    @pytest.mark.asyncio
    async def test_filters_by_type(self, service, make_user):
        user = await make_user()
        await service.create_notification(notification_for(user, type=NotificationType.REMINDER))
        await service.create_notification(notification_for(user, type=NotificationType.GENERAL))

        page = await service.get_notifications(NotificationFilters(user_id=user.id, type=NotificationType.REMINDER))

        assert page.total == 1
        assert page.items[0].type == NotificationType.REMINDER

    @pytest.mark.asyncio
    async def test_stats(self, service, make_user, session_factory, job_queue, clock):
        user = await make_user()
        first = await service.create_notification(notification_for(user, type=NotificationType.REMINDER))
        await service.create_notification(notification_for(user, type=NotificationType.REMINDER))
        await service.create_notification(notification_for(user, type=NotificationType.COURSE, data={"course_id": "c"}))

        async with session_factory() as session:
            await NotificationService(session, job_queue, clock=clock).mark_as_read(first.id, user.id)

        async with session_factory() as session:
            stats = await NotificationService(session, job_queue, clock=clock).get_notification_stats(user.id)

        assert stats.total_count == 3
        assert stats.unread_count == 2
        assert stats.read_count == 1
        assert stats.type_stats == {"REMINDER": 2, "COURSE": 1}


# ============================================================================
# Status transitions
# ============================================================================

class TestStatusTransitions:
    @pytest.mark.asyncio
    async def test_mark_as_read_once(self, service, make_user, session_factory, clock):
        user = await make_user()
        notification = await service.create_notification(notification_for(user))

        await service.mark_as_read(notification.id, user.id)

        stored = await load(session_factory, notification.id)
        assert stored.status == NotificationStatus.READ.value
        assert ensure_utc(stored.read_at) == clock()

        with pytest.raises(NotificationNotFoundError):
            await service.mark_as_read(notification.id, user.id)

    @pytest.mark.asyncio
    async def test_cannot_touch_other_users_notification(self, service, make_user, session_factory):
        owner = await make_user()
        intruder = await make_user()
        notification = await service.create_notification(notification_for(owner))

        with pytest.raises(NotificationNotFoundError):
            await service.mark_as_read(notification.id, intruder.id)
        with pytest.raises(NotificationNotFoundError):
            await service.archive_notification(notification.id, intruder.id)
        with pytest.raises(NotificationNotFoundError):
            await service.dismiss_notification(notification.id, intruder.id)

        stored = await load(session_factory, notification.id)
        assert stored.status == NotificationStatus.UNREAD.value

    @pytest.mark.asyncio
    async def test_missing_notification(self, service, make_user):
        user = await make_user()

        with pytest.raises(NotificationNotFoundError):
            await service.mark_as_read(uuid4(), user.id)

    @pytest.mark.asyncio
    async def test_mark_multiple_counts_only_unread_owned(self, service, make_user):
        user = await make_user()
        other = await make_user()
        mine = [await service.create_notification(notification_for(user)) for _ in range(3)]
        theirs = await service.create_notification(notification_for(other))
        await service.mark_as_read(mine[0].id, user.id)

        updated = await service.mark_multiple_as_read([n.id for n in mine] + [theirs.id], user.id)

        assert updated == 2

    @pytest.mark.asyncio
    async def test_archive_is_idempotent(self, service, make_user, session_factory):
        user = await make_user()
        notification = await service.create_notification(notification_for(user))

        await service.archive_notification(notification.id, user.id)
        await service.archive_notification(notification.id, user.id)

        stored = await load(session_factory, notification.id)
        assert stored.status == NotificationStatus.ARCHIVED.value

    @pytest.mark.asyncio
    async def test_dismissed_is_terminal(self, service, make_user, session_factory):
        user = await make_user()
        notification = await service.create_notification(notification_for(user))

        await service.dismiss_notification(notification.id, user.id)

        with pytest.raises(NotificationNotFoundError):
            await service.archive_notification(notification.id, user.id)
        with pytest.raises(NotificationNotFoundError):
            await service.mark_as_read(notification.id, user.id)

        stored = await load(session_factory, notification.id)
        assert stored.status == NotificationStatus.DISMISSED.value

    @pytest.mark.asyncio
    async def test_archived_cannot_be_dismissed(self, service, make_user):
        user = await make_user()
        notification = await service.create_notification(notification_for(user))
        await service.archive_notification(notification.id, user.id)

        with pytest.raises(NotificationNotFoundError):
            await service.dismiss_notification(notification.id, user.id)


# ============================================================================
# Push subscriptions
# ============================================================================

class TestPushSubscriptions:
    @staticmethod
    def subscription(endpoint: str = "https://fcm.googleapis.com/fcm/send/abc123") -> SubscriptionCreate:
        return SubscriptionCreate(
            endpoint=endpoint,
            keys=SubscriptionKeys(p256dh="p256dh-key", auth="auth-key"),
            user_agent="Mozilla/5.0",
        )

    @pytest.mark.asyncio
    async def test_subscribe_twice_keeps_one_row(self, service, make_user, session_factory):
        user = await make_user()

        first = await service.subscribe_to_push(user.id, self.subscription())
        second = await service.subscribe_to_push(user.id, self.subscription())

        assert first.id == second.id
        async with session_factory() as session:
            active = await NotificationSubscriptionRepository(session).find_active(user.id)
        assert len(active) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_then_resubscribe(self, service, make_user, session_factory):
        user = await make_user()
        created = await service.subscribe_to_push(user.id, self.subscription())

        assert await service.unsubscribe_from_push(user.id, created.endpoint) == 1
        assert await service.unsubscribe_from_push(user.id, created.endpoint) == 0

        async with session_factory() as session:
            row = await session.get(NotificationSubscription, created.id)
            assert row.is_active is False

        again = await service.subscribe_to_push(user.id, self.subscription())
        assert again.id == created.id
        assert again.is_active is True

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            await service.subscribe_to_push(uuid4(), self.subscription())


# ============================================================================
# Preferences
# ============================================================================

class TestPreferences:
    @pytest.mark.asyncio
    async def test_defaults_created_on_first_read(self, service, make_user):
        user = await make_user()

        preferences = await service.get_preferences(user.id)

        assert preferences.push_enabled is True
        assert preferences.email_enabled is True
        assert preferences.digest_enabled is False
        assert preferences.timezone == "UTC"
        assert preferences.type_preferences == {}

    @pytest.mark.asyncio
    async def test_partial_update(self, service, make_user):
        user = await make_user()

        await service.update_preferences(user.id, PreferenceUpdate(push_enabled=False))
        preferences = await service.update_preferences(
            user.id, PreferenceUpdate(quiet_hours_start="22:00", quiet_hours_end="07:00")
        )

        assert preferences.push_enabled is False
        assert preferences.quiet_hours_start == "22:00"
        assert preferences.email_enabled is True

    @pytest.mark.asyncio
    async def test_enabling_digest_schedules_next_run(self, service, make_user, job_queue):
        user = await make_user()

        await service.update_preferences(
            user.id, PreferenceUpdate(digest_enabled=True, digest_frequency="daily", digest_time="09:00")
        )

        jobs = job_queue.get_jobs(job_type=JobType.DIGEST_BUILD)
        assert len(jobs) == 1
        # 10:00 now, so the next 09:00 is tomorrow
        assert jobs[0].run_at == datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)
        assert jobs[0].id == f"digest:{user.id}:{jobs[0].run_at.isoformat()}"

    @pytest.mark.asyncio
    async def test_unrelated_change_does_not_reschedule(self, service, make_user, job_queue):
        user = await make_user()
        await service.update_preferences(user.id, PreferenceUpdate(digest_enabled=True))

        await service.update_preferences(user.id, PreferenceUpdate(push_enabled=False))
        await service.update_preferences(user.id, PreferenceUpdate(digest_enabled=True))

        assert len(job_queue.get_jobs(job_type=JobType.DIGEST_BUILD)) == 1

    @pytest.mark.asyncio
    async def test_digest_time_change_starts_new_chain(self, service, make_user, job_queue):
        user = await make_user()
        await service.update_preferences(user.id, PreferenceUpdate(digest_enabled=True, digest_time="09:00"))

        await service.update_preferences(user.id, PreferenceUpdate(digest_time="18:00"))

        run_times = sorted(job.run_at for job in job_queue.get_jobs(job_type=JobType.DIGEST_BUILD))
        assert run_times == [
            datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc),
        ]

    def test_invalid_values_rejected_by_schema(self):
        with pytest.raises(ValueError):
            PreferenceUpdate(quiet_hours_start="25:00")
        with pytest.raises(ValueError):
            PreferenceUpdate(timezone="Nowhere/City")
