"""
Pytest configuration and fixtures.

Provides shared fixtures for:
- A throwaway SQLite database per test
- A controllable clock
- Fake push and email transports
- An in-process job queue with every processor registered
- User / subscription / preference factories
"""

import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import uuid4

import pytest
import pytest_asyncio

# Set test environment variables before importing app modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["VAPID_PRIVATE_KEY"] = ""
os.environ["SMTP_SERVER"] = ""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.models import Base, NotificationSubscription, User
from app.queue import InMemoryJobQueue
from app.repositories.preference_repo import NotificationPreferenceRepository
from app.schemas.jobs import PushSubscriptionInfo
from app.services.notification_service import NotificationService
from app.tasks import build_worker_context, register_processors
from app.transports.base import EmailTransport, PushSubscriptionGoneError, PushTransport, TransportError


# ============================================================================
# Clock & Transports
# ============================================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


class FakePushTransport(PushTransport):
    """Records every message; endpoints in `failing` or `gone` raise."""

    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.failing: Set[str] = set()
        self.gone: Set[str] = set()

    async def send(self, subscription: PushSubscriptionInfo, payload: str) -> None:
        if subscription.endpoint in self.gone:
            raise PushSubscriptionGoneError(subscription.endpoint)
        if subscription.endpoint in self.failing:
            raise TransportError(f"Push service unavailable for {subscription.endpoint}")
        self.sent.append((subscription.endpoint, json.loads(payload)))


class FakeEmailTransport(EmailTransport):
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    async def send(self, to: str, subject: str, template: str, data: Dict[str, Any]) -> None:
        if self.fail:
            raise TransportError("SMTP server unavailable")
        self.sent.append({"to": to, "subject": subject, "template": template, "data": data})


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    """SQLite file database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notifications.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# Queue & Service Fixtures
# ============================================================================

@pytest.fixture
def clock():
    """Tuesday 2026-03-10 10:00 UTC."""
    return FakeClock(datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def push_transport():
    return FakePushTransport()


@pytest.fixture
def email_transport():
    return FakeEmailTransport()


@pytest.fixture
def job_queue(session_factory, clock, push_transport, email_transport):
    """In-process queue wired to the test database, transports and clock."""
    queue = InMemoryJobQueue(
        context=build_worker_context(
            session_factory=session_factory,
            push_transport=push_transport,
            email_transport=email_transport,
            clock=clock,
        ),
        clock=clock,
    )
    return register_processors(queue)


@pytest.fixture
def worker_ctx(job_queue):
    """ctx for calling a processor directly, as the queue would."""
    ctx = dict(job_queue.context)
    ctx.update(job_id="test-job", job_try=1, queue=job_queue)
    return ctx


@pytest.fixture
def service(db_session, job_queue, clock):
    return NotificationService(db_session, job_queue, clock=clock)


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def make_user(session_factory):
    """Factory for creating users."""
    async def _create(email: Optional[str] = None, full_name: str = "Test Student", is_active: bool = True) -> User:
        async with session_factory() as session:
            user = User(
                email=email or f"student-{uuid4().hex[:8]}@example.com",
                full_name=full_name,
                is_active=is_active,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user
    return _create


@pytest.fixture
def make_subscription(session_factory):
    """Factory for active push subscriptions."""
    async def _create(user: User, endpoint: Optional[str] = None) -> NotificationSubscription:
        async with session_factory() as session:
            subscription = NotificationSubscription(
                user_id=user.id,
                endpoint=endpoint or f"https://push.example.com/send/{uuid4().hex}",
                p256dh_key="BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM",
                auth_key="tBHItJI5svbpez7KI4CCXg",
                is_active=True,
            )
            session.add(subscription)
            await session.commit()
            await session.refresh(subscription)
            return subscription
    return _create


@pytest.fixture
def set_preferences(session_factory):
    """Write preference fields for a user."""
    async def _set(user: User, **fields):
        async with session_factory() as session:
            return await NotificationPreferenceRepository(session).upsert(user.id, **fields)
    return _set
