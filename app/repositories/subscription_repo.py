"""
Notification Subscription Repository

Registered web push endpoints. Rows are never deleted: unsubscribing
(or the push service reporting an endpoint gone) only deactivates them.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.repositories.base import BaseRepository
from app.models.notification_subscription import NotificationSubscription


class NotificationSubscriptionRepository(BaseRepository[NotificationSubscription]):
    """Repository for NotificationSubscription model."""

    def __init__(self, db: AsyncSession):
        super().__init__(NotificationSubscription, db)

    async def get_by_endpoint(self, user_id: UUID, endpoint: str) -> Optional[NotificationSubscription]:
        # Bulk deactivate() bypasses the identity map; reload the row
        result = await self.db.execute(
            select(self.model)
            .where(
                self.model.user_id == user_id,
                self.model.endpoint == endpoint,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_active(self, user_id: UUID) -> List[NotificationSubscription]:
        """Active endpoints for a user, oldest first."""
        result = await self.db.execute(
            select(self.model)
            .where(
                self.model.user_id == user_id,
                self.model.is_active.is_(True),
            )
            .order_by(self.model.created_at.asc())
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        user_id: UUID,
        endpoint: str,
        p256dh_key: str,
        auth_key: str,
        user_agent: Optional[str],
        now: datetime
    ) -> NotificationSubscription:
        """
        Register an endpoint, or refresh keys and reactivate an existing one.
        """
        existing = await self.get_by_endpoint(user_id, endpoint)
        if existing:
            return await self.update(
                existing.id,
                p256dh_key=p256dh_key,
                auth_key=auth_key,
                user_agent=user_agent,
                is_active=True,
                last_used=now,
            )

        return await self.create(
            user_id=user_id,
            endpoint=endpoint,
            p256dh_key=p256dh_key,
            auth_key=auth_key,
            user_agent=user_agent,
            is_active=True,
            last_used=now,
        )

    async def deactivate(self, user_id: UUID, endpoint: str) -> int:
        """Flag an endpoint inactive. Returns rows changed."""
        result = await self.db.execute(
            update(self.model)
            .where(
                self.model.user_id == user_id,
                self.model.endpoint == endpoint,
                self.model.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def touch(self, user_id: UUID, endpoints: List[str], now: datetime) -> int:
        """Record a successful delivery on the given endpoints."""
        if not endpoints:
            return 0

        result = await self.db.execute(
            update(self.model)
            .where(
                self.model.user_id == user_id,
                self.model.endpoint.in_(endpoints),
            )
            .values(last_used=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0
