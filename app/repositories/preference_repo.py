"""
Notification Preference Repository

One row per user, created lazily with defaults.
"""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.repositories.base import BaseRepository
from app.models.notification_preference import NotificationPreference
from app.schemas.preference import DEFAULT_PREFERENCES


class NotificationPreferenceRepository(BaseRepository[NotificationPreference]):
    """Repository for NotificationPreference model."""

    def __init__(self, db: AsyncSession):
        super().__init__(NotificationPreference, db)

    async def get_by_user(self, user_id: UUID) -> Optional[NotificationPreference]:
        """Preferences for a user, or None if never saved."""
        result = await self.db.execute(
            select(self.model).where(self.model.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: UUID) -> NotificationPreference:
        """Preferences for a user, creating the default row on first read."""
        preferences = await self.get_by_user(user_id)
        if preferences:
            return preferences

        try:
            return await self.create(user_id=user_id, **DEFAULT_PREFERENCES)
        except IntegrityError:
            # Another request created the row first
            await self.db.rollback()
            return await self.get_by_user(user_id)

    async def upsert(self, user_id: UUID, **fields: Any) -> NotificationPreference:
        """
        Write the given fields, creating the row with defaults if needed.

        Calling it twice with the same fields leaves the same row.
        """
        preferences = await self.get_or_create(user_id)
        if not fields:
            return preferences
        return await self.update(preferences.id, **fields)
