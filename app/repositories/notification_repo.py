"""
Notification Repository

Data access layer for Notification model.

All mutations are conditional updates scoped by owner and current
status, so concurrent writers never need explicit locks: whoever
matches the WHERE clause wins, everyone else sees zero rows.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.repositories.base import BaseRepository
from app.models.notification import Notification
from app.schemas.notification import NotificationFilters, NotificationStatus


class NotificationRepository(BaseRepository[Notification]):
    """
    Repository for Notification model.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(Notification, db)

    # ============================================================
    # QUERY METHODS - Reading Data
    # ============================================================

    def _apply_filters(self, stmt, filters: NotificationFilters):
        """Add WHERE clauses for every filter that is set."""
        if filters.user_id is not None:
            stmt = stmt.where(self.model.user_id == filters.user_id)
        if filters.type is not None:
            stmt = stmt.where(self.model.type == filters.type.value)
        if filters.status is not None:
            stmt = stmt.where(self.model.status == filters.status.value)
        if filters.priority is not None:
            stmt = stmt.where(self.model.priority == filters.priority.value)
        if filters.group_key is not None:
            stmt = stmt.where(self.model.group_key == filters.group_key)
        if filters.date_from is not None:
            stmt = stmt.where(self.model.created_at >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(self.model.created_at <= filters.date_to)
        return stmt

    async def find(self, filters: NotificationFilters) -> List[Notification]:
        """
        List notifications matching the filters, newest first.
        """
        stmt = self._apply_filters(select(self.model), filters)
        stmt = (
            stmt.order_by(self.model.created_at.desc(), self.model.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count(self, filters: NotificationFilters) -> int:
        """Count notifications matching the filters (ignores limit/offset)."""
        stmt = self._apply_filters(select(func.count(self.model.id)), filters)
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def get_by_ids(
        self,
        notification_ids: Iterable[UUID],
        user_id: Optional[UUID] = None
    ) -> List[Notification]:
        ids = list(notification_ids)
        if not ids:
            return []

        stmt = select(self.model).where(self.model.id.in_(ids))
        if user_id is not None:
            stmt = stmt.where(self.model.user_id == user_id)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_unread_in_window(
        self,
        user_id: UUID,
        start: datetime,
        end: datetime,
        limit: int = 50
    ) -> List[Notification]:
        """
        Unread notifications created within [start, end], newest first.

        Used by the digest builder.
        """
        stmt = (
            select(self.model)
            .where(
                self.model.user_id == user_id,
                self.model.status == NotificationStatus.UNREAD.value,
                self.model.created_at >= start,
                self.model.created_at <= end,
            )
            .order_by(self.model.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_stats(self, user_id: UUID) -> List[Tuple[str, str, int]]:
        """
        Counts grouped by (type, status) for one user.

        One round trip; the service folds the rows into totals.
        """
        stmt = (
            select(self.model.type, self.model.status, func.count(self.model.id))
            .where(self.model.user_id == user_id)
            .group_by(self.model.type, self.model.status)
        )
        result = await self.db.execute(stmt)
        return [(row[0], row[1], row[2]) for row in result.all()]

    # ============================================================
    # CONDITIONAL UPDATES
    # ============================================================

    async def update_status(
        self,
        notification_ids: Iterable[UUID],
        user_id: UUID,
        from_statuses: Iterable[NotificationStatus],
        to_status: NotificationStatus,
        **extra: Any
    ) -> int:
        """
        Move owned notifications from one of `from_statuses` to `to_status`.

        Rows that belong to someone else or are in another status are
        left alone.

        Returns:
            Number of rows actually transitioned
        """
        ids = list(notification_ids)
        if not ids:
            return 0

        stmt = (
            update(self.model)
            .where(
                self.model.id.in_(ids),
                self.model.user_id == user_id,
                self.model.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value, **extra)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount or 0

    async def update_by_group_key(
        self,
        group_key: str,
        fields: Dict[str, Any],
        user_id: Optional[UUID] = None,
        ids: Optional[List[UUID]] = None
    ) -> int:
        """
        Write delivery fields on every notification sharing a group key.

        Batch group keys span several users, so fan-out jobs pass the
        user they delivered to, and the ids that actually went out.
        """
        stmt = update(self.model).where(self.model.group_key == group_key)
        if user_id is not None:
            stmt = stmt.where(self.model.user_id == user_id)
        if ids is not None:
            stmt = stmt.where(self.model.id.in_(ids))

        stmt = stmt.values(**fields).execution_options(synchronize_session=False)
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount or 0

    # ============================================================
    # DELETE METHODS
    # ============================================================

    async def delete_archived_older_than(self, cutoff: datetime) -> int:
        """
        Delete ARCHIVED notifications created before `cutoff`.

        Any other status is kept regardless of age.
        """
        stmt = (
            delete(self.model)
            .where(
                self.model.status == NotificationStatus.ARCHIVED.value,
                self.model.created_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount or 0
