"""
User Repository

Data access layer for User model.
Users are owned by the wider platform; the notification pipeline
only ever looks them up by id.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from app.repositories.base import BaseRepository
from app.models import User

class UserRepository(BaseRepository[User]):
    """Repository for User model."""

    def __init__(self, db: AsyncSession):
        super().__init__(User, db)
