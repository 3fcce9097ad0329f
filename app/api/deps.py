from fastapi import HTTPException, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import uuid
import logging

from app.db.database import get_db
from app.models import User
from app.core.security import verify_access_token
from app.queue import JobQueue
from app.repositories.user_repo import UserRepository
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Security scheme for Swagger UI
security = HTTPBearer()


# =====================================================
# Get Current user
# =====================================================
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Dependency that validates JWT token and returns current user.

    Raises:
        HTTPException 401: If token is invalid, or the user is unknown or inactive
    """
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"}
    )

    subject = verify_access_token(credentials.credentials)
    if not subject:
        raise unauthorized

    try:
        user_id = uuid.UUID(subject)
    except ValueError:
        raise unauthorized

    user = await UserRepository(db).get_by_id(user_id)
    if not user or not user.is_active:
        raise unauthorized

    return user


# =====================================================
# Job Queue & Service
# =====================================================
def get_job_queue(request: Request) -> JobQueue:
    """The queue created during application startup."""
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue not available"
        )
    return queue


def get_notification_service(
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue)
) -> NotificationService:
    return NotificationService(db, queue)
