"""
Notification Endpoints

Endpoints:
----------
- GET    /notifications                  - List notifications (filters, pagination)
- POST   /notifications                  - Create a notification for the current user
- POST   /notifications/batch            - Queue a batch for any users
- POST   /notifications/read             - Mark several as read
- POST   /notifications/{id}/read        - Mark one as read
- POST   /notifications/{id}/archive     - Archive
- POST   /notifications/{id}/dismiss     - Dismiss
- GET    /notifications/stats            - Unread/read/total counts
- GET    /notifications/preferences      - Delivery preferences
- PUT    /notifications/preferences      - Update delivery preferences
- POST   /notifications/subscriptions    - Register a web push subscription
- DELETE /notifications/subscriptions    - Deactivate a web push subscription
- GET    /notifications/queue-status     - Per-queue job counts
"""

import logging
from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_current_user, get_job_queue, get_notification_service
from app.models.user import User
from app.queue import ALL_QUEUES, JobQueue, QueueError
from app.schemas.notification import (
    BatchCreateRequest,
    BatchSubmission,
    MarkReadRequest,
    MarkReadResult,
    NotificationCreate,
    NotificationCreateRequest,
    NotificationCreateResult,
    NotificationFilters,
    NotificationPage,
    NotificationPriority,
    NotificationResponse,
    NotificationStats,
    NotificationStatus,
    NotificationType,
    SuppressedByPreference,
)
from app.schemas.preference import (
    PreferenceResponse,
    PreferenceUpdate,
    SubscriptionCreate,
    SubscriptionDelete,
    SubscriptionResponse,
)
from app.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
    NotificationValidationError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ============================================================
# LIST / CREATE
# ============================================================

@router.get(
    "",
    response_model=NotificationPage,
    summary="List notifications for the current user",
)
async def list_notifications(
    type: Optional[NotificationType] = Query(None),
    status_filter: Optional[NotificationStatus] = Query(None, alias="status"),
    priority: Optional[NotificationPriority] = Query(None),
    group_key: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    filters = NotificationFilters(
        user_id=current_user.id,
        type=type,
        status=status_filter,
        priority=priority,
        group_key=group_key,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return await service.get_notifications(filters)


@router.post(
    "",
    response_model=NotificationCreateResult,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Notification accepted"},
        422: {"description": "Invalid notification"},
    }
)
async def create_notification(
    request: NotificationCreateRequest,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Create a notification for the authenticated user.

    If the user switched this type off, nothing is stored and
    `notification` is null.
    """
    opts = NotificationCreate(user_id=current_user.id, **request.model_dump())
    try:
        result = await service.create_notification(opts)
    except NotificationValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except QueueError as e:
        logger.error(f"Failed to queue notification delivery: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification queue unavailable")

    if isinstance(result, SuppressedByPreference):
        return NotificationCreateResult(notification=None)
    return NotificationCreateResult(notification=NotificationResponse.model_validate(result))


@router.post(
    "/batch",
    response_model=BatchSubmission,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_batch(
    request: BatchCreateRequest,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Queue notifications for several users at once.

    Items for unknown users or disabled types are dropped and counted
    in `dropped`.
    """
    try:
        return await service.create_batch_notifications(request.notifications, delay=request.delay)
    except QueueError as e:
        logger.error(f"Failed to queue batch: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification queue unavailable")


# ============================================================
# STATUS CHANGES
# ============================================================

@router.post("/read", response_model=MarkReadResult)
async def mark_multiple_as_read(
    request: MarkReadRequest,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    updated = await service.mark_multiple_as_read(request.notification_ids, current_user.id)
    return MarkReadResult(updated=updated)


@router.post(
    "/{notification_id}/read",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Notification not found"}},
)
async def mark_as_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        await service.mark_as_read(notification_id, current_user.id)
    except NotificationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post(
    "/{notification_id}/archive",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Notification not found"}},
)
async def archive_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        await service.archive_notification(notification_id, current_user.id)
    except NotificationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post(
    "/{notification_id}/dismiss",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Notification not found"}},
)
async def dismiss_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        await service.dismiss_notification(notification_id, current_user.id)
    except NotificationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================================
# STATS
# ============================================================

@router.get("/stats", response_model=NotificationStats)
async def notification_stats(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.get_notification_stats(current_user.id)


# ============================================================
# PREFERENCES
# ============================================================

@router.get("/preferences", response_model=PreferenceResponse)
async def get_preferences(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        return await service.get_preferences(current_user.id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/preferences", response_model=PreferenceResponse)
async def update_preferences(
    update: PreferenceUpdate,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        return await service.update_preferences(current_user.id, update)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================================
# PUSH SUBSCRIPTIONS
# ============================================================

@router.post(
    "/subscriptions",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def subscribe(
    subscription: SubscriptionCreate,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """Register (or refresh) the browser's push subscription."""
    try:
        return await service.subscribe_to_push(current_user.id, subscription)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/subscriptions")
async def unsubscribe(
    subscription: SubscriptionDelete,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    count = await service.unsubscribe_from_push(current_user.id, subscription.endpoint)
    return {"deactivated": count}


# ============================================================
# QUEUE STATUS
# ============================================================

@router.get("/queue-status", response_model=Dict[str, Dict[str, int]])
async def queue_status(
    current_user: User = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
):
    """Waiting/active/completed/failed/delayed counts for every queue."""
    try:
        return {name: (await queue.get_stats(name)).to_dict() for name in ALL_QUEUES}
    except QueueError as e:
        logger.error(f"Failed to read queue stats: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queue status unavailable")
