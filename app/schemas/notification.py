"""
Notification Schemas
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ============================================================
# ENUMS - Typed Constants
# ============================================================
class NotificationType(str, Enum):
    SYSTEM = "SYSTEM"
    COURSE = "COURSE"
    ASSIGNMENT = "ASSIGNMENT"
    DISCUSSION = "DISCUSSION"
    PEER_MATCH = "PEER_MATCH"
    ACHIEVEMENT = "ACHIEVEMENT"
    REMINDER = "REMINDER"
    COLLABORATION = "COLLABORATION"
    RESOURCE = "RESOURCE"
    GAMIFICATION = "GAMIFICATION"
    AI_RECOMMENDATION = "AI_RECOMMENDATION"
    GENERAL = "GENERAL"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationStatus(str, Enum):
    """
    Notification lifecycle status.

    UNREAD -> READ -> ARCHIVED. ARCHIVED and DISMISSED are terminal.
    """
    UNREAD = "UNREAD"
    READ = "READ"
    ARCHIVED = "ARCHIVED"      # Eligible for the cleanup sweep
    DISMISSED = "DISMISSED"    # Hidden by the client, never swept


# ============================================================
# INPUT SCHEMAS
# ============================================================

class NotificationCreate(BaseModel):
    """
    Options for creating one notification.

    Producers (courses, matching, gamification...) build this and hand
    it to NotificationService.create_notification().
    """
    user_id: UUID
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    action_url: Optional[str] = Field(default=None, max_length=1000)
    action_text: Optional[str] = Field(default=None, max_length=100)
    data: Optional[Dict[str, Any]] = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    scheduled_for: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    group_key: Optional[str] = Field(default=None, max_length=100)
    immediate: bool = False


class NotificationCreateRequest(BaseModel):
    """HTTP body for creating a notification for the current user."""
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    action_url: Optional[str] = Field(default=None, max_length=1000)
    action_text: Optional[str] = Field(default=None, max_length=100)
    data: Optional[Dict[str, Any]] = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    scheduled_for: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    group_key: Optional[str] = Field(default=None, max_length=100)
    immediate: bool = False


class BatchCreateRequest(BaseModel):
    """
    The whole batch is ingested after `delay`. An item's scheduled_for
    then holds back its push until that time, unless the item is
    immediate; items that expire before ingest are dropped.
    """
    notifications: List[NotificationCreate] = Field(..., min_length=1, max_length=1000)
    delay: Optional[int] = Field(default=None, ge=0, description="Seconds before the batch is ingested")


class NotificationFilters(BaseModel):
    """Query filters for listing notifications."""
    user_id: Optional[UUID] = None
    type: Optional[NotificationType] = None
    status: Optional[NotificationStatus] = None
    priority: Optional[NotificationPriority] = None
    group_key: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class MarkReadRequest(BaseModel):
    notification_ids: List[UUID] = Field(..., min_length=1)


# ============================================================
# RESPONSE SCHEMAS
# ============================================================

class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    type: NotificationType
    status: NotificationStatus
    priority: NotificationPriority
    title: str
    message: str
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    scheduled_for: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    group_key: Optional[str] = None
    batch_id: Optional[str] = None
    push_sent: bool = False
    delivered: bool = False
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationPage(BaseModel):
    items: List[NotificationResponse]
    total: int
    has_more: bool


class NotificationStats(BaseModel):
    unread_count: int
    total_count: int
    read_count: int
    type_stats: Dict[str, int]


class BatchSubmission(BaseModel):
    """What createBatch hands back: the accepted items, not yet persisted."""
    batch_id: str
    group_key: str
    notifications: List[NotificationCreate]
    dropped: int
    job_id: Optional[str] = None


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass(frozen=True)
class SuppressedByPreference:
    """
    Outcome of a create call for a type the user has switched off.

    Not an error: nothing is stored and nothing is queued. Callers
    outside the service should treat it exactly like "no notification".
    """
    user_id: UUID
    type: NotificationType


class NotificationCreateResult(BaseModel):
    """
    HTTP result of a create call.

    A notification suppressed by preference comes back as
    notification=None, same as any other accepted request.
    """
    success: bool = True
    notification: Optional[NotificationResponse] = None


class MarkReadResult(BaseModel):
    updated: int
