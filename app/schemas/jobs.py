"""
Job Payload Schemas

Payloads travel through the queue as plain JSON dicts
(model_dump(mode="json")) and are validated again by the processor
that picks them up.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.notification import NotificationCreate
from app.schemas.preference import DigestFrequency


class PushSubscriptionInfo(BaseModel):
    endpoint: str
    p256dh_key: str
    auth_key: str


class PushAction(BaseModel):
    action: str
    title: str


class PushMessage(BaseModel):
    """The JSON body the service worker receives."""
    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    actions: Optional[List[PushAction]] = None


class PushFanoutPayload(BaseModel):
    """
    push-fanout job.

    When subscriptions/message are missing (single create path) the
    processor resolves them itself at dispatch time.
    """
    user_id: UUID
    group_key: str
    notification_ids: List[UUID] = Field(default_factory=list)
    subscriptions: Optional[List[PushSubscriptionInfo]] = None
    message: Optional[PushMessage] = None


class BatchIngestPayload(BaseModel):
    batch_id: str
    group_key: str
    notifications: List[NotificationCreate]


class DigestPayload(BaseModel):
    """
    digest-build job.

    frequency/digest_time/timezone are the settings the job was
    scheduled under; a job whose settings no longer match the user's
    is stale.
    """
    user_id: UUID
    frequency: DigestFrequency
    digest_time: str = "09:00"
    timezone: str = "UTC"


class EmailPayload(BaseModel):
    to: str
    subject: str
    template: str
    data: Dict[str, Any] = Field(default_factory=dict)


class SweepPayload(BaseModel):
    max_age_days: int = Field(default=30, ge=1)
