"""
Preference & Subscription Schemas
"""

from datetime import datetime
from typing import Dict, Optional
from uuid import UUID
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.notification import NotificationType
from app.utils.time_utils import get_zone, parse_hhmm


class DigestFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


# Defaults applied when a preference row is created lazily
DEFAULT_PREFERENCES = {
    "email_enabled": True,
    "push_enabled": True,
    "in_app_enabled": True,
    "type_preferences": {},
    "quiet_hours_start": None,
    "quiet_hours_end": None,
    "timezone": "UTC",
    "digest_enabled": False,
    "digest_frequency": DigestFrequency.DAILY.value,
    "digest_time": "09:00",
    "batching_enabled": True,
    "batching_delay": 300,
}

DIGEST_FIELDS = ("digest_enabled", "digest_frequency", "digest_time", "timezone")


class PreferenceUpdate(BaseModel):
    """
    Partial preference update. Only fields that are set get written.
    """
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None
    type_preferences: Optional[Dict[NotificationType, bool]] = None
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    timezone: Optional[str] = None
    digest_enabled: Optional[bool] = None
    digest_frequency: Optional[DigestFrequency] = None
    digest_time: Optional[str] = None
    batching_enabled: Optional[bool] = None
    batching_delay: Optional[int] = Field(default=None, ge=0, le=86400)

    @field_validator("quiet_hours_start", "quiet_hours_end", "digest_time")
    def validate_hhmm(cls, v):
        if v is None:
            return v
        parse_hhmm(v)
        return v

    @field_validator("timezone")
    def validate_timezone(cls, v):
        if v is None:
            return v
        get_zone(v)
        return v

    def to_fields(self) -> dict:
        """
        Column values for the fields the caller actually sent.

        An explicit null only clears the quiet-hours window; for every
        other column it is ignored.
        """
        fields = self.model_dump(exclude_unset=True, mode="json")
        return {
            key: value
            for key, value in fields.items()
            if value is not None or key in ("quiet_hours_start", "quiet_hours_end")
        }


class PreferenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    email_enabled: bool
    push_enabled: bool
    in_app_enabled: bool
    type_preferences: Dict[str, bool]
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    timezone: str
    digest_enabled: bool
    digest_frequency: DigestFrequency
    digest_time: str
    batching_enabled: bool
    batching_delay: int


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class SubscriptionCreate(BaseModel):
    """Browser PushSubscription JSON plus the user agent."""
    endpoint: str = Field(..., min_length=1)
    keys: SubscriptionKeys
    user_agent: Optional[str] = Field(default=None, max_length=500)


class SubscriptionDelete(BaseModel):
    endpoint: str = Field(..., min_length=1)


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    endpoint: str
    user_agent: Optional[str] = None
    is_active: bool
    last_used: Optional[datetime] = None
