from sqlalchemy import Column, String, Boolean, ForeignKey, Integer, Uuid, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .base import BaseModel


class NotificationPreference(BaseModel):
    __tablename__ = "notification_preferences"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # Channel toggles
    email_enabled = Column(Boolean, default=True, nullable=False)
    push_enabled = Column(Boolean, default=True, nullable=False)
    in_app_enabled = Column(Boolean, default=True, nullable=False)

    # {"COURSE": false} disables a type; missing keys mean enabled
    type_preferences = Column(JSON().with_variant(JSONB(), "postgresql"), default=dict, nullable=False)

    quiet_hours_start = Column(String(5), nullable=True)  # "22:00", local to timezone
    quiet_hours_end = Column(String(5), nullable=True)
    timezone = Column(String(64), default="UTC", nullable=False)

    digest_enabled = Column(Boolean, default=False, nullable=False)
    digest_frequency = Column(String(10), default="daily", nullable=False)  # daily, weekly
    digest_time = Column(String(5), default="09:00", nullable=False)

    batching_enabled = Column(Boolean, default=True, nullable=False)
    batching_delay = Column(Integer, default=300, nullable=False)  # seconds

    user = relationship("User", back_populates="notification_preference")
