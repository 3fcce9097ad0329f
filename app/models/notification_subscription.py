from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from .base import BaseModel


class NotificationSubscription(BaseModel):
    """One registered web push endpoint (a browser or device)."""

    __tablename__ = "notification_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_notification_subscriptions_user_endpoint"),
    )

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(Text, nullable=False)
    p256dh_key = Column(String(255), nullable=False)
    auth_key = Column(String(255), nullable=False)
    user_agent = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    last_used = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="push_subscriptions")
