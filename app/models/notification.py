from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Uuid, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .base import BaseModel


class Notification(BaseModel):
    __tablename__ = "notifications"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(32), nullable=False, index=True)
    status = Column(String(16), nullable=False, default="UNREAD", index=True)  # UNREAD, READ, ARCHIVED, DISMISSED
    priority = Column(String(16), nullable=False, default="NORMAL", index=True)

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String(1000), nullable=True)
    action_text = Column(String(100), nullable=True)
    data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    scheduled_for = Column(DateTime(timezone=True), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    group_key = Column(String(100), nullable=True, index=True)
    batch_id = Column(String(100), nullable=True, index=True)

    # Delivery bookkeeping - written by the job processors only
    push_sent = Column(Boolean, default=False, nullable=False)
    delivered = Column(Boolean, default=False, nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="notifications")
