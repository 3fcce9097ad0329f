from app.models.base import Base
from app.models.user import User
from app.models.notification import Notification
from app.models.notification_preference import NotificationPreference
from app.models.notification_subscription import NotificationSubscription

__all__ = [
    "Base",
    "User",
    "Notification",
    "NotificationPreference",
    "NotificationSubscription",
]
