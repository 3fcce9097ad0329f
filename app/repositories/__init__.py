from app.repositories.base import BaseRepository
from app.repositories.user_repo import UserRepository
from app.repositories.notification_repo import NotificationRepository
from app.repositories.preference_repo import NotificationPreferenceRepository
from app.repositories.subscription_repo import NotificationSubscriptionRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "NotificationRepository",
    "NotificationPreferenceRepository",
    "NotificationSubscriptionRepository",
]
