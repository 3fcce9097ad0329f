"""
Notification Data Payloads

Each notification type carries its own `data` shape. Producers pass a
plain dict; parse_notification_data() checks it against the model
registered for the type and returns the dict to store.

The models only validate. What gets stored is the producer's dict
itself (made JSON-safe), so the payload round-trips unchanged: a
date-only string stays a date-only string, an integer id stays an
integer.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict
from pydantic_core import to_jsonable_python

from app.schemas.notification import NotificationType

# Producers use both database ids and slugs
ObjectId = Union[int, str]


class NotificationData(BaseModel):
    """Base for all payloads. Unknown keys are allowed."""
    model_config = ConfigDict(extra="allow")


class GenericData(NotificationData):
    """SYSTEM, COLLABORATION and GENERAL notifications."""
    pass


class CourseData(NotificationData):
    course_id: ObjectId
    course_title: Optional[str] = None


class AssignmentData(NotificationData):
    assignment_id: ObjectId
    course_id: Optional[ObjectId] = None
    due_at: Optional[datetime] = None


class DiscussionData(NotificationData):
    thread_id: ObjectId
    post_id: Optional[ObjectId] = None


class PeerMatchData(NotificationData):
    match_id: ObjectId
    peer_user_id: Optional[ObjectId] = None
    score: Optional[float] = None


class AchievementData(NotificationData):
    """ACHIEVEMENT and GAMIFICATION."""
    achievement_id: Optional[ObjectId] = None
    badge: Optional[str] = None
    xp: Optional[int] = None


class ReminderData(NotificationData):
    reference_id: Optional[ObjectId] = None
    remind_at: Optional[datetime] = None


class ResourceData(NotificationData):
    resource_id: ObjectId
    resource_title: Optional[str] = None


class AIRecommendationData(NotificationData):
    recommendation_id: Optional[ObjectId] = None
    confidence: Optional[float] = None

DATA_MODELS: Dict[NotificationType, Type[NotificationData]] = {
    NotificationType.SYSTEM: GenericData,
    NotificationType.COURSE: CourseData,
    NotificationType.ASSIGNMENT: AssignmentData,
    NotificationType.DISCUSSION: DiscussionData,
    NotificationType.PEER_MATCH: PeerMatchData,
    NotificationType.ACHIEVEMENT: AchievementData,
    NotificationType.REMINDER: ReminderData,
    NotificationType.COLLABORATION: GenericData,
    NotificationType.RESOURCE: ResourceData,
    NotificationType.GAMIFICATION: AchievementData,
    NotificationType.AI_RECOMMENDATION: AIRecommendationData,
    NotificationType.GENERAL: GenericData,
}


def parse_notification_data(
    notification_type: NotificationType,
    data: Optional[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    """
    Validate a payload for its notification type.

    Returns:
        The JSON-serializable dict to persist, or None when no data was given

    Raises:
        pydantic.ValidationError: If the payload does not match the type
    """
    if data is None:
        return None

    model = DATA_MODELS.get(notification_type, GenericData)
    model.model_validate(data)
    return to_jsonable_python(data)
