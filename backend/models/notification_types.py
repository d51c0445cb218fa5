"""Notification type definitions for case transition alerts."""

from enum import Enum
from typing import NamedTuple

from repositories.db_models import CaseEntityType


class NotificationConfig(NamedTuple):
    """Configuration for a notification type."""

    topic_suffix: str
    default_priority: str  # min, low, default, high, max
    tags: str  # comma-separated emoji shortcodes


class NotificationType(Enum):
    """
    Notification types with their topic suffix, default priority, and tags.

    Each type maps to a specific ntfy topic: moderators subscribe to
    reports/activities/verifications, the session-enforcement service
    subscribes to enforcement.
    """

    REPORT = NotificationConfig("reports", "high", "rotating_light,report")
    ACTIVITY = NotificationConfig("activities", "default", "mag,robot")
    VERIFICATION = NotificationConfig("verifications", "low", "ticket")
    ENFORCEMENT = NotificationConfig("enforcement", "urgent", "no_entry")
    CRITICAL = NotificationConfig("critical", "max", "skull,warning")

    @property
    def topic_suffix(self) -> str:
        """Get the topic suffix for this notification type."""
        return self.value.topic_suffix

    @property
    def default_priority(self) -> str:
        """Get the default priority for this notification type."""
        return self.value.default_priority

    @property
    def tags(self) -> str:
        """Get the tags for this notification type."""
        return self.value.tags

    @classmethod
    def for_entity(cls, entity_type: CaseEntityType) -> "NotificationType":
        """Topic that carries transitions of the given case kind."""
        return _ENTITY_TOPICS[entity_type]


_ENTITY_TOPICS = {
    CaseEntityType.FRAUD_REPORT: NotificationType.REPORT,
    CaseEntityType.SUSPICIOUS_ACTIVITY: NotificationType.ACTIVITY,
    CaseEntityType.TICKET_VERIFICATION: NotificationType.VERIFICATION,
    CaseEntityType.USER_SUSPENSION: NotificationType.ENFORCEMENT,
}
