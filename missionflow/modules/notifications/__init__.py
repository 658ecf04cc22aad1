"""Notification sink protocol, transactional outbox, and read-state service."""

from missionflow.modules.notifications.service import NotificationService, event_name_for
from missionflow.modules.notifications.sink import NotificationSink, OutboxNotificationSink

__all__ = [
    "NotificationService",
    "NotificationSink",
    "OutboxNotificationSink",
    "event_name_for",
]
