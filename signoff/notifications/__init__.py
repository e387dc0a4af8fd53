"""Notification construction and inboxes."""

from signoff.notifications.templates import (
    ACTION_NOTIFICATION_TYPES,
    TEMPLATES,
    NotificationPriority,
    NotificationTemplate,
    NotificationType,
)
from signoff.notifications.service import (
    DEFAULT_INBOX_CAPACITY,
    InboxStore,
    InMemoryInbox,
    Notification,
    NotificationEvent,
    NotificationService,
    WorkflowNotification,
    format_template,
)

__all__ = [
    # Templates
    "NotificationType",
    "NotificationPriority",
    "NotificationTemplate",
    "TEMPLATES",
    "ACTION_NOTIFICATION_TYPES",
    # Service
    "Notification",
    "NotificationEvent",
    "NotificationService",
    "WorkflowNotification",
    "InboxStore",
    "InMemoryInbox",
    "DEFAULT_INBOX_CAPACITY",
    "format_template",
]
