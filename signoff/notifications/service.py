"""
Notification construction and per-user inboxes.

The service turns events into ``Notification`` records and keeps a bounded
inbox per user. Actual delivery (email, push, in-app) is someone else's
job; this module only builds and stores the records.

Example:
    ```python
    from signoff.notifications import NotificationService, NotificationEvent, NotificationType

    service = NotificationService(capacity=50)
    notification = service.create_notification(
        NotificationEvent(
            type=NotificationType.CONTENT_SUBMITTED,
            content_id="asset-1",
            content_title="Spring Launch",
            actor_name="Dana",
        )
    )
    service.add_notification("reviewer-1", notification)
    service.get_unread_count("reviewer-1")  # 1
    ```
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from signoff.notifications.templates import (
    ACTION_NOTIFICATION_TYPES,
    TEMPLATES,
    NotificationPriority,
    NotificationTemplate,
    NotificationType,
)

logger = logging.getLogger(__name__)

DEFAULT_INBOX_CAPACITY = 50


@dataclass
class NotificationEvent:
    """Something that happened and is worth telling people about."""

    type: NotificationType
    content_id: str
    content_title: str
    actor_name: str = "Someone"
    action: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    comment: Optional[str] = None
    stage_name: Optional[str] = None
    delegate_name: Optional[str] = None
    escalation_level: int = 0
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def template_context(self) -> Dict[str, Any]:
        """Values available to title/message templates."""
        return {
            **self.metadata,
            "content_id": self.content_id,
            "content_title": self.content_title,
            "actor_name": self.actor_name,
            "action": self.action or "",
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "comment": self.comment or "",
            "comment_suffix": f' Comment: "{self.comment}"' if self.comment else "",
            "stage_name": self.stage_name or "",
            "delegate_name": self.delegate_name or "",
            "escalation_level": self.escalation_level,
            "reason": self.reason or "",
        }


@dataclass
class Notification:
    """A notification as it sits in a user's inbox."""

    type: NotificationType
    title: str
    message: str
    priority: NotificationPriority
    content_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    read: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowNotification:
    """A notification paired with the recipient it should go to."""

    recipient_id: str
    notification: Notification


@runtime_checkable
class InboxStore(Protocol):
    """Storage for per-user inboxes. ``items`` returns newest first."""

    def append(self, user_id: str, notification: Notification) -> None: ...

    def items(self, user_id: str) -> List[Notification]: ...

    def replace(self, user_id: str, notifications: List[Notification]) -> None: ...


class InMemoryInbox:
    """Dict-backed ``InboxStore``."""

    def __init__(self):
        self._inboxes: Dict[str, List[Notification]] = defaultdict(list)

    def append(self, user_id: str, notification: Notification) -> None:
        self._inboxes[user_id].insert(0, notification)

    def items(self, user_id: str) -> List[Notification]:
        return list(self._inboxes.get(user_id, []))

    def replace(self, user_id: str, notifications: List[Notification]) -> None:
        self._inboxes[user_id] = list(notifications)


def format_template(template: str, context: Mapping[str, Any]) -> str:
    """Fill a template, falling back to the raw text on a missing key."""
    try:
        return template.format(**context)
    except KeyError as e:
        logger.warning(f"Missing template key: {e}")
        return template


class NotificationService:
    """
    Builds notifications and manages bounded per-user inboxes.

    Inboxes keep the ``capacity`` most recent notifications; inserting past
    the cap evicts the oldest.
    """

    def __init__(
        self,
        inbox: Optional[InboxStore] = None,
        capacity: int = DEFAULT_INBOX_CAPACITY,
        templates: Optional[Mapping[NotificationType, NotificationTemplate]] = None,
    ):
        if capacity < 1:
            raise ValueError("Inbox capacity must be at least 1")
        self.inbox = inbox if inbox is not None else InMemoryInbox()
        self.capacity = capacity
        self._templates: Dict[NotificationType, NotificationTemplate] = {
            **TEMPLATES,
            **(templates or {}),
        }

    def create_notification(self, event: NotificationEvent) -> Notification:
        """Render an event into a notification. Does not deliver it."""
        template = self._templates[event.type]
        context = event.template_context()
        return Notification(
            type=event.type,
            title=format_template(template.title, context),
            message=format_template(template.message, context),
            priority=template.priority,
            content_id=event.content_id,
            metadata=dict(event.metadata),
        )

    def notification_for_transition(
        self,
        action: str,
        content_id: str,
        content_title: str,
        actor_name: str,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Optional[Notification]:
        """Notification for an artifact lifecycle action, if it warrants one."""
        notification_type = ACTION_NOTIFICATION_TYPES.get(action)
        if notification_type is None:
            return None
        return self.create_notification(
            NotificationEvent(
                type=notification_type,
                content_id=content_id,
                content_title=content_title,
                actor_name=actor_name,
                action=action,
                from_status=from_status,
                to_status=to_status,
                comment=comment,
            )
        )

    def add_notification(self, user_id: str, notification: Notification) -> None:
        self.inbox.append(user_id, notification)
        items = self.inbox.items(user_id)
        if len(items) > self.capacity:
            self.inbox.replace(user_id, items[: self.capacity])
            logger.debug(
                f"Trimmed inbox for {user_id}: dropped {len(items) - self.capacity} oldest"
            )

    def deliver(self, batch: Iterable[WorkflowNotification]) -> int:
        """Queue every notification of a batch into its recipient's inbox."""
        count = 0
        for item in batch:
            self.add_notification(item.recipient_id, item.notification)
            count += 1
        return count

    def get_notifications(self, user_id: str) -> List[Notification]:
        """Most recent notifications first, at most ``capacity`` of them."""
        return self.inbox.items(user_id)[: self.capacity]

    def get_unread_count(self, user_id: str) -> int:
        return sum(1 for n in self.get_notifications(user_id) if not n.read)

    def mark_as_read(self, user_id: str, notification_id: str) -> bool:
        items = self.inbox.items(user_id)
        for n in items:
            if n.id == notification_id:
                if not n.read:
                    n.read = True
                    self.inbox.replace(user_id, items)
                return True
        return False

    def mark_all_as_read(self, user_id: str) -> int:
        items = self.inbox.items(user_id)
        changed = 0
        for n in items:
            if not n.read:
                n.read = True
                changed += 1
        if changed:
            self.inbox.replace(user_id, items)
        return changed
