"""
Notification templates.

Each notification type maps to a title/message template and a priority.
Templates are ``str.format`` strings over the fields of a
``NotificationEvent`` (plus ``comment_suffix``, which is empty when the
event carries no comment).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class NotificationType(str, Enum):
    """Kinds of notification produced by the approval core."""

    CONTENT_SUBMITTED = "content_submitted"
    CONTENT_APPROVED = "content_approved"
    CONTENT_REJECTED = "content_rejected"
    CHANGES_REQUESTED = "changes_requested"
    CONTENT_PUBLISHED = "content_published"
    CONTENT_ARCHIVED = "content_archived"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_REMINDER = "approval_reminder"
    APPROVAL_PROGRESS = "approval_progress"
    APPROVAL_DELEGATED = "approval_delegated"
    APPROVAL_ESCALATED = "approval_escalated"
    STAGE_ADVANCED = "stage_advanced"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    WORKFLOW_EXPIRED = "workflow_expired"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    message: str
    priority: NotificationPriority


TEMPLATES: Dict[NotificationType, NotificationTemplate] = {
    NotificationType.CONTENT_SUBMITTED: NotificationTemplate(
        title="Content Submitted for Review",
        message='{actor_name} submitted "{content_title}" for review.',
        priority=NotificationPriority.MEDIUM,
    ),
    NotificationType.CONTENT_APPROVED: NotificationTemplate(
        title="Content Approved",
        message='"{content_title}" was approved by {actor_name}.{comment_suffix}',
        priority=NotificationPriority.HIGH,
    ),
    NotificationType.CONTENT_REJECTED: NotificationTemplate(
        title="Content Rejected",
        message='"{content_title}" was rejected by {actor_name}.{comment_suffix}',
        priority=NotificationPriority.HIGH,
    ),
    NotificationType.CHANGES_REQUESTED: NotificationTemplate(
        title="Changes Requested",
        message='{actor_name} requested changes to "{content_title}".{comment_suffix}',
        priority=NotificationPriority.MEDIUM,
    ),
    NotificationType.CONTENT_PUBLISHED: NotificationTemplate(
        title="Content Published",
        message='"{content_title}" was published by {actor_name}.',
        priority=NotificationPriority.MEDIUM,
    ),
    NotificationType.CONTENT_ARCHIVED: NotificationTemplate(
        title="Content Archived",
        message='"{content_title}" was archived by {actor_name}.',
        priority=NotificationPriority.LOW,
    ),
    NotificationType.APPROVAL_REQUESTED: NotificationTemplate(
        title="Approval Required: {stage_name}",
        message='"{content_title}" is waiting for your review at stage "{stage_name}".',
        priority=NotificationPriority.MEDIUM,
    ),
    NotificationType.APPROVAL_REMINDER: NotificationTemplate(
        title="Approval Reminder",
        message='"{content_title}" still needs your approval at stage "{stage_name}".',
        priority=NotificationPriority.MEDIUM,
    ),
    NotificationType.APPROVAL_PROGRESS: NotificationTemplate(
        title="Approval In Progress",
        message='{actor_name} approved "{content_title}" at stage "{stage_name}".',
        priority=NotificationPriority.LOW,
    ),
    NotificationType.APPROVAL_DELEGATED: NotificationTemplate(
        title="Approval Delegated",
        message=(
            '{actor_name} delegated the review of "{content_title}" '
            'at stage "{stage_name}" to {delegate_name}.'
        ),
        priority=NotificationPriority.MEDIUM,
    ),
    NotificationType.APPROVAL_ESCALATED: NotificationTemplate(
        title="Approval Escalated",
        message=(
            '"{content_title}" was escalated to level {escalation_level} '
            'at stage "{stage_name}": {reason}'
        ),
        priority=NotificationPriority.HIGH,
    ),
    NotificationType.STAGE_ADVANCED: NotificationTemplate(
        title="Approval Stage Complete",
        message='"{content_title}" moved on to stage "{stage_name}".',
        priority=NotificationPriority.MEDIUM,
    ),
    NotificationType.WORKFLOW_CANCELLED: NotificationTemplate(
        title="Approval Cancelled",
        message='The approval request for "{content_title}" was cancelled by {actor_name}.{comment_suffix}',
        priority=NotificationPriority.MEDIUM,
    ),
    NotificationType.WORKFLOW_EXPIRED: NotificationTemplate(
        title="Approval Expired",
        message='The approval request for "{content_title}" expired at stage "{stage_name}".',
        priority=NotificationPriority.HIGH,
    ),
}

# Artifact lifecycle action -> notification type
ACTION_NOTIFICATION_TYPES: Dict[str, NotificationType] = {
    "submit_for_review": NotificationType.CONTENT_SUBMITTED,
    "approve": NotificationType.CONTENT_APPROVED,
    "reject": NotificationType.CONTENT_REJECTED,
    "request_revision": NotificationType.CHANGES_REQUESTED,
    "publish": NotificationType.CONTENT_PUBLISHED,
    "archive": NotificationType.CONTENT_ARCHIVED,
}
