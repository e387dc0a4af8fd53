"""
Single-artifact approval lifecycle.

Governs an artifact's content-level status with role- and comment-gated
transitions:

    DRAFT --submit_for_review--> PENDING_REVIEW --approve--> APPROVED --publish--> PUBLISHED
      |                              |  reject / request_revision        |              |
      |                              +------------> DRAFT <--revert------+              |
      +--archive--> ARCHIVED <---------------------------------------------archive------+

Evaluation never performs I/O. ``execute_transition`` additionally returns
an audit record that the caller is expected to persist together with the
new status.

Example:
    ```python
    from signoff.lifecycle import ApprovalStateMachine, TransitionContext

    machine = ApprovalStateMachine()
    outcome = machine.can_transition(
        "PENDING_REVIEW", "reject", TransitionContext(user_id="u1", user_role="approver")
    )
    outcome.success      # False
    outcome.error_kind   # TransitionErrorKind.MISSING_COMMENT
    ```
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from signoff.errors import (
    InvalidTransitionError,
    PermissionDeniedError,
    SignoffError,
    ValidationError,
)
from signoff.lifecycle.states import (
    APPROVAL_STATUS_INFO,
    STATE_INFO,
    ApprovalStatus,
    ArtifactStatus,
    StateInfo,
)
from signoff.permissions import Role

logger = logging.getLogger(__name__)


class LifecycleAction(str, Enum):
    SUBMIT_FOR_REVIEW = "submit_for_review"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"
    PUBLISH = "publish"
    REVERT_TO_DRAFT = "revert_to_draft"
    ARCHIVE = "archive"


class TransitionErrorKind(Enum):
    """Why a transition was declined."""

    INVALID_TRANSITION = "invalid_transition"
    PERMISSION_DENIED = "permission_denied"
    MISSING_COMMENT = "missing_comment"


@dataclass(frozen=True)
class TransitionRule:
    from_status: ArtifactStatus
    action: LifecycleAction
    to_status: ArtifactStatus
    approval_status: Optional[ApprovalStatus] = None
    allowed_roles: Optional[FrozenSet[Role]] = None
    requires_comment: bool = False


_REVIEWERS = frozenset({Role.APPROVER, Role.ADMIN})
_PUBLISHERS = frozenset({Role.PUBLISHER, Role.ADMIN})

TRANSITIONS: Tuple[TransitionRule, ...] = (
    TransitionRule(
        ArtifactStatus.DRAFT,
        LifecycleAction.SUBMIT_FOR_REVIEW,
        ArtifactStatus.PENDING_REVIEW,
        approval_status=ApprovalStatus.PENDING,
    ),
    TransitionRule(ArtifactStatus.DRAFT, LifecycleAction.ARCHIVE, ArtifactStatus.ARCHIVED),
    TransitionRule(
        ArtifactStatus.PENDING_REVIEW,
        LifecycleAction.APPROVE,
        ArtifactStatus.APPROVED,
        approval_status=ApprovalStatus.APPROVED,
        allowed_roles=_REVIEWERS,
    ),
    TransitionRule(
        ArtifactStatus.PENDING_REVIEW,
        LifecycleAction.REJECT,
        ArtifactStatus.DRAFT,
        approval_status=ApprovalStatus.REJECTED,
        allowed_roles=_REVIEWERS,
        requires_comment=True,
    ),
    TransitionRule(
        ArtifactStatus.PENDING_REVIEW,
        LifecycleAction.REQUEST_REVISION,
        ArtifactStatus.DRAFT,
        approval_status=ApprovalStatus.NEEDS_REVISION,
        allowed_roles=_REVIEWERS,
        requires_comment=True,
    ),
    TransitionRule(
        ArtifactStatus.APPROVED,
        LifecycleAction.PUBLISH,
        ArtifactStatus.PUBLISHED,
        allowed_roles=_PUBLISHERS,
    ),
    TransitionRule(
        ArtifactStatus.APPROVED,
        LifecycleAction.REVERT_TO_DRAFT,
        ArtifactStatus.DRAFT,
        allowed_roles=_REVIEWERS,
    ),
    TransitionRule(ArtifactStatus.PUBLISHED, LifecycleAction.ARCHIVE, ArtifactStatus.ARCHIVED),
)


@dataclass
class TransitionContext:
    """Who is acting, and with what comment."""

    user_id: Optional[str] = None
    user_role: Optional[Union[Role, str]] = None
    comment: Optional[str] = None
    content_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransitionRecord:
    """Audit entry for an executed transition."""

    from_status: ArtifactStatus
    to_status: ArtifactStatus
    action: LifecycleAction
    approval_status: Optional[ApprovalStatus]
    user_id: Optional[str]
    content_id: Optional[str]
    comment: Optional[str]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TransitionOutcome:
    success: bool
    new_status: Optional[ArtifactStatus] = None
    new_approval_status: Optional[ApprovalStatus] = None
    error: Optional[str] = None
    error_kind: Optional[TransitionErrorKind] = None
    audit: Optional[TransitionRecord] = None

    def to_error(self) -> Optional[SignoffError]:
        """The failure as an exception from the shared error taxonomy."""
        if self.success or self.error_kind is None:
            return None
        if self.error_kind is TransitionErrorKind.INVALID_TRANSITION:
            return InvalidTransitionError(self.error)
        if self.error_kind is TransitionErrorKind.PERMISSION_DENIED:
            return PermissionDeniedError(self.error)
        return ValidationError(self.error, field="comment")


def _parse_action(action: Union[LifecycleAction, str]) -> Optional[LifecycleAction]:
    try:
        return LifecycleAction(action)
    except ValueError:
        return None


def _parse_role(role: Optional[Union[Role, str]]) -> Optional[Role]:
    if role is None:
        return None
    try:
        return Role.parse(role)
    except ValueError:
        return None


class ApprovalStateMachine:
    """
    Transition evaluator for one artifact's lifecycle.

    Stateless: the current status is passed in and the next one handed
    back, so one instance can serve any number of artifacts.
    """

    _PLACEHOLDER_COMMENT = "(comment)"

    def __init__(self, transitions: Tuple[TransitionRule, ...] = TRANSITIONS):
        self._rules: Dict[Tuple[ArtifactStatus, LifecycleAction], TransitionRule] = {
            (r.from_status, r.action): r for r in transitions
        }

    def _evaluate(
        self,
        current_status: Union[ArtifactStatus, str],
        action: Union[LifecycleAction, str],
        context: Optional[TransitionContext],
    ) -> Tuple[Optional[TransitionRule], TransitionOutcome]:
        context = context or TransitionContext()
        status = ArtifactStatus(current_status)
        parsed = _parse_action(action)
        action_name = parsed.value if parsed else str(action)

        rule = self._rules.get((status, parsed)) if parsed else None
        if rule is None:
            return None, TransitionOutcome(
                success=False,
                error=f"Action '{action_name}' is not valid for state {status.value}",
                error_kind=TransitionErrorKind.INVALID_TRANSITION,
            )

        if rule.allowed_roles is not None:
            role = _parse_role(context.user_role)
            if role is None or role not in rule.allowed_roles:
                return rule, TransitionOutcome(
                    success=False,
                    error=f"User does not have permission to perform '{action_name}'",
                    error_kind=TransitionErrorKind.PERMISSION_DENIED,
                )

        if rule.requires_comment and not (context.comment or "").strip():
            return rule, TransitionOutcome(
                success=False,
                error=f"Action '{action_name}' requires a comment",
                error_kind=TransitionErrorKind.MISSING_COMMENT,
            )

        return rule, TransitionOutcome(
            success=True,
            new_status=rule.to_status,
            new_approval_status=rule.approval_status,
        )

    def can_transition(
        self,
        current_status: Union[ArtifactStatus, str],
        action: Union[LifecycleAction, str],
        context: Optional[TransitionContext] = None,
    ) -> TransitionOutcome:
        """Check whether an action is allowed. No side effects."""
        _, outcome = self._evaluate(current_status, action, context)
        return outcome

    def execute_transition(
        self,
        current_status: Union[ArtifactStatus, str],
        action: Union[LifecycleAction, str],
        context: Optional[TransitionContext] = None,
    ) -> TransitionOutcome:
        """
        Evaluate a transition and, on success, attach an audit record.

        The caller persists ``new_status``/``new_approval_status`` and the
        audit record; nothing is written here.
        """
        context = context or TransitionContext()
        rule, outcome = self._evaluate(current_status, action, context)
        if not outcome.success:
            logger.debug(f"Transition declined: {outcome.error}")
            return outcome

        outcome.audit = TransitionRecord(
            from_status=rule.from_status,
            to_status=rule.to_status,
            action=rule.action,
            approval_status=rule.approval_status,
            user_id=context.user_id,
            content_id=context.content_id,
            comment=context.comment,
        )
        logger.info(
            f"Content {context.content_id or '-'}: {rule.from_status.value} -> "
            f"{rule.to_status.value} via '{rule.action.value}' by {context.user_id or '-'}"
        )
        return outcome

    def get_available_actions(
        self,
        status: Union[ArtifactStatus, str],
        role: Optional[Union[Role, str]] = None,
    ) -> List[str]:
        """Actions valid from ``status``, limited to what ``role`` may do when given."""
        status = ArtifactStatus(status)
        candidates = [a for (s, a) in self._rules if s is status]
        if role is None:
            return [a.value for a in candidates]

        context = TransitionContext(user_role=role, comment=self._PLACEHOLDER_COMMENT)
        return [
            a.value for a in candidates if self.can_transition(status, a, context).success
        ]

    def get_state_info(self, status: Union[ArtifactStatus, str]) -> StateInfo:
        return STATE_INFO[ArtifactStatus(status)]

    def get_approval_status_info(
        self, status: Union[ApprovalStatus, str]
    ) -> Tuple[str, str]:
        """(label, color) for an approval status."""
        return APPROVAL_STATUS_INFO[ApprovalStatus(status)]

    def get_workflow_diagram(self) -> Dict[str, List[Dict[str, str]]]:
        """States and transitions of the main lifecycle, for rendering."""
        states = []
        seen = set()
        for rule in self._rules.values():
            for status in (rule.from_status, rule.to_status):
                if status not in seen:
                    seen.add(status)
                    info = STATE_INFO[status]
                    states.append({"id": status.value, "label": info.label, "color": info.color})

        transitions = [
            {"from": r.from_status.value, "to": r.to_status.value, "action": r.action.value}
            for r in self._rules.values()
        ]
        return {"states": states, "transitions": transitions}
