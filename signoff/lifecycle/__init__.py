"""Single-artifact approval lifecycle."""

from signoff.lifecycle.states import (
    APPROVAL_STATUS_INFO,
    STATE_INFO,
    ApprovalStatus,
    ArtifactStatus,
    StateInfo,
)
from signoff.lifecycle.state_machine import (
    TRANSITIONS,
    ApprovalStateMachine,
    LifecycleAction,
    TransitionContext,
    TransitionErrorKind,
    TransitionOutcome,
    TransitionRecord,
    TransitionRule,
)

__all__ = [
    # States
    "ArtifactStatus",
    "ApprovalStatus",
    "StateInfo",
    "STATE_INFO",
    "APPROVAL_STATUS_INFO",
    # Machine
    "ApprovalStateMachine",
    "LifecycleAction",
    "TransitionRule",
    "TRANSITIONS",
    "TransitionContext",
    "TransitionOutcome",
    "TransitionErrorKind",
    "TransitionRecord",
]
