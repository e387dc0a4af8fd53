"""
Multi-stage approval workflows.

Definitions are loaded from YAML/JSON into ``WorkflowDefinition`` models,
held in a ``WorkflowRegistry`` and executed by ``WorkflowEngine``.
``ApprovalCoordinator`` wraps the engine with storage, per-request
locking and notification delivery.
"""

# Schema must load first: routing depends on it.
from signoff.workflow.schema import (
    ACTIVE_STATUSES,
    ActionType,
    Actor,
    ApprovalAction,
    ApprovalRequest,
    ApprovalStage,
    ConditionOperator,
    ConditionType,
    Priority,
    RequestStatus,
    SkipCondition,
    TargetContext,
    TargetType,
    WorkflowDefinition,
)
from signoff.workflow.conditions import (
    compare_values,
    condition_matches,
    resolve_field,
    should_skip_stage,
)
from signoff.workflow.parser import WorkflowParser, WorkflowRegistry
from signoff.workflow.engine import (
    ActionResult,
    SweepReport,
    TimeoutOutcome,
    TimeoutResult,
    WorkflowEngine,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowProgress,
)
from signoff.workflow.store import ApprovalStore, InMemoryApprovalStore
from signoff.workflow.coordinator import ApprovalCoordinator

__all__ = [
    # Schema
    "TargetType",
    "ConditionType",
    "ConditionOperator",
    "SkipCondition",
    "ApprovalStage",
    "WorkflowDefinition",
    "RequestStatus",
    "ACTIVE_STATUSES",
    "Priority",
    "ActionType",
    "Actor",
    "TargetContext",
    "ApprovalAction",
    "ApprovalRequest",
    # Conditions
    "resolve_field",
    "compare_values",
    "condition_matches",
    "should_skip_stage",
    # Loading
    "WorkflowParser",
    "WorkflowRegistry",
    # Engine
    "WorkflowEngine",
    "ActionResult",
    "TimeoutOutcome",
    "TimeoutResult",
    "SweepReport",
    "WorkflowProgress",
    "WorkflowEvent",
    "WorkflowEventType",
    # Persistence
    "ApprovalStore",
    "InMemoryApprovalStore",
    "ApprovalCoordinator",
]
