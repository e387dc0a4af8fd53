"""
Signoff - approval orchestration for marketing artifacts.

Routes campaigns, journeys, content and brand assets through configurable
multi-stage approval workflows:
- Role/capability permissions
- A single-artifact lifecycle state machine (draft -> review -> publish)
- Multi-stage workflows with quorum, skip conditions, delegation,
  escalation and timeouts
- Approver routing by seniority, workload and urgency
- Templated in-app notifications

Quick Start:
    Define a workflow in YAML:
    ```yaml
    name: content-review
    applicable_target_types: [content]
    stages:
      - id: review
        name: Editorial Review
        order: 0
        approver_roles: [approver]
    ```

    Then drive it:
    ```python
    from signoff import (
        ApprovalCoordinator,
        Actor,
        WorkflowEngine,
        WorkflowRegistry,
    )

    registry = WorkflowRegistry()
    registry.register_from_file("content_review.yaml")
    coordinator = ApprovalCoordinator(WorkflowEngine(registry))

    started = await coordinator.submit(
        "content-review", "content", "post-42", Actor(user_id="ana", role="creator")
    )
    await coordinator.act(
        started.request.id,
        "review",
        Actor(user_id="ben", role="approver"),
        "approve",
    )
    ```

Using the artifact state machine directly:
    ```python
    from signoff.lifecycle import ApprovalStateMachine, TransitionContext

    machine = ApprovalStateMachine()
    outcome = machine.execute_transition(
        "PENDING_REVIEW", "approve", TransitionContext(user_id="ben", user_role="approver")
    )
    outcome.new_status  # ArtifactStatus.APPROVED
    ```
"""

__version__ = "0.1.0"

# Core configuration
from signoff.config.settings import SignoffSettings

# Errors
from signoff.errors import (
    ConflictError,
    ErrorKind,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SignoffError,
    ValidationError,
)

# Permissions
from signoff.permissions import Capability, PermissionChecker, Role

# Artifact lifecycle
from signoff.lifecycle import ApprovalStateMachine, ArtifactStatus, ApprovalStatus

# Notifications
from signoff.notifications import NotificationService, NotificationType

# Workflows (must load before routing)
from signoff.workflow import (
    Actor,
    ApprovalCoordinator,
    ApprovalRequest,
    ApprovalStage,
    InMemoryApprovalStore,
    RequestStatus,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowParser,
    WorkflowRegistry,
)

# Routing
from signoff.routing import RoutingEngine, RoutingDecision, TeamMember

__all__ = [
    # Version
    "__version__",
    # Config
    "SignoffSettings",
    # Errors
    "SignoffError",
    "ErrorKind",
    "InvalidTransitionError",
    "PermissionDeniedError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    # Permissions
    "Role",
    "Capability",
    "PermissionChecker",
    # Lifecycle
    "ApprovalStateMachine",
    "ArtifactStatus",
    "ApprovalStatus",
    # Notifications
    "NotificationService",
    "NotificationType",
    # Workflows
    "WorkflowDefinition",
    "ApprovalStage",
    "ApprovalRequest",
    "RequestStatus",
    "Actor",
    "WorkflowParser",
    "WorkflowRegistry",
    "WorkflowEngine",
    "ApprovalCoordinator",
    "InMemoryApprovalStore",
    # Routing
    "RoutingEngine",
    "RoutingDecision",
    "TeamMember",
]
