"""
Multi-stage approval workflow engine.

Drives an ``ApprovalRequest`` through the ordered stages of a
``WorkflowDefinition``:
- quorum counting over distinct approvers (or every listed approver when
  the workflow requires all of them)
- stage skipping via skip conditions, and auto-approving stages
- delegation, manual escalation and timeout escalation/expiry
- notification batches for every change

The engine is pure: each call takes the current request and returns the
next one plus the notifications and events to apply. Persisting them and
serializing calls per request is the caller's job (see
``signoff.workflow.coordinator``).

Example:
    ```python
    from signoff.workflow import WorkflowEngine, WorkflowRegistry, Actor

    engine = WorkflowEngine(WorkflowRegistry([workflow]))
    started = engine.start_workflow(
        "campaign-launch", "campaign", "cmp-1", Actor(user_id="u1", role="creator")
    )
    result = engine.process_approval_action(
        started.request,
        started.request.current_stage_id,
        Actor(user_id="u2", role="approver"),
        "approve",
    )
    result.request.status  # RequestStatus.APPROVED for a single-stage workflow
    ```
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from signoff.config.settings import SignoffSettings
from signoff.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SignoffError,
    ValidationError,
)
from signoff.notifications import (
    NotificationEvent,
    NotificationService,
    NotificationType,
    WorkflowNotification,
)
from signoff.permissions import Role
from signoff.routing.engine import RoutingContext, RoutingDecision, RoutingEngine, TeamMember
from signoff.workflow.conditions import should_skip_stage
from signoff.workflow.parser import WorkflowRegistry
from signoff.workflow.schema import (
    ActionType,
    Actor,
    ApprovalAction,
    ApprovalRequest,
    ApprovalStage,
    Priority,
    RequestStatus,
    TargetContext,
    TargetType,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowEventType(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    STAGE_ENTERED = "stage_entered"
    STAGE_SKIPPED = "stage_skipped"
    STAGE_AUTO_APPROVED = "stage_auto_approved"
    STAGE_COMPLETED = "stage_completed"
    STAGE_TIMEOUT = "stage_timeout"
    REQUEST_ESCALATED = "request_escalated"
    APPROVAL_DELEGATED = "approval_delegated"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    WORKFLOW_EXPIRED = "workflow_expired"


@dataclass
class WorkflowEvent:
    """Something the engine did, for audit and tracing."""

    type: WorkflowEventType
    request_id: str
    stage_id: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionResult:
    """
    Outcome of an engine call.

    On failure ``request`` is the unchanged input (when there was one) and
    ``error`` says why. ``artifact_transition`` names the lifecycle action
    the artifact should take once the request reached a terminal outcome.
    """

    success: bool
    request: Optional[ApprovalRequest] = None
    action: Optional[ApprovalAction] = None
    notifications: List[WorkflowNotification] = field(default_factory=list)
    events: List[WorkflowEvent] = field(default_factory=list)
    error: Optional[SignoffError] = None
    routing: Optional[RoutingDecision] = None
    artifact_transition: Optional[str] = None

    @property
    def error_kind(self):
        return self.error.kind if self.error else None

    def raise_for_error(self) -> "ActionResult":
        if self.error is not None:
            raise self.error
        return self

    @classmethod
    def failed(
        cls, error: SignoffError, request: Optional[ApprovalRequest] = None
    ) -> "ActionResult":
        logger.info(f"Workflow action declined ({error.kind.value}): {error.message}")
        return cls(success=False, request=request, error=error)


class TimeoutOutcome(str, Enum):
    UNCHANGED = "unchanged"
    ESCALATED = "escalated"
    EXPIRED = "expired"


@dataclass
class TimeoutResult(ActionResult):
    outcome: TimeoutOutcome = TimeoutOutcome.UNCHANGED


@dataclass
class SweepReport:
    """Summary of one timeout sweep."""

    escalated: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    unchanged: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    results: List[TimeoutResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.escalated) + len(self.expired) + self.unchanged + len(self.failures)

    def record(self, request_id: str, result: TimeoutResult) -> None:
        self.results.append(result)
        if result.outcome == TimeoutOutcome.ESCALATED:
            self.escalated.append(request_id)
        elif result.outcome == TimeoutOutcome.EXPIRED:
            self.expired.append(request_id)
        else:
            self.unchanged += 1

    def log_summary(self) -> None:
        logger.info(
            f"Timeout sweep: {len(self.escalated)} escalated, {len(self.expired)} expired, "
            f"{self.unchanged} unchanged, {len(self.failures)} failed"
        )


@dataclass
class WorkflowProgress:
    request_id: str
    status: RequestStatus
    current_stage_id: Optional[str]
    current_stage_name: Optional[str]
    completed_stages: List[str]
    skipped_stages: List[str]
    pending_stages: List[str]
    progress: float  # percent
    approvals_received: int = 0
    approvals_required: int = 0
    pending_approvers: List[str] = field(default_factory=list)
    escalation_level: int = 0
    due_date: Optional[datetime] = None
    is_overdue: bool = False
    # None without a due date; zero once overdue
    time_remaining: Optional[timedelta] = None


@dataclass
class _StageEntry:
    """Result of opening the next stage that needs people."""

    stage: Optional[ApprovalStage]
    completed: List[str]
    skipped: List[str]
    assigned: List[str]
    routing: Optional[RoutingDecision]


class _Batch:
    """Collects notifications for one engine call, one per recipient and type."""

    def __init__(self, service: NotificationService):
        self._service = service
        self._seen: set = set()
        self.items: List[WorkflowNotification] = []

    def add(self, recipients: Iterable[str], event: NotificationEvent) -> None:
        for recipient in recipients:
            key = (recipient, event.type)
            if not recipient or key in self._seen:
                continue
            self._seen.add(key)
            self.items.append(
                WorkflowNotification(recipient, self._service.create_notification(event))
            )


class WorkflowEngine:
    """
    Orchestrates approval requests through staged workflows.

    Definitions come from a ``WorkflowRegistry``; without one, the registry
    is loaded from ``settings.workflows.definitions_path``. Routing and
    notification construction are delegated to ``RoutingEngine`` and
    ``NotificationService``.
    """

    def __init__(
        self,
        registry: Optional[WorkflowRegistry] = None,
        routing: Optional[RoutingEngine] = None,
        notifications: Optional[NotificationService] = None,
        settings: Optional[SignoffSettings] = None,
    ):
        self.settings = settings if settings is not None else SignoffSettings()
        if registry is None:
            registry = WorkflowRegistry()
            path = self.settings.workflows.definitions_path
            if path:
                loaded = registry.load_path(path)
                logger.info(f"Loaded {len(loaded)} workflow(s) from {path}")
        self.registry = registry
        self.routing = routing or RoutingEngine(
            self.settings.routing,
            default_timeout_hours=self.settings.workflows.default_timeout_hours,
        )
        self.notifications = notifications or NotificationService(
            capacity=self.settings.notifications.inbox_capacity
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = self.registry.get(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Unknown workflow: {workflow_id}", field="workflow_id")
        return workflow

    def _get_stage(self, workflow: WorkflowDefinition, stage_id: str) -> ApprovalStage:
        stage = workflow.get_stage(stage_id)
        if stage is None:
            raise NotFoundError(
                f"Stage '{stage_id}' not found in workflow '{workflow.id}'", field="stage_id"
            )
        return stage

    def stage_timeout_hours(self, workflow: WorkflowDefinition, stage: ApprovalStage) -> float:
        if stage.timeout_hours is not None:
            return stage.timeout_hours
        if workflow.default_timeout_hours is not None:
            return workflow.default_timeout_hours
        return self.settings.workflows.default_timeout_hours

    # ------------------------------------------------------------------
    # Stage bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _slot_holders(request: ApprovalRequest, stage: ApprovalStage) -> Dict[str, str]:
        """Approval slot owner -> person currently holding it, after delegations."""
        holders = {uid: uid for uid in stage.approvers}
        for uid in request.assigned_approvers:
            holders.setdefault(uid, uid)
        for action in request.actions_for_stage(stage.id):
            if action.action != ActionType.DELEGATE:
                continue
            owner = next(
                (o for o, h in holders.items() if h == action.approver_id),
                action.approver_id,
            )
            holders[owner] = action.delegate_to_id
        return holders

    @staticmethod
    def _approved_by(request: ApprovalRequest, stage: ApprovalStage) -> List[str]:
        """Distinct approvers of ``stage`` in the order they approved."""
        seen = dict.fromkeys(
            a.approver_id
            for a in request.actions_for_stage(stage.id)
            if a.action == ActionType.APPROVE
        )
        return list(seen)

    def _quorum_met(
        self, request: ApprovalRequest, workflow: WorkflowDefinition, stage: ApprovalStage
    ) -> bool:
        approved = set(self._approved_by(request, stage))
        if workflow.require_all_approvers and stage.approvers:
            holders = self._slot_holders(request, stage)
            return all(holders[uid] in approved for uid in stage.approvers)
        return len(approved) >= stage.approvers_required

    def pending_approvers(self, request: ApprovalRequest) -> List[str]:
        """People at the current stage who have not approved yet."""
        if not request.is_active:
            return []
        workflow = self._get_workflow(request.workflow_id)
        stage = self._get_stage(workflow, request.current_stage_id)
        holders = self._slot_holders(request, stage)
        approved = set(self._approved_by(request, stage))
        pending = dict.fromkeys(holders.values())
        return [uid for uid in pending if uid and uid not in approved]

    def _is_eligible(
        self, request: ApprovalRequest, stage: ApprovalStage, actor: Actor
    ) -> bool:
        holders = self._slot_holders(request, stage)
        if actor.user_id in holders.values():
            return True
        # Gave their slot away
        if actor.user_id in holders:
            return False
        if actor.role in stage.approver_roles:
            return True
        return actor.role == Role.ADMIN

    def _enter_next_stage(
        self,
        request: ApprovalRequest,
        workflow: WorkflowDefinition,
        candidates: Sequence[ApprovalStage],
        events: List[WorkflowEvent],
        now: datetime,
        team_members: Optional[Sequence[TeamMember]],
        workload: Optional[Mapping[str, int]],
    ) -> _StageEntry:
        """Walk ``candidates`` in order, skipping and auto-approving until one needs people."""
        completed: List[str] = []
        skipped: List[str] = []

        for stage in candidates:
            skip, condition = should_skip_stage(stage, request.context)
            if skip:
                skipped.append(stage.id)
                events.append(
                    WorkflowEvent(
                        WorkflowEventType.STAGE_SKIPPED,
                        request.id,
                        stage_id=stage.id,
                        timestamp=now,
                        metadata={
                            "condition": condition.type.value,
                            "operator": condition.operator.value,
                            "value": condition.value,
                        },
                    )
                )
                continue

            if stage.auto_approve:
                completed.append(stage.id)
                events.append(
                    WorkflowEvent(
                        WorkflowEventType.STAGE_AUTO_APPROVED,
                        request.id,
                        stage_id=stage.id,
                        timestamp=now,
                    )
                )
                continue

            assigned = list(stage.approvers)
            decision = None
            if team_members:
                decision = self.routing.route_approval(
                    RoutingContext(
                        request=request,
                        stage=stage,
                        team_members=team_members,
                        workflow=workflow,
                        workload=workload,
                    )
                )
                if not assigned:
                    assigned = list(decision.target_approvers)

            events.append(
                WorkflowEvent(
                    WorkflowEventType.STAGE_ENTERED,
                    request.id,
                    stage_id=stage.id,
                    timestamp=now,
                    metadata={"assigned_approvers": assigned},
                )
            )
            return _StageEntry(stage, completed, skipped, assigned, decision)

        return _StageEntry(None, completed, skipped, [], None)

    def _event(
        self,
        request: ApprovalRequest,
        notification_type: NotificationType,
        actor_name: str,
        **kwargs: Any,
    ) -> NotificationEvent:
        return NotificationEvent(
            type=notification_type,
            content_id=request.target_id,
            content_title=request.title,
            actor_name=actor_name,
            escalation_level=request.escalation_level,
            metadata={"request_id": request.id, "workflow_id": request.workflow_id},
            **kwargs,
        )

    @property
    def _admins(self) -> List[str]:
        return list(self.settings.notifications.admin_recipients)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start_workflow(
        self,
        workflow_id: str,
        target_type: Union[TargetType, str],
        target_id: str,
        requester: Actor,
        notes: Optional[str] = None,
        due_date: Optional[datetime] = None,
        priority: Union[Priority, str] = Priority.MEDIUM,
        context: Optional[TargetContext] = None,
        team_members: Optional[Sequence[TeamMember]] = None,
        workload: Optional[Mapping[str, int]] = None,
        active_request: Optional[ApprovalRequest] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """
        Create an approval request at the first stage that needs people.

        ``active_request`` is the in-flight request the store holds for the
        same target, if any; passing one makes the start fail with a
        conflict.
        """
        now = now or _utcnow()
        try:
            workflow = self._get_workflow(workflow_id)
            target_type = TargetType(target_type)
        except SignoffError as e:
            return ActionResult.failed(e)
        except ValueError:
            return ActionResult.failed(
                ValidationError(f"Unknown target type: {target_type}", field="target_type")
            )
        try:
            priority = Priority(priority)
        except ValueError:
            return ActionResult.failed(
                ValidationError(f"Unknown priority: {priority}", field="priority")
            )

        if not workflow.is_active:
            return ActionResult.failed(
                ValidationError(f"Workflow '{workflow.id}' is not active", field="workflow_id")
            )
        if not workflow.applies_to(target_type):
            return ActionResult.failed(
                ValidationError(
                    f"Workflow '{workflow.id}' does not apply to {target_type.value}",
                    field="target_type",
                )
            )
        if (
            active_request is not None
            and active_request.is_active
            and active_request.target_type == target_type
            and active_request.target_id == target_id
        ):
            return ActionResult.failed(
                ConflictError(
                    f"Request {active_request.id} is already in progress for "
                    f"{target_type.value} {target_id}"
                )
            )

        ctx = context or TargetContext(target_type=target_type)
        ctx = ctx.model_copy(
            update={
                "target_type": target_type,
                "requester_role": ctx.requester_role or requester.role,
            }
        )

        first = workflow.stages[0]
        request = ApprovalRequest(
            workflow_id=workflow.id,
            target_type=target_type,
            target_id=target_id,
            requester_id=requester.user_id,
            status=RequestStatus.PENDING,
            current_stage_id=first.id,
            priority=priority,
            notes=notes,
            due_date=due_date,
            created_at=now,
            updated_at=now,
            stage_entered_at=now,
            context=ctx,
        )
        events = [
            WorkflowEvent(
                WorkflowEventType.WORKFLOW_STARTED,
                request.id,
                user_id=requester.user_id,
                timestamp=now,
                metadata={"workflow_id": workflow.id, "target": f"{target_type.value}:{target_id}"},
            )
        ]
        batch = _Batch(self.notifications)
        entry = self._enter_next_stage(
            request, workflow, workflow.stages, events, now, team_members, workload
        )

        if entry.stage is None:
            request = request.model_copy(
                update={
                    "status": RequestStatus.APPROVED,
                    "current_stage_id": None,
                    "completed_at": now,
                    "completed_stages": entry.completed,
                    "skipped_stages": entry.skipped,
                }
            )
            events.append(
                WorkflowEvent(WorkflowEventType.WORKFLOW_COMPLETED, request.id, timestamp=now)
            )
            batch.add(
                [request.requester_id],
                self._event(request, NotificationType.CONTENT_APPROVED, "System"),
            )
            logger.info(f"Request {request.id} approved on submission (no stage needed review)")
            return ActionResult(
                success=True,
                request=request,
                notifications=batch.items,
                events=events,
                artifact_transition="approve",
            )

        moved_on = entry.stage.id != first.id
        request = request.model_copy(
            update={
                "status": RequestStatus.IN_PROGRESS if moved_on else RequestStatus.PENDING,
                "current_stage_id": entry.stage.id,
                "assigned_approvers": entry.assigned,
                "completed_stages": entry.completed,
                "skipped_stages": entry.skipped,
            }
        )
        batch.add(
            [request.requester_id],
            self._event(
                request,
                NotificationType.CONTENT_SUBMITTED,
                requester.display_name,
                stage_name=entry.stage.name,
            ),
        )
        batch.add(
            entry.assigned,
            self._event(
                request,
                NotificationType.APPROVAL_REQUESTED,
                requester.display_name,
                stage_name=entry.stage.name,
            ),
        )
        logger.info(
            f"Started request {request.id} on workflow '{workflow.id}' "
            f"at stage '{entry.stage.id}'"
        )
        return ActionResult(
            success=True,
            request=request,
            notifications=batch.items,
            events=events,
            routing=entry.routing,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def process_approval_action(
        self,
        request: ApprovalRequest,
        stage_id: str,
        actor: Actor,
        action: Union[ActionType, str],
        comment: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        attachments: Optional[List[str]] = None,
        team_members: Optional[Sequence[TeamMember]] = None,
        workload: Optional[Mapping[str, int]] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """Apply one approver action to the request's current stage."""
        now = now or _utcnow()
        metadata = dict(metadata or {})
        try:
            action = ActionType(action)
        except ValueError:
            return ActionResult.failed(
                ValidationError(f"Unknown action: {action}", field="action"), request
            )

        try:
            workflow = self._get_workflow(request.workflow_id)
            self._check_current(request, stage_id)
            stage = self._get_stage(workflow, stage_id)
            self._check_action(request, stage, actor, action, comment, metadata)
        except SignoffError as e:
            return ActionResult.failed(e, request)

        record = ApprovalAction(
            request_id=request.id,
            stage_id=stage.id,
            approver_id=actor.user_id,
            action=action,
            comment=comment,
            attachments=list(attachments or []),
            metadata=metadata,
            created_at=now,
        )
        request = request.model_copy(
            update={"actions": [*request.actions, record], "updated_at": now}
        )

        handler = {
            ActionType.APPROVE: self._handle_approve,
            ActionType.REJECT: self._handle_reject,
            ActionType.REQUEST_CHANGES: self._handle_reject,
            ActionType.DELEGATE: self._handle_delegate,
            ActionType.ESCALATE: self._handle_escalate,
        }[action]
        result = handler(request, workflow, stage, actor, record, now, team_members, workload)
        result.action = record
        return result

    @staticmethod
    def _check_current(request: ApprovalRequest, stage_id: str) -> None:
        if not request.is_active:
            raise ConflictError(
                f"Request {request.id} is {request.status.value} and accepts no further actions"
            )
        if stage_id != request.current_stage_id:
            raise ConflictError(
                f"Stage '{stage_id}' is not the current stage "
                f"(current: '{request.current_stage_id}')",
                field="stage_id",
            )

    def _check_action(
        self,
        request: ApprovalRequest,
        stage: ApprovalStage,
        actor: Actor,
        action: ActionType,
        comment: Optional[str],
        metadata: Dict[str, Any],
    ) -> None:
        requester_escalating = (
            action == ActionType.ESCALATE and actor.user_id == request.requester_id
        )
        if not requester_escalating and not self._is_eligible(request, stage, actor):
            raise PermissionDeniedError(
                f"User {actor.user_id} does not have permission to act on stage '{stage.id}'"
            )

        if action in (ActionType.REJECT, ActionType.REQUEST_CHANGES):
            if not (comment or "").strip():
                raise ValidationError(f"Action '{action.value}' requires a comment", field="comment")

        elif action == ActionType.DELEGATE:
            delegate_to = metadata.get("delegate_to_id")
            if not delegate_to:
                raise ValidationError(
                    "Delegation requires metadata.delegate_to_id", field="delegate_to_id"
                )
            if delegate_to == actor.user_id:
                raise ValidationError("Cannot delegate to yourself", field="delegate_to_id")
            approved = self._approved_by(request, stage)
            if actor.user_id in approved:
                raise ValidationError(
                    "Cannot delegate after approving this stage", field="delegate_to_id"
                )
            # One person holds at most one slot per stage
            if delegate_to in approved or delegate_to in self._slot_holders(request, stage).values():
                raise ValidationError(
                    f"{delegate_to} is already an approver on stage '{stage.id}'",
                    field="delegate_to_id",
                )

        elif action == ActionType.ESCALATE:
            if not (metadata.get("escalation_reason") or "").strip():
                raise ValidationError(
                    "Escalation requires metadata.escalation_reason", field="escalation_reason"
                )

    def _handle_approve(
        self,
        request: ApprovalRequest,
        workflow: WorkflowDefinition,
        stage: ApprovalStage,
        actor: Actor,
        record: ApprovalAction,
        now: datetime,
        team_members: Optional[Sequence[TeamMember]],
        workload: Optional[Mapping[str, int]],
    ) -> ActionResult:
        batch = _Batch(self.notifications)
        events: List[WorkflowEvent] = []

        if not self._quorum_met(request, workflow, stage):
            status = (
                RequestStatus.ESCALATED
                if request.status == RequestStatus.ESCALATED
                else RequestStatus.IN_PROGRESS
            )
            request = request.model_copy(update={"status": status})
            approved = len(self._approved_by(request, stage))
            batch.add(
                [request.requester_id],
                self._event(
                    request,
                    NotificationType.APPROVAL_PROGRESS,
                    actor.display_name,
                    stage_name=stage.name,
                ),
            )
            batch.add(
                [uid for uid in self.pending_approvers(request) if uid != actor.user_id],
                self._event(
                    request,
                    NotificationType.APPROVAL_REMINDER,
                    actor.display_name,
                    stage_name=stage.name,
                ),
            )
            logger.info(
                f"Request {request.id}: {approved} approval(s) at stage '{stage.id}', "
                f"quorum not yet met"
            )
            return ActionResult(True, request, notifications=batch.items, events=events)

        events.append(
            WorkflowEvent(
                WorkflowEventType.STAGE_COMPLETED,
                request.id,
                stage_id=stage.id,
                user_id=actor.user_id,
                timestamp=now,
            )
        )
        entry = self._enter_next_stage(
            request,
            workflow,
            workflow.stages_after(stage.id),
            events,
            now,
            team_members,
            workload,
        )
        completed = [*request.completed_stages, stage.id, *entry.completed]
        skipped = [*request.skipped_stages, *entry.skipped]

        if entry.stage is None:
            request = request.model_copy(
                update={
                    "status": RequestStatus.APPROVED,
                    "current_stage_id": None,
                    "completed_at": now,
                    "assigned_approvers": [],
                    "completed_stages": completed,
                    "skipped_stages": skipped,
                }
            )
            events.append(
                WorkflowEvent(
                    WorkflowEventType.WORKFLOW_COMPLETED,
                    request.id,
                    user_id=actor.user_id,
                    timestamp=now,
                )
            )
            batch.add(
                [request.requester_id],
                self._event(
                    request,
                    NotificationType.CONTENT_APPROVED,
                    actor.display_name,
                    comment=record.comment,
                ),
            )
            logger.info(f"Request {request.id} approved")
            return ActionResult(
                True,
                request,
                notifications=batch.items,
                events=events,
                artifact_transition="approve",
            )

        request = request.model_copy(
            update={
                "status": RequestStatus.IN_PROGRESS,
                "current_stage_id": entry.stage.id,
                "stage_entered_at": now,
                "timeout_escalated_at": None,
                "assigned_approvers": entry.assigned,
                "completed_stages": completed,
                "skipped_stages": skipped,
            }
        )
        batch.add(
            [request.requester_id],
            self._event(
                request,
                NotificationType.STAGE_ADVANCED,
                actor.display_name,
                stage_name=entry.stage.name,
            ),
        )
        batch.add(
            entry.assigned,
            self._event(
                request,
                NotificationType.APPROVAL_REQUESTED,
                actor.display_name,
                stage_name=entry.stage.name,
            ),
        )
        logger.info(f"Request {request.id} advanced from '{stage.id}' to '{entry.stage.id}'")
        return ActionResult(
            True, request, notifications=batch.items, events=events, routing=entry.routing
        )

    def _handle_reject(
        self,
        request: ApprovalRequest,
        workflow: WorkflowDefinition,
        stage: ApprovalStage,
        actor: Actor,
        record: ApprovalAction,
        now: datetime,
        team_members: Optional[Sequence[TeamMember]],
        workload: Optional[Mapping[str, int]],
    ) -> ActionResult:
        revision = record.action == ActionType.REQUEST_CHANGES
        request = request.model_copy(
            update={
                "status": RequestStatus.REJECTED,
                "current_stage_id": None,
                "completed_at": now,
                "assigned_approvers": [],
            }
        )
        events = [
            WorkflowEvent(
                WorkflowEventType.WORKFLOW_REJECTED,
                request.id,
                stage_id=stage.id,
                user_id=actor.user_id,
                timestamp=now,
                metadata={"revision_requested": revision, "comment": record.comment},
            )
        ]
        batch = _Batch(self.notifications)
        if revision:
            batch.add(
                [request.requester_id],
                self._event(
                    request,
                    NotificationType.CHANGES_REQUESTED,
                    actor.display_name,
                    comment=record.comment,
                    stage_name=stage.name,
                ),
            )
        else:
            batch.add(
                [request.requester_id, *self._admins],
                self._event(
                    request,
                    NotificationType.CONTENT_REJECTED,
                    actor.display_name,
                    comment=record.comment,
                    stage_name=stage.name,
                ),
            )
        logger.info(
            f"Request {request.id} rejected at stage '{stage.id}' by {actor.user_id}"
            + (" (changes requested)" if revision else "")
        )
        return ActionResult(
            True,
            request,
            notifications=batch.items,
            events=events,
            artifact_transition="request_revision" if revision else "reject",
        )

    def _handle_delegate(
        self,
        request: ApprovalRequest,
        workflow: WorkflowDefinition,
        stage: ApprovalStage,
        actor: Actor,
        record: ApprovalAction,
        now: datetime,
        team_members: Optional[Sequence[TeamMember]],
        workload: Optional[Mapping[str, int]],
    ) -> ActionResult:
        delegate_to = record.delegate_to_id
        assigned = [delegate_to if uid == actor.user_id else uid for uid in request.assigned_approvers]
        if delegate_to not in assigned:
            assigned.append(delegate_to)
        request = request.model_copy(update={"assigned_approvers": list(dict.fromkeys(assigned))})

        events = [
            WorkflowEvent(
                WorkflowEventType.APPROVAL_DELEGATED,
                request.id,
                stage_id=stage.id,
                user_id=actor.user_id,
                timestamp=now,
                metadata={"delegate_to_id": delegate_to},
            )
        ]
        batch = _Batch(self.notifications)
        batch.add(
            [delegate_to, request.requester_id],
            self._event(
                request,
                NotificationType.APPROVAL_DELEGATED,
                actor.display_name,
                stage_name=stage.name,
                delegate_name=delegate_to,
                comment=record.comment,
            ),
        )
        logger.info(
            f"Request {request.id}: {actor.user_id} delegated stage '{stage.id}' to {delegate_to}"
        )
        return ActionResult(True, request, notifications=batch.items, events=events)

    def _handle_escalate(
        self,
        request: ApprovalRequest,
        workflow: WorkflowDefinition,
        stage: ApprovalStage,
        actor: Actor,
        record: ApprovalAction,
        now: datetime,
        team_members: Optional[Sequence[TeamMember]],
        workload: Optional[Mapping[str, int]],
    ) -> ActionResult:
        request, events, batch = self._escalate(
            request, stage, record.escalation_reason, actor.user_id, actor.display_name, now
        )
        return ActionResult(True, request, notifications=batch.items, events=events)

    def _escalate(
        self,
        request: ApprovalRequest,
        stage: ApprovalStage,
        reason: str,
        user_id: str,
        actor_name: str,
        now: datetime,
        extra_update: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ApprovalRequest, List[WorkflowEvent], _Batch]:
        request = request.model_copy(
            update={
                "status": RequestStatus.ESCALATED,
                "escalation_level": request.escalation_level + 1,
                "escalated_at": now,
                "updated_at": now,
                **(extra_update or {}),
            }
        )
        events = [
            WorkflowEvent(
                WorkflowEventType.REQUEST_ESCALATED,
                request.id,
                stage_id=stage.id,
                user_id=user_id,
                timestamp=now,
                metadata={"reason": reason, "escalation_level": request.escalation_level},
            )
        ]
        batch = _Batch(self.notifications)
        batch.add(
            [
                request.requester_id,
                *[uid for uid in self.pending_approvers(request) if uid != user_id],
                *self._admins,
            ],
            self._event(
                request,
                NotificationType.APPROVAL_ESCALATED,
                actor_name,
                stage_name=stage.name,
                reason=reason,
            ),
        )
        logger.info(
            f"Request {request.id} escalated to level {request.escalation_level} "
            f"at stage '{stage.id}': {reason}"
        )
        return request, events, batch

    # ------------------------------------------------------------------
    # Cancellation and status
    # ------------------------------------------------------------------

    def cancel_workflow(
        self,
        request: ApprovalRequest,
        actor: Actor,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """Cancel an in-flight request. Only the requester or an admin may."""
        now = now or _utcnow()
        if not request.is_active:
            return ActionResult.failed(
                InvalidTransitionError(
                    f"Cannot cancel request {request.id}: it is already {request.status.value}"
                ),
                request,
            )
        if actor.user_id != request.requester_id and actor.role != Role.ADMIN:
            return ActionResult.failed(
                PermissionDeniedError(
                    f"User {actor.user_id} does not have permission to cancel request {request.id}"
                ),
                request,
            )

        try:
            pending = self.pending_approvers(request)
        except NotFoundError:
            pending = list(request.assigned_approvers)

        stage_id = request.current_stage_id
        request = request.model_copy(
            update={
                "status": RequestStatus.CANCELLED,
                "current_stage_id": None,
                "completed_at": now,
                "updated_at": now,
                "assigned_approvers": [],
            }
        )
        events = [
            WorkflowEvent(
                WorkflowEventType.WORKFLOW_CANCELLED,
                request.id,
                stage_id=stage_id,
                user_id=actor.user_id,
                timestamp=now,
                metadata={"reason": reason},
            )
        ]
        batch = _Batch(self.notifications)
        batch.add(
            [request.requester_id, *[uid for uid in pending if uid != actor.user_id]],
            self._event(
                request,
                NotificationType.WORKFLOW_CANCELLED,
                actor.display_name,
                comment=reason,
            ),
        )
        logger.info(f"Request {request.id} cancelled by {actor.user_id}")
        return ActionResult(True, request, notifications=batch.items, events=events)

    def get_workflow_status(
        self, request: ApprovalRequest, now: Optional[datetime] = None
    ) -> WorkflowProgress:
        """
        Progress summary of a request.

        Only an active request can be overdue; a finished one keeps its
        ``due_date`` but reports no remaining time.
        """
        now = now or _utcnow()
        workflow = self._get_workflow(request.workflow_id)
        done = set(request.completed_stages) | set(request.skipped_stages)
        total = len(workflow.stages)

        current = workflow.get_stage(request.current_stage_id) if request.current_stage_id else None
        pending = (
            [s.id for s in workflow.stages if s.id not in done] if request.is_active else []
        )

        approvals_received = approvals_required = 0
        pending_approvers: List[str] = []
        if current is not None:
            approvals_received = len(self._approved_by(request, current))
            approvals_required = (
                len(current.approvers)
                if workflow.require_all_approvers and current.approvers
                else current.approvers_required
            )
            pending_approvers = self.pending_approvers(request)

        overdue = False
        remaining = None
        if request.due_date is not None and request.is_active:
            overdue = request.due_date < now
            remaining = timedelta(0) if overdue else request.due_date - now

        return WorkflowProgress(
            request_id=request.id,
            status=request.status,
            current_stage_id=current.id if current else None,
            current_stage_name=current.name if current else None,
            completed_stages=list(request.completed_stages),
            skipped_stages=list(request.skipped_stages),
            pending_stages=pending,
            progress=round(100.0 * len(done) / total, 1) if total else 0.0,
            approvals_received=approvals_received,
            approvals_required=approvals_required,
            pending_approvers=pending_approvers,
            escalation_level=request.escalation_level,
            due_date=request.due_date,
            is_overdue=overdue,
            time_remaining=remaining,
        )

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    def evaluate_timeout(
        self, request: ApprovalRequest, now: Optional[datetime] = None
    ) -> TimeoutResult:
        """
        Check one request against its current stage timeout.

        The first expiry of a stage instance escalates it with a system
        reason. If the stage times out again after that and the policy
        says so, the request expires. Calling this repeatedly with the
        same clock changes nothing further.

        Raises:
            NotFoundError: If the workflow or current stage no longer exists
        """
        now = now or _utcnow()
        if not request.is_active:
            return TimeoutResult(True, request)

        workflow = self._get_workflow(request.workflow_id)
        stage = self._get_stage(workflow, request.current_stage_id)
        timeout_hours = self.stage_timeout_hours(workflow, stage)
        timeout = timedelta(hours=timeout_hours)
        entered = request.stage_entered_at or request.created_at
        system_id = self.settings.workflows.system_actor_id

        if request.timeout_escalated_at is None:
            if now - entered < timeout or self._quorum_met(request, workflow, stage):
                return TimeoutResult(True, request)

            reason = f"Stage '{stage.name}' exceeded its {timeout_hours:g}h timeout"
            record = ApprovalAction(
                request_id=request.id,
                stage_id=stage.id,
                approver_id=system_id,
                action=ActionType.ESCALATE,
                metadata={"escalation_reason": reason, "automatic": True},
                created_at=now,
            )
            request, events, batch = self._escalate(
                request,
                stage,
                reason,
                system_id,
                "System",
                now,
                extra_update={
                    "timeout_escalated_at": now,
                    "actions": [*request.actions, record],
                },
            )
            events.insert(
                0,
                WorkflowEvent(
                    WorkflowEventType.STAGE_TIMEOUT,
                    request.id,
                    stage_id=stage.id,
                    user_id=system_id,
                    timestamp=now,
                    metadata={"timeout_hours": timeout_hours},
                ),
            )
            return TimeoutResult(
                True,
                request,
                action=record,
                notifications=batch.items,
                events=events,
                outcome=TimeoutOutcome.ESCALATED,
            )

        if (
            not self.settings.workflows.expire_after_second_timeout
            or now - request.timeout_escalated_at < timeout
        ):
            return TimeoutResult(True, request)

        request = request.model_copy(
            update={
                "status": RequestStatus.EXPIRED,
                "current_stage_id": None,
                "completed_at": now,
                "updated_at": now,
                "assigned_approvers": [],
            }
        )
        events = [
            WorkflowEvent(
                WorkflowEventType.STAGE_TIMEOUT,
                request.id,
                stage_id=stage.id,
                user_id=system_id,
                timestamp=now,
                metadata={"timeout_hours": timeout_hours, "after_escalation": True},
            ),
            WorkflowEvent(
                WorkflowEventType.WORKFLOW_EXPIRED, request.id, stage_id=stage.id, timestamp=now
            ),
        ]
        batch = _Batch(self.notifications)
        batch.add(
            [request.requester_id, *self._admins],
            self._event(
                request, NotificationType.WORKFLOW_EXPIRED, "System", stage_name=stage.name
            ),
        )
        logger.info(f"Request {request.id} expired at stage '{stage.id}'")
        return TimeoutResult(
            True,
            request,
            notifications=batch.items,
            events=events,
            outcome=TimeoutOutcome.EXPIRED,
        )

    def sweep_timeouts(
        self, requests: Iterable[ApprovalRequest], now: Optional[datetime] = None
    ) -> SweepReport:
        """
        Evaluate timeouts for many requests.

        A request that fails to evaluate is logged and recorded in
        ``failures``; the rest of the sweep continues.
        """
        now = now or _utcnow()
        report = SweepReport()
        for request in requests:
            try:
                result = self.evaluate_timeout(request, now)
            except Exception as e:
                logger.warning(f"Timeout evaluation failed for request {request.id}: {e}")
                report.failures[request.id] = str(e)
                continue
            report.record(request.id, result)

        report.log_summary()
        return report
