"""
Workflow definition and approval request schema using Pydantic models.

Supports:
- Ordered approval stages with quorum, approver lists and role pools
- Skip conditions (equals, not_equals, greater_than, less_than, contains)
- Auto-approving stages and per-stage timeouts
- Approval requests with an append-only action log

Example YAML:
```yaml
id: campaign-launch
name: Campaign Launch Review
applicable_target_types: [campaign, journey]
require_all_approvers: false
default_timeout_hours: 48

stages:
  - id: marketing
    name: Marketing Review
    order: 0
    approver_roles: [approver]

  - id: legal
    name: Legal Review
    order: 1
    approvers: [legal-1, legal-2]
    approvers_required: 2
    timeout_hours: 24
    skip_conditions:
      - type: budget_threshold
        operator: less_than
        value: 10000
```
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from signoff.permissions import Capability, Role


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TargetType(str, Enum):
    """Kind of artifact an approval request is about."""

    CAMPAIGN = "campaign"
    JOURNEY = "journey"
    CONTENT = "content"
    BRAND = "brand"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class ConditionType(str, Enum):
    """Which field of the target context a skip condition reads."""

    USER_ROLE = "user_role"
    CONTENT_TYPE = "content_type"
    BUDGET_THRESHOLD = "budget_threshold"
    CUSTOM = "custom"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


class SkipCondition(BaseModel):
    """
    A rule that bypasses a stage when it matches.

    ``custom`` conditions read ``field`` from the target context's
    attributes; the other types read a fixed field.
    """

    model_config = ConfigDict(frozen=True)

    type: ConditionType
    operator: ConditionOperator
    value: Any = None
    field: Optional[str] = None

    @model_validator(mode="after")
    def custom_requires_field(self) -> "SkipCondition":
        if self.type == ConditionType.CUSTOM and not self.field:
            raise ValueError("Custom skip conditions must name a 'field'")
        return self


class ApprovalStage(BaseModel):
    """
    One ordered checkpoint of a workflow.

    A stage is a template: running requests keep their own counters
    and never modify it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    order: int = Field(ge=0)
    approvers_required: int = Field(default=1, ge=1)
    approvers: List[str] = Field(default_factory=list)
    approver_roles: List[Role] = Field(default_factory=list)
    auto_approve: bool = False
    timeout_hours: Optional[float] = Field(default=None, gt=0)
    skip_conditions: List[SkipCondition] = Field(default_factory=list)

    @field_validator("approvers")
    @classmethod
    def dedupe_approvers(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def check_approver_pool(self) -> "ApprovalStage":
        if self.auto_approve:
            return self
        if not self.approvers and not self.approver_roles:
            raise ValueError(f"Stage '{self.id}' has no approvers or approver roles")
        if (
            self.approvers
            and not self.approver_roles
            and self.approvers_required > len(self.approvers)
        ):
            raise ValueError(
                f"Stage '{self.id}' requires {self.approvers_required} approvals "
                f"but lists only {len(self.approvers)} approvers"
            )
        return self


class WorkflowDefinition(BaseModel):
    """
    Complete approval workflow.

    ``id`` defaults to ``name`` when omitted. Definitions are immutable
    once loaded. ``allow_parallel_stages`` is accepted but has no effect;
    stages are always entered one at a time in ``order``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    version: str = "1.0"
    applicable_target_types: List[TargetType] = Field(
        default_factory=lambda: list(TargetType)
    )
    stages: List[ApprovalStage]
    auto_start: bool = False
    # Stored for compatibility only: the engine always runs stages in order
    allow_parallel_stages: bool = False
    require_all_approvers: bool = False
    default_timeout_hours: Optional[float] = Field(default=None, gt=0)
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def default_id_from_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id") and data.get("name"):
            data = {**data, "id": data["name"]}
        return data

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, v: List[ApprovalStage]) -> List[ApprovalStage]:
        if not v:
            raise ValueError("Workflow must define at least one stage")

        ids = [s.id for s in v]
        if len(set(ids)) != len(ids):
            raise ValueError("Stage ids must be unique")

        orders = [s.order for s in v]
        if len(set(orders)) != len(orders):
            raise ValueError("Stage order values must be unique")

        return sorted(v, key=lambda s: s.order)

    def get_stage(self, stage_id: str) -> Optional[ApprovalStage]:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def stages_after(self, stage_id: str) -> List[ApprovalStage]:
        """Stages that follow ``stage_id`` in order."""
        for i, stage in enumerate(self.stages):
            if stage.id == stage_id:
                return self.stages[i + 1 :]
        return []

    def applies_to(self, target_type: TargetType) -> bool:
        return TargetType(target_type) in self.applicable_target_types


class RequestStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ESCALATED = "escalated"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


ACTIVE_STATUSES = frozenset(
    {RequestStatus.PENDING, RequestStatus.IN_PROGRESS, RequestStatus.ESCALATED}
)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ActionType(str, Enum):
    """What an approver did at a stage."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"
    DELEGATE = "delegate"
    ESCALATE = "escalate"


class Actor(BaseModel):
    """An already-authenticated caller."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role
    name: Optional[str] = None
    overrides: Dict[Capability, bool] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.user_id


class TargetContext(BaseModel):
    """Attributes of the artifact that skip conditions are evaluated against."""

    target_type: TargetType
    title: Optional[str] = None
    requester_role: Optional[Role] = None
    budget: Optional[float] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ApprovalAction(BaseModel):
    """Immutable entry of a request's action log."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    request_id: str
    stage_id: str
    approver_id: str
    action: ActionType
    comment: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def delegate_to_id(self) -> Optional[str]:
        return self.metadata.get("delegate_to_id")

    @property
    def escalation_reason(self) -> Optional[str]:
        return self.metadata.get("escalation_reason")


class ApprovalRequest(BaseModel):
    """
    One artifact's journey through a workflow.

    ``current_stage_id`` is set exactly while the request is active.
    ``stage_entered_at`` and ``timeout_escalated_at`` identify the current
    stage instance for timeout handling; ``version`` is bumped by the
    store on every save.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    workflow_id: str
    target_type: TargetType
    target_id: str
    requester_id: str
    status: RequestStatus = RequestStatus.PENDING
    current_stage_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    notes: Optional[str] = None
    due_date: Optional[datetime] = None
    escalation_level: int = Field(default=0, ge=0)
    escalated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    stage_entered_at: Optional[datetime] = None
    timeout_escalated_at: Optional[datetime] = None
    assigned_approvers: List[str] = Field(default_factory=list)
    completed_stages: List[str] = Field(default_factory=list)
    skipped_stages: List[str] = Field(default_factory=list)
    context: Optional[TargetContext] = None
    actions: List[ApprovalAction] = Field(default_factory=list)
    version: int = 0

    @field_validator("due_date")
    @classmethod
    def due_date_is_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Naive due dates are taken as UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def stage_pointer_matches_status(self) -> "ApprovalRequest":
        if self.status.is_active and not self.current_stage_id:
            raise ValueError(f"Active request ({self.status.value}) must have a current stage")
        if not self.status.is_active and self.current_stage_id:
            raise ValueError(f"Terminal request ({self.status.value}) cannot have a current stage")
        return self

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def title(self) -> str:
        if self.context and self.context.title:
            return self.context.title
        return f"{self.target_type.value} {self.target_id}"

    def actions_for_stage(self, stage_id: str) -> List[ApprovalAction]:
        return [a for a in self.actions if a.stage_id == stage_id]
