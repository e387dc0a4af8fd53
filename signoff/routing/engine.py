"""
Approver routing.

Given a stage and a pool of people, recommends who should act next, how
long it should take, and how clear-cut the choice was.

Ranking combines:
- role seniority, capped so admins do not win every pick
- load balancing, when the caller supplies current workload
- expertise in the target type (small bonus)
- urgency: URGENT requests rank by raw seniority before load

Example:
    ```python
    from signoff.routing import RoutingEngine, RoutingContext, TeamMember

    decision = RoutingEngine().route_approval(
        RoutingContext(
            request=request,
            stage=stage,
            team_members=[TeamMember("ana", Role.APPROVER), TeamMember("bo", Role.ADMIN)],
            workload={"ana": 4, "bo": 0},
        )
    )
    decision.target_approvers  # ["bo"]
    ```
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from signoff.config.settings import RoutingConfig
from signoff.permissions import Role
from signoff.workflow.schema import (
    ApprovalRequest,
    ApprovalStage,
    Priority,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_HOURS = 72.0

# Score gap between the last chosen and first passed-over candidate
# at which confidence saturates
_CLEAR_GAP = 0.25


@dataclass
class TeamMember:
    """A person who may be asked to approve."""

    user_id: str
    role: Optional[Role] = None
    name: Optional[str] = None
    available: bool = True
    expertise: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.role is not None:
            self.role = Role.parse(self.role)
        self.expertise = tuple(e.lower() for e in self.expertise)


@dataclass
class RoutingContext:
    request: ApprovalRequest
    stage: ApprovalStage
    team_members: Sequence[TeamMember]
    requester_id: Optional[str] = None
    workflow: Optional[WorkflowDefinition] = None
    target_content: Mapping[str, Any] = field(default_factory=dict)
    urgency_level: Optional[Priority] = None
    # user_id -> number of open approvals currently assigned
    workload: Optional[Mapping[str, int]] = None


@dataclass
class CandidateScore:
    user_id: str
    role: Optional[Role]
    score: float
    seniority: float
    load: float
    workload: int
    expertise_match: bool


@dataclass
class RoutingDecision:
    """Recommendation for a stage. Not persisted."""

    target_approvers: List[str]
    estimated_time: float  # hours
    confidence: float
    reasoning: List[str] = field(default_factory=list)
    ranked: List[CandidateScore] = field(default_factory=list)

    @property
    def should_route(self) -> bool:
        return bool(self.target_approvers)


class RoutingEngine:
    """Ranks eligible approvers for a stage."""

    def __init__(
        self,
        config: Optional[RoutingConfig] = None,
        default_timeout_hours: float = DEFAULT_TIMEOUT_HOURS,
    ):
        self.config = config or RoutingConfig()
        self.default_timeout_hours = default_timeout_hours

    def route_approval(self, context: RoutingContext) -> RoutingDecision:
        stage = context.stage
        urgency = Priority(context.urgency_level or context.request.priority)
        reasoning: List[str] = []

        candidates = self._eligible(context, reasoning)
        estimated = self._estimate_time(context, urgency)

        if not candidates:
            reasoning.append(f"No eligible approvers for stage '{stage.name}'")
            logger.warning(f"No eligible approvers for stage '{stage.id}'")
            return RoutingDecision([], estimated_time=estimated, confidence=0.0, reasoning=reasoning)

        ranked = self._rank(candidates, context, urgency, reasoning)
        required = self._required_count(context)
        chosen = ranked[:required]

        for c in chosen:
            role = c.role.value if c.role else "unknown role"
            reasoning.append(
                f"Selected {c.user_id} ({role}, score {c.score:.2f}, {c.workload} open approvals)"
            )
        if len(ranked) < required:
            reasoning.append(
                f"Only {len(ranked)} eligible approver(s) for a quorum of {required}"
            )

        confidence = self._confidence(ranked, required)
        logger.debug(
            f"Routed stage '{stage.id}' to {[c.user_id for c in chosen]} "
            f"(confidence={confidence})"
        )
        return RoutingDecision(
            target_approvers=[c.user_id for c in chosen],
            estimated_time=estimated,
            confidence=confidence,
            reasoning=reasoning,
            ranked=ranked,
        )

    def _eligible(self, context: RoutingContext, reasoning: List[str]) -> List[TeamMember]:
        stage = context.stage
        requester_id = context.requester_id or context.request.requester_id
        members = {m.user_id: m for m in context.team_members}

        if stage.approvers:
            pool = [members.get(uid) or TeamMember(user_id=uid) for uid in stage.approvers]
            reasoning.append(
                f"Explicit approver list on stage '{stage.name}' ({len(pool)} candidates)"
            )
        else:
            roles = set(stage.approver_roles)
            in_roles = [m for m in context.team_members if m.role in roles]
            pool = [m for m in in_roles if m.user_id != requester_id]
            role_names = ", ".join(r.value for r in stage.approver_roles)
            reasoning.append(
                f"Role pool ({role_names}) on stage '{stage.name}' ({len(pool)} candidates)"
            )
            if len(pool) < len(in_roles):
                reasoning.append(f"Excluded requester {requester_id} from the pool")

        available = [m for m in pool if m.available]
        if available and len(available) < len(pool):
            reasoning.append(f"Skipped {len(pool) - len(available)} unavailable candidate(s)")
            return available
        if pool and not available:
            reasoning.append("All candidates unavailable; keeping the full pool")
        return pool

    def _rank(
        self,
        candidates: List[TeamMember],
        context: RoutingContext,
        urgency: Priority,
        reasoning: List[str],
    ) -> List[CandidateScore]:
        workload = context.workload or {}
        max_load = max((workload.get(c.user_id, 0) for c in candidates), default=0)
        cap = self.config.seniority_cap.level
        target_key = context.request.target_type.value
        urgent = urgency == Priority.URGENT

        if not workload:
            reasoning.append("No workload data; treating all candidates as equally loaded")
        if urgent:
            reasoning.append("Urgent priority: ranking by seniority ahead of workload")

        scored = []
        for c in candidates:
            level = c.role.level if c.role else 0
            open_count = workload.get(c.user_id, 0)
            load = 1.0 - open_count / max_load if max_load > 0 else 1.0
            expertise_match = target_key in c.expertise

            if urgent:
                seniority = level / Role.ADMIN.level
                # Load only breaks ties between equally senior candidates
                score = seniority + 0.05 * load
            else:
                seniority = min(level, cap) / cap
                score = (
                    self.config.seniority_weight * seniority
                    + self.config.workload_weight * load
                )
            if expertise_match:
                score += self.config.expertise_bonus

            scored.append(
                CandidateScore(
                    user_id=c.user_id,
                    role=c.role,
                    score=round(score, 4),
                    seniority=round(seniority, 4),
                    load=round(load, 4),
                    workload=open_count,
                    expertise_match=expertise_match,
                )
            )

        scored.sort(key=lambda s: (-s.score, s.user_id))
        experts = [s.user_id for s in scored if s.expertise_match]
        if experts:
            reasoning.append(f"Expertise in {target_key}: {', '.join(experts)}")
        return scored

    def _required_count(self, context: RoutingContext) -> int:
        stage = context.stage
        if context.workflow and context.workflow.require_all_approvers and stage.approvers:
            return len(stage.approvers)
        return stage.approvers_required

    @staticmethod
    def _confidence(ranked: List[CandidateScore], required: int) -> float:
        if not ranked:
            return 0.0
        if len(ranked) < required:
            return round(0.5 * len(ranked) / required, 3)
        if len(ranked) == required:
            return 1.0
        gap = ranked[required - 1].score - ranked[required].score
        return round(0.5 + 0.5 * min(1.0, max(gap, 0.0) / _CLEAR_GAP), 3)

    def _estimate_time(self, context: RoutingContext, urgency: Priority) -> float:
        timeout = context.stage.timeout_hours
        if timeout is None and context.workflow is not None:
            timeout = context.workflow.default_timeout_hours
        if timeout is None:
            timeout = self.default_timeout_hours
        factor = self.config.urgency_time_factors.get(urgency.value, 0.5)
        return round(timeout * factor, 1)
