"""Tests for approver routing."""

import pytest

from signoff.config.settings import RoutingConfig
from signoff.permissions import Role
from signoff.routing import RoutingContext, RoutingEngine, TeamMember
from signoff.workflow import ApprovalRequest, ApprovalStage, WorkflowDefinition


def _stage(**kwargs):
    data = {"id": "review", "name": "Review", "order": 0, "approver_roles": ["approver"]}
    data.update(kwargs)
    return ApprovalStage(**data)


def _request(priority="medium"):
    return ApprovalRequest(
        workflow_id="w",
        target_type="campaign",
        target_id="cmp-1",
        requester_id="maya",
        current_stage_id="review",
        priority=priority,
    )


@pytest.fixture
def router():
    return RoutingEngine()


@pytest.fixture
def route(router):
    def _route(members, stage=None, priority="medium", **kwargs):
        context = RoutingContext(
            request=_request(priority),
            stage=stage or _stage(),
            team_members=members,
            **kwargs,
        )
        return router.route_approval(context)

    return _route


class TestTeamMember:
    """Team member normalisation."""

    def test_role_and_expertise_normalised(self):
        member = TeamMember("ana", "Approver", expertise=("Campaign",))
        assert member.role is Role.APPROVER
        assert member.expertise == ("campaign",)


class TestRanking:
    """Candidate scoring."""

    def test_prefers_lighter_workload(self, route):
        members = [TeamMember("ana", Role.APPROVER), TeamMember("ben", Role.APPROVER)]
        decision = route(members, workload={"ana": 4, "ben": 0})
        assert decision.target_approvers == ["ben"]
        assert [c.user_id for c in decision.ranked] == ["ben", "ana"]

    def test_without_workload_ties_break_by_id(self, route):
        members = [TeamMember("ben", Role.APPROVER), TeamMember("ana", Role.APPROVER)]
        decision = route(members)
        assert decision.target_approvers == ["ana"]
        assert any("No workload data" in line for line in decision.reasoning)

    def test_seniority_capped_below_admin(self, route):
        stage = _stage(approver_roles=["publisher", "admin"])
        members = [TeamMember("pat", Role.PUBLISHER), TeamMember("adam", Role.ADMIN)]
        decision = route(members, stage=stage)
        scores = {c.user_id: c.score for c in decision.ranked}
        assert scores["pat"] == scores["adam"]

    def test_normal_priority_favours_free_approver(self, route):
        stage = _stage(approver_roles=["approver", "admin"])
        members = [TeamMember("ana", Role.APPROVER), TeamMember("bo", Role.ADMIN)]
        decision = route(members, stage=stage, workload={"ana": 0, "bo": 4})
        assert decision.target_approvers == ["ana"]

    def test_urgent_ranks_by_seniority(self, route):
        stage = _stage(approver_roles=["approver", "admin"])
        members = [TeamMember("ana", Role.APPROVER), TeamMember("bo", Role.ADMIN)]
        decision = route(members, stage=stage, priority="urgent", workload={"ana": 0, "bo": 4})
        assert decision.target_approvers == ["bo"]
        assert any("Urgent" in line for line in decision.reasoning)

    def test_urgency_level_overrides_request_priority(self, route):
        stage = _stage(approver_roles=["approver", "admin"])
        members = [TeamMember("ana", Role.APPROVER), TeamMember("bo", Role.ADMIN)]
        decision = route(
            members, stage=stage, priority="low", urgency_level="urgent", workload={"bo": 4}
        )
        assert decision.target_approvers == ["bo"]

    def test_expertise_bonus(self, route):
        members = [
            TeamMember("ana", Role.APPROVER),
            TeamMember("cy", Role.APPROVER, expertise=("campaign",)),
        ]
        decision = route(members)
        assert decision.target_approvers == ["cy"]
        assert decision.ranked[0].expertise_match
        assert decision.confidence == pytest.approx(0.7)

    def test_custom_weights(self):
        router = RoutingEngine(RoutingConfig(seniority_weight=1.0, workload_weight=0.0))
        stage = _stage(approver_roles=["approver", "publisher"])
        context = RoutingContext(
            request=_request(),
            stage=stage,
            team_members=[TeamMember("ana", Role.APPROVER), TeamMember("pat", Role.PUBLISHER)],
            workload={"ana": 0, "pat": 9},
        )
        assert router.route_approval(context).target_approvers == ["pat"]


class TestEligibility:
    """Who is considered at all."""

    def test_explicit_list_wins_over_roles(self, route):
        stage = _stage(approvers=["lena"], approver_roles=[])
        members = [TeamMember("ana", Role.APPROVER), TeamMember("lena", Role.PUBLISHER)]
        decision = route(members, stage=stage)
        assert decision.target_approvers == ["lena"]
        assert [c.user_id for c in decision.ranked] == ["lena"]

    def test_explicit_approver_outside_team(self, route):
        stage = _stage(approvers=["omar"], approver_roles=[])
        decision = route([], stage=stage)
        assert decision.target_approvers == ["omar"]
        assert decision.ranked[0].role is None

    def test_requester_excluded_from_role_pool(self, route):
        members = [TeamMember("maya", Role.APPROVER), TeamMember("ana", Role.APPROVER)]
        decision = route(members)
        assert decision.target_approvers == ["ana"]
        assert any("Excluded requester maya" in line for line in decision.reasoning)

    def test_unavailable_skipped(self, route):
        members = [
            TeamMember("ana", Role.APPROVER, available=False),
            TeamMember("ben", Role.APPROVER),
        ]
        assert route(members).target_approvers == ["ben"]

    def test_all_unavailable_keeps_pool(self, route):
        members = [
            TeamMember("ana", Role.APPROVER, available=False),
            TeamMember("ben", Role.APPROVER, available=False),
        ]
        decision = route(members)
        assert decision.target_approvers == ["ana"]
        assert any("All candidates unavailable" in line for line in decision.reasoning)

    def test_no_candidates(self, route):
        decision = route([TeamMember("ed", Role.VIEWER)])
        assert decision.target_approvers == []
        assert decision.confidence == 0.0
        assert not decision.should_route


class TestQuorumAndConfidence:
    """How many approvers are picked and how sure the pick is."""

    def test_short_pool(self, route):
        decision = route([TeamMember("ana", Role.APPROVER)], stage=_stage(approvers_required=2))
        assert decision.target_approvers == ["ana"]
        assert decision.confidence == pytest.approx(0.25)
        assert any("quorum of 2" in line for line in decision.reasoning)

    def test_exact_pool(self, route):
        decision = route([TeamMember("ana", Role.APPROVER)])
        assert decision.confidence == 1.0
        assert decision.should_route

    def test_tied_candidates(self, route):
        members = [TeamMember("ana", Role.APPROVER), TeamMember("ben", Role.APPROVER)]
        assert route(members).confidence == pytest.approx(0.5)

    def test_clear_winner(self, route):
        members = [TeamMember("ana", Role.APPROVER), TeamMember("ben", Role.APPROVER)]
        decision = route(members, workload={"ana": 5, "ben": 0})
        assert decision.confidence == 1.0

    def test_quorum_picks_top_n(self, route):
        members = [TeamMember(u, Role.APPROVER) for u in ("ana", "ben", "cy")]
        decision = route(members, stage=_stage(approvers_required=2), workload={"ana": 3})
        assert decision.target_approvers == ["ben", "cy"]

    def test_require_all_approvers(self, route):
        stage = _stage(approvers=["ana", "ben", "cy"], approver_roles=[])
        workflow = WorkflowDefinition(
            id="w", name="W", stages=[stage], require_all_approvers=True
        )
        decision = route([], stage=stage, workflow=workflow)
        assert sorted(decision.target_approvers) == ["ana", "ben", "cy"]


class TestEstimatedTime:
    """Expected turnaround in hours."""

    def test_stage_timeout_scaled_by_priority(self, route):
        members = [TeamMember("ana", Role.APPROVER)]
        assert route(members, stage=_stage(timeout_hours=24)).estimated_time == pytest.approx(12.0)
        urgent = route(members, stage=_stage(timeout_hours=24), priority="urgent")
        assert urgent.estimated_time == pytest.approx(4.8)

    def test_workflow_default_timeout(self, route):
        stage = _stage()
        workflow = WorkflowDefinition(id="w", name="W", stages=[stage], default_timeout_hours=48)
        decision = route([TeamMember("ana", Role.APPROVER)], stage=stage, workflow=workflow)
        assert decision.estimated_time == pytest.approx(24.0)

    def test_global_default_timeout(self, route):
        assert route([]).estimated_time == pytest.approx(36.0)

    def test_engine_default_override(self):
        router = RoutingEngine(default_timeout_hours=10)
        context = RoutingContext(request=_request(), stage=_stage(), team_members=[])
        assert router.route_approval(context).estimated_time == pytest.approx(5.0)
