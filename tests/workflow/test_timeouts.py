"""Tests for stage timeouts, escalation and expiry."""

from datetime import timedelta

import pytest

from signoff.config.settings import WorkflowConfig
from signoff.errors import NotFoundError
from signoff.notifications import NotificationType
from signoff.workflow import (
    ActionType,
    Actor,
    ApprovalRequest,
    RequestStatus,
    TimeoutOutcome,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowEventType,
    WorkflowRegistry,
)


@pytest.fixture
def launch(engine, requester, t0):
    return engine.start_workflow("launch", "campaign", "cmp-1", requester, now=t0).request


def hours(t0, n):
    return t0 + timedelta(hours=n)


class TestTimeoutResolution:
    """Which timeout applies to a stage."""

    def test_stage_timeout(self, engine, two_stage):
        assert engine.stage_timeout_hours(two_stage, two_stage.stages[0]) == 24

    def test_workflow_default(self, engine):
        wf = WorkflowDefinition.model_validate(
            {
                "name": "w",
                "default_timeout_hours": 12,
                "stages": [{"id": "s", "name": "S", "order": 0, "approver_roles": ["approver"]}],
            }
        )
        assert engine.stage_timeout_hours(wf, wf.stages[0]) == 12

    def test_global_default(self, engine):
        wf = WorkflowDefinition.model_validate(
            {"name": "w", "stages": [{"id": "s", "name": "S", "order": 0, "approver_roles": ["approver"]}]}
        )
        assert engine.stage_timeout_hours(wf, wf.stages[0]) == 72


class TestEvaluateTimeout:
    """Single-request timeout evaluation."""

    def test_within_timeout(self, engine, launch, t0):
        result = engine.evaluate_timeout(launch, hours(t0, 23))
        assert result.outcome == TimeoutOutcome.UNCHANGED
        assert result.request is launch
        assert result.notifications == []

    def test_first_timeout_escalates(self, engine, launch, t0):
        now = hours(t0, 24)
        result = engine.evaluate_timeout(launch, now)

        assert result.outcome == TimeoutOutcome.ESCALATED
        request = result.request
        assert request.status == RequestStatus.ESCALATED
        assert request.escalation_level == 1
        assert request.escalated_at == now
        assert request.timeout_escalated_at == now
        assert request.current_stage_id == "brand"

        action = result.action
        assert action.action == ActionType.ESCALATE
        assert action.approver_id == "system"
        assert action.escalation_reason == "Stage 'Brand Review' exceeded its 24h timeout"
        assert request.actions[-1] == action

        assert [e.type for e in result.events] == [
            WorkflowEventType.STAGE_TIMEOUT,
            WorkflowEventType.REQUEST_ESCALATED,
        ]
        recipients = [n.recipient_id for n in result.notifications]
        assert recipients == ["maya", "ana", "ben", "cy", "role:admin"]
        assert all(
            n.notification.type == NotificationType.APPROVAL_ESCALATED for n in result.notifications
        )

    def test_escalation_is_idempotent(self, engine, launch, t0):
        escalated = engine.evaluate_timeout(launch, hours(t0, 24)).request

        for n in (24, 30, 47):
            again = engine.evaluate_timeout(escalated, hours(t0, n))
            assert again.outcome == TimeoutOutcome.UNCHANGED
            assert again.request.escalation_level == 1
            assert len(again.request.actions) == 1

    def test_second_timeout_expires(self, engine, launch, t0):
        escalated = engine.evaluate_timeout(launch, hours(t0, 24)).request
        result = engine.evaluate_timeout(escalated, hours(t0, 48))

        assert result.outcome == TimeoutOutcome.EXPIRED
        assert result.request.status == RequestStatus.EXPIRED
        assert result.request.current_stage_id is None
        assert result.request.completed_at == hours(t0, 48)
        assert [(n.recipient_id, n.notification.type) for n in result.notifications] == [
            ("maya", NotificationType.WORKFLOW_EXPIRED),
            ("role:admin", NotificationType.WORKFLOW_EXPIRED),
        ]
        assert result.events[-1].type == WorkflowEventType.WORKFLOW_EXPIRED

    def test_expiry_can_be_disabled(self, registry, requester, settings, t0):
        settings.workflows = WorkflowConfig(expire_after_second_timeout=False)
        engine = WorkflowEngine(registry, settings=settings)
        request = engine.start_workflow("launch", "campaign", "cmp-1", requester, now=t0).request

        escalated = engine.evaluate_timeout(request, hours(t0, 24)).request
        result = engine.evaluate_timeout(escalated, hours(t0, 500))
        assert result.outcome == TimeoutOutcome.UNCHANGED
        assert result.request.status == RequestStatus.ESCALATED

    def test_new_stage_gets_fresh_timeout(self, engine, launch, t0):
        escalated = engine.evaluate_timeout(launch, hours(t0, 24)).request
        for user_id in ("ana", "ben"):
            escalated = engine.process_approval_action(
                escalated,
                "brand",
                Actor(user_id=user_id, role="approver"),
                "approve",
                now=hours(t0, 30),
            ).request

        at_legal = escalated
        assert at_legal.current_stage_id == "legal"
        assert at_legal.timeout_escalated_at is None

        # legal has a 48h timeout measured from when it was entered
        assert engine.evaluate_timeout(at_legal, hours(t0, 77)).outcome == TimeoutOutcome.UNCHANGED
        result = engine.evaluate_timeout(at_legal, hours(t0, 78))
        assert result.outcome == TimeoutOutcome.ESCALATED
        assert result.request.escalation_level == 2

    def test_terminal_request_unchanged(self, engine, launch, requester, t0):
        cancelled = engine.cancel_workflow(launch, requester, now=t0).request
        result = engine.evaluate_timeout(cancelled, hours(t0, 1000))
        assert result.outcome == TimeoutOutcome.UNCHANGED

    def test_missing_workflow_raises(self, engine, t0):
        orphan = ApprovalRequest(
            workflow_id="gone",
            target_type="content",
            target_id="x",
            requester_id="u",
            current_stage_id="s",
            created_at=t0,
            stage_entered_at=t0,
        )
        with pytest.raises(NotFoundError):
            engine.evaluate_timeout(orphan, hours(t0, 100))


class TestSweep:
    """Batch timeout sweeps."""

    def test_sweep_isolates_failures(self, engine, launch, requester, t0):
        fresh = engine.start_workflow(
            "quick-review", "content", "post-1", requester, now=hours(t0, 20)
        ).request
        orphan = ApprovalRequest(
            workflow_id="gone",
            target_type="content",
            target_id="x",
            requester_id="u",
            current_stage_id="s",
            created_at=t0,
        )

        report = engine.sweep_timeouts([orphan, launch, fresh], now=hours(t0, 25))

        assert report.escalated == [launch.id]
        assert report.unchanged == 1
        assert list(report.failures) == [orphan.id]
        assert report.total == 3
        assert len(report.results) == 2

    def test_sweep_twice_is_idempotent(self, engine, launch, t0):
        first = engine.sweep_timeouts([launch], now=hours(t0, 25))
        escalated = first.results[0].request
        second = engine.sweep_timeouts([escalated], now=hours(t0, 25))
        assert second.escalated == []
        assert second.unchanged == 1
