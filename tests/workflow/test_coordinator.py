"""Tests for the store-backed approval coordinator."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from signoff.errors import ConflictError, ErrorKind, NotFoundError
from signoff.notifications import NotificationType
from signoff.workflow import (
    ApprovalCoordinator,
    ApprovalRequest,
    ApprovalStore,
    InMemoryApprovalStore,
    RequestStatus,
    WorkflowEventType,
)


class FlakyStore(InMemoryApprovalStore):
    """Fails the first versioned save with a conflict."""

    def __init__(self):
        super().__init__()
        self.conflicts = 0

    async def save(self, request, expected_version):
        if expected_version is not None and self.conflicts == 0:
            self.conflicts += 1
            raise ConflictError("simulated concurrent write")
        return await super().save(request, expected_version)


async def _submit(coordinator, requester, **kwargs):
    return await coordinator.submit("launch", "campaign", "cmp-1", requester, **kwargs)


class TestStore:
    """In-memory store contract."""

    @pytest.mark.asyncio
    async def test_satisfies_protocol(self):
        assert isinstance(InMemoryApprovalStore(), ApprovalStore)

    @pytest.mark.asyncio
    async def test_versions(self):
        store = InMemoryApprovalStore()
        request = ApprovalRequest(
            workflow_id="w", target_type="content", target_id="c", requester_id="u", current_stage_id="s"
        )
        saved = await store.save(request, expected_version=None)
        assert saved.version == 1
        assert (await store.save(saved, expected_version=1)).version == 2

        with pytest.raises(ConflictError):
            await store.save(saved, expected_version=1)
        with pytest.raises(ConflictError):
            await store.save(request, expected_version=None)

    @pytest.mark.asyncio
    async def test_one_active_per_target(self):
        store = InMemoryApprovalStore()
        kwargs = dict(workflow_id="w", target_type="content", target_id="c", requester_id="u")
        await store.save(ApprovalRequest(current_stage_id="s", **kwargs), expected_version=None)
        with pytest.raises(ConflictError, match="already active"):
            await store.save(ApprovalRequest(current_stage_id="s", **kwargs), expected_version=None)

        done = ApprovalRequest(status="approved", **kwargs)
        assert (await store.save(done, expected_version=None)).version == 1

    @pytest.mark.asyncio
    async def test_get_unknown(self):
        with pytest.raises(NotFoundError):
            await InMemoryApprovalStore().get("nope")


class TestSubmit:
    """Starting workflows through the coordinator."""

    @pytest.mark.asyncio
    async def test_submit_saves_and_delivers(self, engine, requester):
        coordinator = ApprovalCoordinator(engine)
        result = await _submit(coordinator, requester)

        assert result.success
        assert result.request.version == 1
        stored = await coordinator.store.get(result.request.id)
        assert stored.current_stage_id == "brand"

        inbox = coordinator.notifications
        assert inbox.get_notifications("maya")[0].type == NotificationType.CONTENT_SUBMITTED
        assert inbox.get_notifications("ana")[0].type == NotificationType.APPROVAL_REQUESTED

    @pytest.mark.asyncio
    async def test_second_submit_conflicts(self, engine, requester):
        coordinator = ApprovalCoordinator(engine)
        await _submit(coordinator, requester)
        result = await _submit(coordinator, requester)
        assert result.error_kind is ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_concurrent_submits_yield_one_request(self, engine, requester):
        coordinator = ApprovalCoordinator(engine)
        results = await asyncio.gather(*(_submit(coordinator, requester) for _ in range(3)))
        assert sum(r.success for r in results) == 1
        assert len(await coordinator.store.list_active()) == 1

    @pytest.mark.asyncio
    async def test_resubmit_after_cancel(self, engine, requester):
        coordinator = ApprovalCoordinator(engine)
        first = await _submit(coordinator, requester)
        await coordinator.cancel(first.request.id, requester, reason="Reworking")
        assert (await _submit(coordinator, requester)).success

    @pytest.mark.asyncio
    async def test_unknown_target_type(self, engine, requester):
        coordinator = ApprovalCoordinator(engine)
        result = await coordinator.submit("launch", "podcast", "p-1", requester)
        assert result.error_kind is ErrorKind.VALIDATION


class TestAct:
    """Applying approver actions."""

    @pytest.mark.asyncio
    async def test_approve_saves_new_version(self, engine, requester, make_actor):
        coordinator = ApprovalCoordinator(engine)
        request = (await _submit(coordinator, requester)).request

        result = await coordinator.act(request.id, "brand", make_actor("ana"), "approve")

        assert result.success
        assert result.request.version == 2
        assert (await coordinator.store.get(request.id)).status == RequestStatus.IN_PROGRESS
        log = await coordinator.store.actions_for(request.id)
        assert [a.approver_id for a in log] == ["ana"]

    @pytest.mark.asyncio
    async def test_declined_action_is_not_saved(self, engine, requester, make_actor):
        coordinator = ApprovalCoordinator(engine)
        request = (await _submit(coordinator, requester)).request

        result = await coordinator.act(request.id, "brand", make_actor("zed"), "approve")

        assert result.error_kind is ErrorKind.PERMISSION_DENIED
        assert (await coordinator.store.get(request.id)).version == 1
        assert await coordinator.store.actions_for(request.id) == []

    @pytest.mark.asyncio
    async def test_unknown_request(self, engine, make_actor):
        coordinator = ApprovalCoordinator(engine)
        result = await coordinator.act("nope", "brand", make_actor("ana"), "approve")
        assert result.error_kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_concurrent_approvals_both_count(self, engine, requester, make_actor):
        coordinator = ApprovalCoordinator(engine)
        request = (await _submit(coordinator, requester)).request

        results = await asyncio.gather(
            coordinator.act(request.id, "brand", make_actor("ana"), "approve"),
            coordinator.act(request.id, "brand", make_actor("ben"), "approve"),
        )

        assert all(r.success for r in results)
        stored = await coordinator.store.get(request.id)
        assert stored.current_stage_id == "legal"
        assert stored.version == 3

    @pytest.mark.asyncio
    async def test_conflict_is_retried_once(self, engine, requester, make_actor):
        store = FlakyStore()
        coordinator = ApprovalCoordinator(engine, store)
        request = (await _submit(coordinator, requester)).request

        result = await coordinator.act(request.id, "brand", make_actor("ana"), "approve")

        assert result.success
        assert store.conflicts == 1
        assert len((await store.get(request.id)).actions) == 1

    @pytest.mark.asyncio
    async def test_events_go_to_tracer(self, engine, requester, make_actor):
        tracer = MagicMock()
        coordinator = ApprovalCoordinator(engine, tracer=tracer)
        request = (await _submit(coordinator, requester)).request
        await coordinator.act(request.id, "brand", make_actor("ana"), "reject", comment="No")

        logged = [c.args[0].type for c in tracer.log_workflow_event.call_args_list]
        assert logged[0] == WorkflowEventType.WORKFLOW_STARTED
        assert logged[-1] == WorkflowEventType.WORKFLOW_REJECTED

        transitions = [c.args for c in tracer.log_transition.call_args_list]
        assert transitions == [
            (request.id, "none", "pending", "submit"),
            (request.id, "pending", "rejected", "reject"),
        ]


class TestCancelAndStatus:
    """Cancellation and progress through the coordinator."""

    @pytest.mark.asyncio
    async def test_cancel(self, engine, requester):
        coordinator = ApprovalCoordinator(engine)
        request = (await _submit(coordinator, requester)).request

        result = await coordinator.cancel(request.id, requester)

        assert result.success
        assert (await coordinator.store.get(request.id)).status == RequestStatus.CANCELLED
        assert await coordinator.store.list_active() == []

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, engine, requester):
        result = await ApprovalCoordinator(engine).cancel("nope", requester)
        assert result.error_kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_status(self, engine, requester):
        coordinator = ApprovalCoordinator(engine)
        request = (await _submit(coordinator, requester)).request
        status = await coordinator.status(request.id)
        assert status.current_stage_id == "brand"
        assert status.pending_approvers == ["ana", "ben", "cy"]

    @pytest.mark.asyncio
    async def test_status_reports_overdue(self, engine, requester, t0):
        coordinator = ApprovalCoordinator(engine)
        request = (
            await _submit(coordinator, requester, due_date=t0 + timedelta(days=1), now=t0)
        ).request
        status = await coordinator.status(request.id, now=t0 + timedelta(days=2))
        assert status.is_overdue is True


class TestSweep:
    """Timeout sweeps over the store."""

    @pytest.mark.asyncio
    async def test_sweep_escalates_and_saves(self, engine, requester, t0):
        coordinator = ApprovalCoordinator(engine)
        request = (await _submit(coordinator, requester, now=t0)).request

        report = await coordinator.sweep(now=t0 + timedelta(hours=25))

        assert report.escalated == [request.id]
        stored = await coordinator.store.get(request.id)
        assert stored.status == RequestStatus.ESCALATED
        assert stored.version == 2
        assert [a.approver_id for a in await coordinator.store.actions_for(request.id)] == ["system"]
        admin_inbox = coordinator.notifications.get_notifications("role:admin")
        assert any(n.type == NotificationType.APPROVAL_ESCALATED for n in admin_inbox)

        again = await coordinator.sweep(now=t0 + timedelta(hours=26))
        assert again.escalated == []
        assert (await coordinator.store.get(request.id)).version == 2

    @pytest.mark.asyncio
    async def test_sweep_isolates_failures(self, engine, requester, t0):
        coordinator = ApprovalCoordinator(engine)
        request = (await _submit(coordinator, requester, now=t0)).request
        orphan = ApprovalRequest(
            workflow_id="gone",
            target_type="brand",
            target_id="b-1",
            requester_id="u",
            current_stage_id="s",
            created_at=t0,
        )
        await coordinator.store.save(orphan, expected_version=None)

        report = await coordinator.sweep(now=t0 + timedelta(hours=25))

        assert report.escalated == [request.id]
        assert list(report.failures) == [orphan.id]

    @pytest.mark.asyncio
    async def test_run_sweeper_stops(self, engine):
        coordinator = ApprovalCoordinator(engine)
        stop = asyncio.Event()
        coordinator.sweep = AsyncMock(side_effect=lambda: stop.set())

        await asyncio.wait_for(
            coordinator.run_sweeper(interval_seconds=0.01, stop_event=stop), timeout=1
        )
        assert coordinator.sweep.await_count == 1


class TestTracerSetup:
    """Tracer built from the engine's OpenTelemetry settings."""

    def test_enabled_otel_builds_tracer(self, engine):
        engine.settings.otel.enabled = True
        with patch("signoff.workflow.coordinator.ApprovalTracer") as tracer_cls:
            coordinator = ApprovalCoordinator(engine)
        tracer_cls.assert_called_once_with(engine.settings.otel)
        assert coordinator.tracer is tracer_cls.return_value

    def test_disabled_otel_has_no_tracer(self, engine):
        with patch("signoff.workflow.coordinator.ApprovalTracer") as tracer_cls:
            coordinator = ApprovalCoordinator(engine)
        tracer_cls.assert_not_called()
        assert coordinator.tracer is None

    def test_explicit_tracer_wins(self, engine):
        engine.settings.otel.enabled = True
        tracer = MagicMock()
        with patch("signoff.workflow.coordinator.ApprovalTracer") as tracer_cls:
            coordinator = ApprovalCoordinator(engine, tracer=tracer)
        tracer_cls.assert_not_called()
        assert coordinator.tracer is tracer


class TestLocks:
    """Per-request locks only exist while in use."""

    @pytest.mark.asyncio
    async def test_locks_released_after_calls(self, engine, requester, make_actor, t0):
        coordinator = ApprovalCoordinator(engine)
        request = (await _submit(coordinator, requester, now=t0)).request
        await asyncio.gather(
            coordinator.act(request.id, "brand", make_actor("ana"), "approve"),
            coordinator.act(request.id, "brand", make_actor("ben"), "approve"),
        )
        await coordinator.sweep(now=t0 + timedelta(hours=1))
        await coordinator.cancel(request.id, requester)

        assert coordinator._locks == {}
        assert coordinator._lock_users == {}

    @pytest.mark.asyncio
    async def test_lock_kept_while_waited_on(self, engine, requester):
        coordinator = ApprovalCoordinator(engine)
        async with coordinator._locked("r-1"):
            waiter = asyncio.create_task(coordinator.cancel("r-1", requester))
            await asyncio.sleep(0)
            assert coordinator._lock_users["r-1"] == 2
            assert not waiter.done()

        assert (await waiter).error_kind is ErrorKind.NOT_FOUND
        assert coordinator._locks == {}
