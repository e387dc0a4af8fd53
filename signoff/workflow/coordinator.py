"""
Single-writer boundary around the workflow engine.

The engine is pure; this layer loads and saves requests, serializes work
per request with asyncio locks, delivers notification batches into the
NotificationService and forwards engine events to the tracer.

Example:
    ```python
    coordinator = ApprovalCoordinator(engine, InMemoryApprovalStore())

    started = await coordinator.submit("campaign-launch", "campaign", "cmp-1", requester)
    result = await coordinator.act(
        started.request.id, started.request.current_stage_id, approver, "approve"
    )

    # Scheduler loop
    stop = asyncio.Event()
    asyncio.create_task(coordinator.run_sweeper(stop_event=stop))
    ```
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional, Union

from signoff.errors import ConflictError, NotFoundError, ValidationError
from signoff.notifications import NotificationService
from signoff.tracing import ApprovalTracer
from signoff.workflow.engine import (
    ActionResult,
    SweepReport,
    TimeoutOutcome,
    WorkflowEngine,
    WorkflowProgress,
)
from signoff.workflow.schema import ActionType, Actor, RequestStatus, TargetType
from signoff.workflow.store import ApprovalStore, InMemoryApprovalStore

logger = logging.getLogger(__name__)


class ApprovalCoordinator:
    """
    Applies engine results to a store, one writer per request at a time.

    Different requests proceed in parallel; calls on the same request
    (including the timeout sweep) queue on that request's lock. A lock
    lives only while some call holds or waits for it.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        store: Optional[ApprovalStore] = None,
        notifications: Optional[NotificationService] = None,
        tracer: Optional[ApprovalTracer] = None,
    ):
        self.engine = engine
        self.store = store if store is not None else InMemoryApprovalStore()
        self.notifications = notifications or engine.notifications
        if tracer is None and engine.settings.otel.enabled:
            tracer = ApprovalTracer(engine.settings.otel)
        self.tracer = tracer
        # Only keys with a holder or a waiter have an entry
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._locks_guard = asyncio.Lock()

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key``, dropping it once nobody else wants it."""
        async with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _apply_effects(
        self,
        result: ActionResult,
        action: str,
        previous_status: Optional[RequestStatus] = None,
    ) -> None:
        delivered = self.notifications.deliver(result.notifications)
        if self.tracer is not None:
            for event in result.events:
                self.tracer.log_workflow_event(event)
            request = result.request
            if request is not None and request.status != previous_status:
                self.tracer.log_transition(
                    request.id,
                    previous_status.value if previous_status else "none",
                    request.status.value,
                    action,
                )
        logger.debug(f"Delivered {delivered} notification(s), {len(result.events)} event(s)")

    async def submit(
        self,
        workflow_id: str,
        target_type: Union[TargetType, str],
        target_id: str,
        requester: Actor,
        **kwargs: Any,
    ) -> ActionResult:
        """Start a workflow, enforcing one active request per target."""
        try:
            target_type = TargetType(target_type)
        except ValueError:
            return ActionResult.failed(
                ValidationError(f"Unknown target type: {target_type}", field="target_type")
            )

        async with self._locked(f"target:{target_type.value}:{target_id}"):
            active = await self.store.find_active(target_type, target_id)
            result = self.engine.start_workflow(
                workflow_id, target_type, target_id, requester, active_request=active, **kwargs
            )
            if not result.success:
                return result

            try:
                result.request = await self.store.save(result.request, expected_version=None)
            except ConflictError as e:
                return ActionResult.failed(e)

            self._apply_effects(result, "submit")
            return result

    async def act(
        self,
        request_id: str,
        stage_id: str,
        actor: Actor,
        action: Union[ActionType, str],
        comment: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> ActionResult:
        """
        Process an approver action against the stored request.

        A version conflict on save (another writer got there first) is
        retried once against a fresh copy.
        """
        async with self._locked(request_id):
            for attempt in range(2):
                try:
                    request = await self.store.get(request_id)
                except NotFoundError as e:
                    return ActionResult.failed(e)

                result = self.engine.process_approval_action(
                    request, stage_id, actor, action, comment, metadata, **kwargs
                )
                if not result.success:
                    return result

                try:
                    saved = await self.store.save(result.request, expected_version=request.version)
                except ConflictError as e:
                    if attempt == 0:
                        logger.info(f"Retrying action on request {request_id} after conflict: {e}")
                        continue
                    return ActionResult.failed(e, request)

                await self.store.append_actions(request_id, [result.action])
                result.request = saved
                self._apply_effects(result, ActionType(action).value, request.status)
                return result

    async def cancel(
        self, request_id: str, actor: Actor, reason: Optional[str] = None
    ) -> ActionResult:
        async with self._locked(request_id):
            try:
                request = await self.store.get(request_id)
            except NotFoundError as e:
                return ActionResult.failed(e)

            result = self.engine.cancel_workflow(request, actor, reason)
            if not result.success:
                return result

            try:
                result.request = await self.store.save(
                    result.request, expected_version=request.version
                )
            except ConflictError as e:
                return ActionResult.failed(e, request)

            self._apply_effects(result, "cancel", request.status)
            return result

    async def status(self, request_id: str, now: Optional[datetime] = None) -> WorkflowProgress:
        request = await self.store.get(request_id)
        return self.engine.get_workflow_status(request, now)

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Run one timeout sweep over every active request.

        Each request is evaluated under its own lock so the sweep never
        races a live action. One failing request does not stop the rest.
        """
        now = now or datetime.now(timezone.utc)
        report = SweepReport()

        for candidate in await self.store.list_active():
            async with self._locked(candidate.id):
                try:
                    request = await self.store.get(candidate.id)
                    result = self.engine.evaluate_timeout(request, now)
                    if result.outcome != TimeoutOutcome.UNCHANGED:
                        result.request = await self.store.save(
                            result.request, expected_version=request.version
                        )
                        if result.action is not None:
                            await self.store.append_actions(request.id, [result.action])
                        self._apply_effects(result, "timeout", request.status)
                except Exception as e:
                    logger.warning(f"Timeout sweep failed for request {candidate.id}: {e}")
                    report.failures[candidate.id] = str(e)
                    continue
            report.record(candidate.id, result)

        report.log_summary()
        return report

    async def run_sweeper(
        self,
        interval_seconds: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Sweep on a fixed cadence until ``stop_event`` is set."""
        interval = interval_seconds or self.engine.settings.workflows.sweep_interval_seconds
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Timeout sweeper started (interval={interval}s)")

        while not stop_event.is_set():
            await self.sweep()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Timeout sweeper stopped")
