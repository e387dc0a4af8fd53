"""
Persistence contract for approval requests.

The engine never touches storage; the coordinator talks to an
``ApprovalStore``. ``InMemoryApprovalStore`` is the reference
implementation, used by tests and the quickstart.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from signoff.errors import ConflictError, NotFoundError
from signoff.workflow.schema import ApprovalAction, ApprovalRequest, TargetType

logger = logging.getLogger(__name__)


@runtime_checkable
class ApprovalStore(Protocol):
    """
    Durable storage for requests and their action log.

    ``save`` is an optimistic compare-and-set: it must raise
    ``ConflictError`` when the stored version differs from
    ``expected_version`` (``None`` means "must not exist yet"), and it must
    refuse a second active request for the same target.
    """

    async def get(self, request_id: str) -> ApprovalRequest: ...

    async def find_active(
        self, target_type: TargetType, target_id: str
    ) -> Optional[ApprovalRequest]: ...

    async def list_active(self) -> List[ApprovalRequest]: ...

    async def save(
        self, request: ApprovalRequest, expected_version: Optional[int]
    ) -> ApprovalRequest: ...

    async def append_actions(
        self, request_id: str, actions: Sequence[ApprovalAction]
    ) -> None: ...

    async def actions_for(self, request_id: str) -> List[ApprovalAction]: ...


class InMemoryApprovalStore:
    """Dict-backed ``ApprovalStore``."""

    def __init__(self):
        self._requests: Dict[str, ApprovalRequest] = {}
        self._actions: Dict[str, List[ApprovalAction]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def get(self, request_id: str) -> ApprovalRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Unknown approval request: {request_id}", field="request_id")
        return request

    def _active_for(self, key: Tuple[TargetType, str]) -> Optional[ApprovalRequest]:
        for request in self._requests.values():
            if request.is_active and (request.target_type, request.target_id) == key:
                return request
        return None

    async def find_active(
        self, target_type: TargetType, target_id: str
    ) -> Optional[ApprovalRequest]:
        return self._active_for((TargetType(target_type), target_id))

    async def list_active(self) -> List[ApprovalRequest]:
        return [r for r in self._requests.values() if r.is_active]

    async def save(
        self, request: ApprovalRequest, expected_version: Optional[int]
    ) -> ApprovalRequest:
        async with self._lock:
            stored = self._requests.get(request.id)
            current_version = stored.version if stored else None
            if current_version != expected_version:
                raise ConflictError(
                    f"Request {request.id} was modified concurrently "
                    f"(expected version {expected_version}, found {current_version})"
                )

            if request.is_active:
                other = self._active_for((request.target_type, request.target_id))
                if other is not None and other.id != request.id:
                    raise ConflictError(
                        f"Request {other.id} is already active for "
                        f"{request.target_type.value} {request.target_id}"
                    )

            saved = request.model_copy(update={"version": (current_version or 0) + 1})
            self._requests[saved.id] = saved
            logger.debug(f"Saved request {saved.id} at version {saved.version}")
            return saved

    async def append_actions(self, request_id: str, actions: Sequence[ApprovalAction]) -> None:
        self._actions[request_id].extend(actions)

    async def actions_for(self, request_id: str) -> List[ApprovalAction]:
        return list(self._actions.get(request_id, []))
