"""
OpenTelemetry-based tracer for approval workflow events.

Each approval request gets one long-lived parent span; engine events,
artifact transitions and sweeps become child spans under it. Traces can
be exported to any OTLP-compatible backend (Jaeger, Tempo, a collector)
or printed to the console.
"""

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
    OTLPSpanExporter as OTLPSpanExporterHTTP,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from signoff import __version__
from signoff.config.settings import OTelConfig

logger = logging.getLogger(__name__)

# Events after which a request span is closed
_TERMINAL_EVENTS = frozenset(
    {"workflow_completed", "workflow_rejected", "workflow_cancelled", "workflow_expired"}
)


class ApprovalTracer:
    """
    OpenTelemetry tracer for approval requests.

    A no-op when disabled, so callers never need to check.
    """

    # Defaults for request span memory management
    DEFAULT_REQUEST_TTL = 24 * 3600  # 1 day
    DEFAULT_MAX_REQUESTS = 10_000  # hard cap

    def __init__(
        self,
        config: OTelConfig,
        request_ttl_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
    ):
        self.config = config
        self._request_ttl = (
            request_ttl_seconds if request_ttl_seconds is not None else self.DEFAULT_REQUEST_TTL
        )
        self._max_requests = (
            max_requests if max_requests is not None else self.DEFAULT_MAX_REQUESTS
        )
        # Insertion/access order gives oldest-first eviction
        self._request_spans: OrderedDict[str, trace.Span] = OrderedDict()
        self._request_timestamps: OrderedDict[str, float] = OrderedDict()
        self._enabled = config.enabled
        self._provider = None

        if not self._enabled or config.exporter_type == "none":
            self._enabled = False
            self._tracer = None
            logger.info("ApprovalTracer disabled")
            return

        resource = Resource.create({SERVICE_NAME: config.service_name})
        provider = TracerProvider(resource=resource)

        if config.exporter_type == "console":
            exporter = ConsoleSpanExporter()
            logger.info("ApprovalTracer using console exporter")
        elif config.exporter_type == "otlp_http":
            exporter = OTLPSpanExporterHTTP(
                endpoint=config.endpoint,
                headers=config.headers or None,
            )
            logger.info(f"ApprovalTracer using OTLP HTTP exporter (endpoint={config.endpoint})")
        else:  # otlp (gRPC)
            exporter = OTLPSpanExporter(
                endpoint=config.endpoint,
                insecure=config.insecure,
            )
            logger.info(f"ApprovalTracer using OTLP gRPC exporter (endpoint={config.endpoint})")

        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        self._tracer = trace.get_tracer("signoff", __version__)
        self._provider = provider

        logger.info(f"ApprovalTracer initialized (exporter={config.exporter_type})")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _evict_stale_requests(self) -> None:
        """End spans of requests idle past the TTL, then enforce the hard cap."""
        now = time.monotonic()
        stale_ids: list[str] = []
        for rid, ts in self._request_timestamps.items():
            if now - ts > self._request_ttl:
                stale_ids.append(rid)
            else:
                # Ordered by last access: everything after this is fresher
                break

        for rid in stale_ids:
            self._end_and_remove_request(rid)

        if stale_ids:
            logger.debug(
                "Evicted %d stale request spans (TTL=%ds)", len(stale_ids), self._request_ttl
            )

        overflow = len(self._request_spans) - self._max_requests
        if overflow > 0:
            oldest = list(self._request_spans.keys())[:overflow]
            for rid in oldest:
                self._end_and_remove_request(rid)
            logger.debug(
                "Evicted %d request spans (max_requests=%d)", overflow, self._max_requests
            )

    def _end_and_remove_request(self, request_id: str) -> None:
        span = self._request_spans.pop(request_id, None)
        self._request_timestamps.pop(request_id, None)
        if span is not None:
            try:
                span.set_status(Status(StatusCode.OK))
                span.end()
            except Exception:
                logger.debug("Failed to end span for request %s", request_id, exc_info=True)

    def _get_or_create_request_span(self, request_id: str) -> Optional[trace.Span]:
        """Get the parent span of a request, creating it on first use."""
        self._evict_stale_requests()

        if request_id in self._request_spans:
            self._request_timestamps[request_id] = time.monotonic()
            self._request_timestamps.move_to_end(request_id)
            self._request_spans.move_to_end(request_id)
            return self._request_spans[request_id]

        if self._tracer:
            span = self._tracer.start_span(
                "approval-request",
                attributes={
                    "signoff.request_id": request_id,
                    "signoff.version": __version__,
                },
            )
            self._request_spans[request_id] = span
            self._request_timestamps[request_id] = time.monotonic()
            logger.debug(f"Created request span for {request_id}")

            self._evict_stale_requests()

        return self._request_spans.get(request_id)

    @staticmethod
    def _safe_json(obj: Any) -> str:
        try:
            return json.dumps(obj, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(obj)

    def log_event(
        self,
        request_id: str,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
        input_data: Optional[Dict[str, Any]] = None,
        output_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a workflow event as a child span of the request."""
        if not self._enabled or not self._tracer:
            return

        parent_span = self._get_or_create_request_span(request_id)
        parent_ctx = trace.set_span_in_context(parent_span) if parent_span else None

        with self._tracer.start_as_current_span(
            name,
            context=parent_ctx,
            attributes={
                "signoff.request_id": request_id,
                "signoff.event_type": name,
            },
        ) as span:
            if input_data:
                for key, value in input_data.items():
                    span.set_attribute(f"signoff.input.{key}", str(value))
            if output_data:
                for key, value in output_data.items():
                    span.set_attribute(f"signoff.output.{key}", str(value))
            if metadata:
                for key, value in metadata.items():
                    if isinstance(value, (dict, list)):
                        value = self._safe_json(value)
                    span.set_attribute(f"signoff.metadata.{key}", str(value))

            logger.debug(f"Logged event '{name}' for request {request_id}")

    def log_workflow_event(self, event: Any) -> None:
        """Record a ``WorkflowEvent`` emitted by the engine."""
        self.log_event(
            request_id=event.request_id,
            name=event.type.value,
            input_data={
                "stage_id": event.stage_id or "",
                "user_id": event.user_id or "",
            },
            metadata=event.metadata,
        )
        if event.type.value in _TERMINAL_EVENTS:
            self.end_trace(event.request_id)

    def log_transition(
        self,
        request_id: str,
        previous_status: str,
        new_status: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a status change."""
        self.log_event(
            request_id=request_id,
            name="status_transition",
            input_data={
                "previous_status": previous_status,
                "action": action,
            },
            output_data={"new_status": new_status},
            metadata={
                "transition": f"{previous_status} -> {new_status}",
                **(metadata or {}),
            },
        )

    def end_trace(self, request_id: str) -> None:
        """Close a request's parent span."""
        self._end_and_remove_request(request_id)

    def shutdown(self) -> None:
        """End all open spans and flush the provider."""
        for rid in list(self._request_spans.keys()):
            self._end_and_remove_request(rid)
        if self._provider is not None:
            self._provider.shutdown()
