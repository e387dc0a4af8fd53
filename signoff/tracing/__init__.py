"""OpenTelemetry tracing for approval workflows."""

from signoff.tracing.otel_tracer import ApprovalTracer

__all__ = ["ApprovalTracer"]
