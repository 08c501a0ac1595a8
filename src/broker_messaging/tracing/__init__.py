"""Optional tracing collaborators."""

from .tracers import NoOpTracer, OpenTelemetryTracer

__all__ = ["NoOpTracer", "OpenTelemetryTracer"]
