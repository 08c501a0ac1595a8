"""Tracer implementations for publish and consume spans."""

from __future__ import annotations

from contextlib import contextmanager, nullcontext
from typing import Any, ContextManager, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from broker_messaging.contracts import ITracer
from broker_messaging.roles import Role

MESSAGING_SYSTEM = "rabbitmq"

_SPAN_KINDS = {
    Role.PRODUCER: SpanKind.PRODUCER,
    Role.CONSUMER: SpanKind.CONSUMER,
}


class NoOpTracer(ITracer):
    """Tracer used when no tracing backend is configured."""

    def span(self, name: str, *, role: Role, attributes: Mapping[str, Any]) -> ContextManager[None]:
        return nullcontext()


class OpenTelemetryTracer(ITracer):
    """Records messaging operations as OpenTelemetry spans.

    Spans carry ``messaging.system`` plus the attributes supplied by the
    caller. Exceptions escaping the wrapped block are recorded on the span and
    re-raised unchanged.
    """

    def __init__(self, tracer: Optional[trace.Tracer] = None) -> None:
        self._tracer = tracer or trace.get_tracer("broker_messaging")

    def span(self, name: str, *, role: Role, attributes: Mapping[str, Any]) -> ContextManager[None]:
        return self._span(name, role, attributes)

    @contextmanager
    def _span(self, name: str, role: Role, attributes: Mapping[str, Any]) -> Iterator[None]:
        span_attributes = {"messaging.system": MESSAGING_SYSTEM, **attributes}
        with self._tracer.start_as_current_span(
            name,
            kind=_SPAN_KINDS[role],
            attributes=span_attributes,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise
