"""
Distributed Tracing with OpenTelemetry.

Request spans come from the FastAPI and SQLAlchemy instrumentors; the
reconciliation path opens its own spans through ``trace_operation`` so a
payment can be followed from webhook to access grant.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from storefront.config import settings

# Probe and scrape traffic would drown out purchase traces
UNTRACED_URLS = "health,metrics"

_tracer = trace.get_tracer("storefront.operations")


def setup_tracing() -> None:
    """Install an OTLP-exporting tracer provider. No-op when tracing is disabled."""
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "service.version": settings.api_version,
            }
        ),
        sampler=ParentBased(TraceIdRatioBased(settings.trace_sample_rate)),
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_URLS)


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace queries on an async engine (instrumented through its sync core)."""
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def _as_attribute(value: Any) -> str | int | float | bool:
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class trace_operation:
    """
    Span around a unit of storefront work.

    None-valued attributes are dropped and anything non-primitive is
    stringified. An exception escaping the block marks the span as failed.

    Usage:
        with trace_operation("reconcile_payment", payment_intent_id=intent_id) as span:
            span.set_attribute("outcome", "recorded")
    """

    def __init__(self, operation_name: str, **attributes: Any) -> None:
        self.operation_name = operation_name
        self.attributes = {k: _as_attribute(v) for k, v in attributes.items() if v is not None}
        self._span_cm: Any = None

    def __enter__(self) -> Span:
        self._span_cm = _tracer.start_as_current_span(
            self.operation_name,
            attributes=self.attributes,
            record_exception=False,
            set_status_on_exception=False,
        )
        return self._span_cm.__enter__()  # type: ignore[no-any-return]

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_val is not None:
            span = trace.get_current_span()
            span.set_status(Status(StatusCode.ERROR, str(exc_val)))
            span.record_exception(exc_val)
        self._span_cm.__exit__(exc_type, exc_val, exc_tb)
