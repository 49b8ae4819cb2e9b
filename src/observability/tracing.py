"""
OpenTelemetry tracing for the bidding engine.

Each engine operation (place_bid, retract_bid, finalize_item) runs inside an
`engine_span`; the span carries the room, item and team ids plus the outcome
code, so a rejected or slow bid can be found from its item id alone.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

TRACER_NAME = "auction.engine"
ATTRIBUTE_PREFIX = "auction."

_provider: Optional[TracerProvider] = None
_tracer: Optional[trace.Tracer] = None


def setup_tracing(
    service_name: str,
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    exporter: Optional[SpanExporter] = None,
) -> trace.Tracer:
    """
    Configure the tracer used by engine spans.

    Args:
        service_name: Reported as service.name on every span
        otlp_endpoint: OTLP gRPC collector, e.g. "http://collector:4317"
        console_export: Print finished spans to stdout
        exporter: Extra exporter fed synchronously (in-memory exporters in tests)

    Returns:
        The engine tracer
    """
    global _provider, _tracer

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))

    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info(f"[TRACING] Exporting spans to {otlp_endpoint}")

    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))

    # The global provider can be set only once per process; engine spans
    # always come from this provider so a re-setup still records.
    trace.set_tracer_provider(provider)
    _provider = provider
    _tracer = provider.get_tracer(TRACER_NAME)

    logger.info(f"[TRACING] Initialized for {service_name}")
    return _tracer


def get_tracer() -> trace.Tracer:
    """Engine tracer, or the global API tracer when setup_tracing() never ran."""
    if _tracer is None:
        return trace.get_tracer(TRACER_NAME)
    return _tracer


@contextmanager
def engine_span(
    operation: str, kind: trace.SpanKind = trace.SpanKind.INTERNAL, **attributes
) -> Iterator[Span]:
    """
    Run an engine operation inside a span.

    Keyword attributes are recorded as auction.<name>; None values are
    skipped and ints keep their type so amounts can be queried as numbers.

    Usage:
        with engine_span("place_bid", item_id=item_id, amount=amount) as span:
            ...
            set_outcome(span, "accepted")
    """
    with get_tracer().start_as_current_span(
        operation, kind=kind, record_exception=False, set_status_on_exception=False
    ) as span:
        for key, value in attributes.items():
            if value is None:
                continue
            if not isinstance(value, (str, bool, int, float)):
                value = str(value)
            span.set_attribute(ATTRIBUTE_PREFIX + key, value)

        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def set_outcome(span: Span, outcome: str) -> None:
    """Tag a span with the operation result (accepted, reset or an error code)."""
    span.set_attribute(ATTRIBUTE_PREFIX + "outcome", outcome)


def get_current_span() -> Span:
    return trace.get_current_span()


def shutdown_tracing() -> None:
    """Flush pending spans; engine spans fall back to the global tracer."""
    global _provider, _tracer

    if _provider is not None:
        _provider.shutdown()
        logger.info("[TRACING] Shut down")
    _provider = None
    _tracer = None
