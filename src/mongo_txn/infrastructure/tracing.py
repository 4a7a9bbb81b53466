"""OpenTelemetry tracing for transaction operations.

Commit, expire and the recovery paths of the Lock Protocol each run in a
span carrying the transaction id, so a roll-forward performed by a reader
can be matched to the commit that started it.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Generator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from mongo_txn.infrastructure.config import ObservabilityConfig

TRANSACTION_ID_ATTRIBUTE = "mongo_txn.transaction_id"

_tracer: trace.Tracer | None = None


def setup_tracing(
    config: ObservabilityConfig,
    console_export: bool = False,
) -> trace.Tracer:
    """
    Install a tracer provider exporting to the configured OTLP endpoint.

    Args:
        config: Observability settings (service name, OTLP endpoint)
        console_export: Also print finished spans, for local debugging

    Returns:
        The tracer used by mongo_txn
    """
    global _tracer

    from mongo_txn import __version__

    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": config.otel_service_name, "service.version": __version__}
        )
    )
    if config.otel_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otel_endpoint, insecure=True))
        )
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("mongo_txn")
    return _tracer


def get_tracer() -> trace.Tracer:
    """Return the mongo_txn tracer (a no-op one until a provider is installed)."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("mongo_txn")
    return _tracer


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """Run the block in a span. Spans stay current across awaits."""
    with get_tracer().start_as_current_span(name, attributes=attributes) as span:
        yield span


@contextmanager
def transaction_span(
    operation: str,
    transaction_id: Any,
    **attributes: Any,
) -> Generator[trace.Span, None, None]:
    """
    Span for one operation on a transaction.

    Args:
        operation: Short operation name, e.g. ``commit`` or ``roll_forward``
        transaction_id: Id of the transaction the operation acts on
        **attributes: Extra span attributes

    Yields:
        The span; an exception leaving the block marks it as failed
    """
    with trace_span(
        f"mongo_txn.{operation}",
        {TRANSACTION_ID_ATTRIBUTE: str(transaction_id), **attributes},
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise
