"""Infrastructure layer - cross-cutting concerns."""

from mongo_txn.infrastructure.config import Config, get_config
from mongo_txn.infrastructure.logging import setup_logging, get_logger
from mongo_txn.infrastructure.metrics import setup_metrics, get_metrics, MetricsRegistry
from mongo_txn.infrastructure.tracing import setup_tracing, get_tracer, trace_span, transaction_span

__all__ = [
    "Config",
    "get_config",
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "trace_span",
    "transaction_span",
]
