"""Prometheus metrics for the transaction coordinator."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all mongo_txn metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        self.transactions_total = Counter(
            "mongo_txn_transactions_total",
            "Transactions that reached a terminal state",
            ["status"],  # commit, expire
            registry=self._registry,
        )

        self.transactions_active = Gauge(
            "mongo_txn_transactions_active",
            "Transactions begun by this process and not yet resolved",
            registry=self._registry,
        )

        self.lock_conflicts_total = Counter(
            "mongo_txn_lock_conflicts_total",
            "Lock conflicts surfaced to callers",
            ["kind"],  # write, read
            registry=self._registry,
        )

        self.lock_wait_seconds = Histogram(
            "mongo_txn_lock_wait_seconds",
            "Time readers spent waiting on a foreign transaction lock",
            buckets=(0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
            registry=self._registry,
        )

        self.recoveries_total = Counter(
            "mongo_txn_recoveries_total",
            "Transactions resolved lazily by a reader",
            ["action"],  # rollback, roll_forward, orphan
            registry=self._registry,
        )

        self.info = Info(
            "mongo_txn",
            "mongo_txn library information",
            registry=self._registry,
        )


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up Prometheus metrics server.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from mongo_txn import __version__
    _metrics.info.info({
        "version": __version__,
    })

    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
