"""Pytest configuration and fixtures for mongo_txn tests."""

from __future__ import annotations

import pytest
from prometheus_client import CollectorRegistry
from pydantic import BaseModel

from mongo_txn.adapters.outbound.memory_store import InMemoryDocumentStore
from mongo_txn.domain.entities import DocumentSchema
from mongo_txn.domain.services import ModelRegistry, TransactedModel, TransactionCoordinator
from mongo_txn.infrastructure.config import TransactionConfig
from mongo_txn.infrastructure.metrics import MetricsRegistry


class Item(BaseModel):
    """Business document used across the test suite."""

    num: int = 0
    name: str | None = None


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


@pytest.fixture
def txn_config() -> TransactionConfig:
    """Short waits so conflict paths finish quickly."""
    return TransactionConfig(
        expire_gap_seconds=60,
        read_retry_count=5,
        read_retry_interval_ms=5,
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def registry(store: InMemoryDocumentStore) -> ModelRegistry:
    registry = ModelRegistry()
    registry.add_collection_pseudo_model_pair("items", store, DocumentSchema(Item))
    return registry


@pytest.fixture
def coordinator(
    registry: ModelRegistry,
    store: InMemoryDocumentStore,
    txn_config: TransactionConfig,
    metrics_registry: MetricsRegistry,
) -> TransactionCoordinator:
    return TransactionCoordinator(
        registry,
        store.collection(txn_config.collection_name),
        config=txn_config,
        metrics=metrics_registry,
    )


@pytest.fixture
def items(coordinator: TransactionCoordinator) -> TransactedModel:
    return coordinator.model("items")


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests against a live MongoDB")
