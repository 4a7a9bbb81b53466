"""Transaction Engine - unified entry point for mongo_txn.

This module provides the TransactionEngine class that wires together the
document store, the model registry, the transaction record schema and the
coordinator.

Usage:
    from mongo_txn.application import TransactionEngine

    engine = TransactionEngine.from_config()
    accounts = engine.register("accounts", DocumentSchema(Account))

    txn = await engine.begin()
    ann = await txn.find_one(accounts, {"owner": "ann"})
    ann["balance"] -= 10
    await txn.commit()

    engine.close()
"""

from __future__ import annotations

from typing import Any, Mapping

from mongo_txn.adapters.outbound.mongo_store import MongoDocumentStore
from mongo_txn.domain.entities import TRANSACTION_SCHEMA, DocumentSchema, Initializer, bind_shard_key
from mongo_txn.domain.services import (
    ModelRegistry,
    TransactedModel,
    Transaction,
    TransactionCoordinator,
    TransactionRepository,
)
from mongo_txn.domain.value_objects import TransactionId
from mongo_txn.infrastructure.config import Config, TransactionConfig, get_config
from mongo_txn.infrastructure.logging import get_logger, setup_logging
from mongo_txn.infrastructure.metrics import MetricsRegistry
from mongo_txn.infrastructure.tracing import setup_tracing
from mongo_txn.ports.outbound import DocumentStore

logger = get_logger(__name__)


class TransactionEngine:
    """Main entry point that owns a store and a coordinator.

    Business collections and the transactions collection share one store.
    Pass ``transaction_shard_key`` to shard the transactions collection;
    the record schema is then bound with ``bind_shard_key``.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: TransactionConfig | None = None,
        metrics: MetricsRegistry | None = None,
        transaction_shard_key: tuple[str, ...] | None = None,
        transaction_shard_fields: Mapping[str, Any] | None = None,
        transaction_shard_initializer: Initializer | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Document store holding every collection.
            config: Transaction settings (defaults if None).
            metrics: Metrics registry (the global one if None).
            transaction_shard_key: Routing rule for the transactions collection.
            transaction_shard_fields: pydantic definitions of its shard fields.
            transaction_shard_initializer: Derives shard values of a new record.
        """
        self._store = store
        self._config = config or TransactionConfig()

        schema = TRANSACTION_SCHEMA
        if transaction_shard_key:
            schema = bind_shard_key(
                schema,
                rule=transaction_shard_key,
                fields=transaction_shard_fields,
                initialize=transaction_shard_initializer,
            )

        self._registry = ModelRegistry()
        repository = TransactionRepository(
            store.collection(self._config.collection_name), schema
        )
        self._coordinator = TransactionCoordinator(
            self._registry, repository, self._config, metrics
        )

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> TransactionEngine:
        """Create an engine connected to MongoDB as configured.

        Also sets up logging, and tracing when an OTLP endpoint is configured.
        """
        config = config or get_config()
        setup_logging(config.observability.log_level, config.observability.log_format)
        if config.observability.otel_endpoint:
            setup_tracing(config.observability)
        logger.info(
            "connecting",
            database=config.mongo.database,
            collection=config.transaction.collection_name,
        )
        store = MongoDocumentStore.from_uri(
            config.mongo.uri,
            config.mongo.database,
            server_selection_timeout_ms=config.mongo.server_selection_timeout_ms,
        )
        return cls(store, config.transaction, metrics)

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def coordinator(self) -> TransactionCoordinator:
        return self._coordinator

    def register(self, name: str, schema: DocumentSchema) -> TransactedModel:
        """Register a business collection and return its lock-aware accessor."""
        logger.debug("registering_collection", collection=name, schema=schema.name)
        return self._coordinator.transacted_model(self._store, name, schema)

    def model(self, name: str) -> TransactedModel:
        return self._coordinator.model(name)

    async def begin(self, transaction_id: TransactionId | None = None) -> Transaction:
        return await self._coordinator.begin(transaction_id)

    async def load(self, transaction_id: TransactionId) -> Transaction:
        return await self._coordinator.load(transaction_id)

    def close(self) -> None:
        """Release the store's connections, if it holds any."""
        close = getattr(self._store, "close", None)
        if close is not None:
            close()
