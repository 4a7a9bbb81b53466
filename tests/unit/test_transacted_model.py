"""Unit tests for the direct, lock-aware collection accessor."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from mongo_txn.adapters.outbound.memory_store import InMemoryDocumentStore
from mongo_txn.domain.services import ModelRegistry, TransactedModel, TransactionCoordinator
from mongo_txn.domain.value_objects import NULL_OBJECTID, ErrorType, new_transaction_id
from mongo_txn.infrastructure.config import TransactionConfig
from mongo_txn.infrastructure.metrics import MetricsRegistry
from mongo_txn.ports.inbound import TransactionConflictError


@pytest.mark.unit
class TestSave:
    """Tests for non-transactional writes."""

    async def test_save_new_then_find(
        self, items: TransactedModel, store: InMemoryDocumentStore
    ) -> None:
        doc = await items.save(items.new(num=1, name="a"))

        assert not doc.is_new
        assert await store.collection("items").find_one({"_id": doc.id}) == {
            "_id": doc.id,
            "num": 1,
            "name": "a",
            "t": NULL_OBJECTID,
        }
        found = await items.find_one({"name": "a"})
        assert found.to_dict() == {"_id": doc.id, "num": 1, "name": "a"}

    async def test_save_persisted_replaces(self, items: TransactedModel) -> None:
        doc = await items.save(items.new(num=1))
        doc["num"] = 7

        await items.save(doc)

        assert (await items.find_by_id(doc.id))["num"] == 7

    async def test_save_validates(self, items: TransactedModel) -> None:
        with pytest.raises(ValidationError):
            await items.save(items.new(num="many"))

    async def test_save_locked_document_conflicts(
        self,
        coordinator: TransactionCoordinator,
        items: TransactedModel,
        metrics_registry: MetricsRegistry,
    ) -> None:
        doc = await items.save(items.new(num=1))
        txn = await coordinator.begin()
        await txn.add(await items.find_by_id(doc.id))
        doc["num"] = 2

        with pytest.raises(TransactionConflictError) as exc_info:
            await items.save(doc)

        assert exc_info.value.error_type is ErrorType.TRANSACTION_CONFLICT_1
        assert metrics_registry._registry.get_sample_value(
            "mongo_txn_lock_conflicts_total", {"kind": "write"}
        ) == 1


@pytest.mark.unit
class TestReads:
    """Tests for lock-aware reads."""

    async def test_find_one_missing(self, items: TransactedModel) -> None:
        assert await items.find_one({"num": 404}) is None

    async def test_find_sorted(self, items: TransactedModel) -> None:
        for n in (2, 3, 1):
            await items.save(items.new(num=n))

        found = await items.find({}, sort=[("num", -1)])

        assert [d["num"] for d in found] == [3, 2, 1]

    async def test_projection_keeps_routing_fields(self, items: TransactedModel) -> None:
        doc = await items.save(items.new(num=1, name="hidden"))

        found = await items.find_one({"_id": doc.id}, projection=["num"])

        assert found.to_dict() == {"_id": doc.id, "num": 1}
        assert found.lock == NULL_OBJECTID

    async def test_native_reads_strip_lock(self, items: TransactedModel) -> None:
        doc = await items.save(items.new(num=1))

        one = await items.find_one_native({"_id": doc.id})
        many = await items.find_native({})

        assert one == {"_id": doc.id, "num": 1}
        assert many == [one]

    async def test_held_document_times_out(
        self,
        coordinator: TransactionCoordinator,
        items: TransactedModel,
        metrics_registry: MetricsRegistry,
    ) -> None:
        doc = await items.save(items.new(num=1))
        txn = await coordinator.begin()
        await txn.add(doc)

        with pytest.raises(TransactionConflictError) as exc_info:
            await items.find_one({"_id": doc.id})

        assert str(exc_info.value) == "TRANSACTION_CONFLICT_2"
        assert exc_info.value.holder == txn.id
        sample = metrics_registry._registry.get_sample_value
        assert sample("mongo_txn_lock_conflicts_total", {"kind": "read"}) == 1
        assert sample("mongo_txn_lock_wait_seconds_count") == 5

    async def test_find_many_with_held_document_times_out(
        self, coordinator: TransactionCoordinator, items: TransactedModel
    ) -> None:
        await items.save(items.new(num=1))
        held = await items.save(items.new(num=2))
        txn = await coordinator.begin()
        await txn.add(held)

        with pytest.raises(TransactionConflictError):
            await items.find({})

    async def test_reader_waits_for_commit(
        self,
        registry: ModelRegistry,
        store: InMemoryDocumentStore,
        metrics_registry: MetricsRegistry,
    ) -> None:
        """A reader blocked by a live lock sees the committed value."""
        config = TransactionConfig(read_retry_count=20, read_retry_interval_ms=10)
        coordinator = TransactionCoordinator(
            registry, store.collection("transactions"), config, metrics_registry
        )
        items = coordinator.model("items")
        doc = await items.save(items.new(num=1))
        txn = await coordinator.begin()
        await txn.add(doc)
        doc["num"] = 2

        async def commit_later() -> None:
            await asyncio.sleep(0.05)
            await txn.commit()

        found, _ = await asyncio.gather(items.find_one({"_id": doc.id}), commit_later())

        assert found["num"] == 2
        assert found.lock == NULL_OBJECTID

    async def test_force_reads_ignore_locks(
        self, coordinator: TransactionCoordinator, items: TransactedModel
    ) -> None:
        doc = await items.save(items.new(num=1))
        txn = await coordinator.begin()
        await txn.add(doc)

        one = await items.find_one_force({"_id": doc.id})
        many = await items.find_force({})

        assert one.lock == txn.id
        assert [d.lock for d in many] == [txn.id]


@pytest.mark.unit
class TestRecoveryOnRead:
    """Reads that clean up after dead transactions."""

    async def test_orphan_lock_released(
        self, items: TransactedModel, store: InMemoryDocumentStore
    ) -> None:
        doc = await items.save(items.new(num=1))
        await store.collection("items").update_one({"_id": doc.id}, {"$set": {"t": ObjectId()}})

        found = await items.find_one({"_id": doc.id})

        assert found["num"] == 1
        assert (await store.collection("items").find_one({"_id": doc.id}))["t"] == NULL_OBJECTID

    async def test_orphan_placeholder_deleted(
        self, items: TransactedModel, store: InMemoryDocumentStore
    ) -> None:
        doc_id = ObjectId()
        await store.collection("items").insert_one({"_id": doc_id, "t": ObjectId(), "__new": True})

        assert await items.find_one({"_id": doc_id}) is None
        assert await store.collection("items").find_one({"_id": doc_id}) is None

    async def test_stale_transaction_rolled_back(
        self,
        coordinator: TransactionCoordinator,
        items: TransactedModel,
        store: InMemoryDocumentStore,
        metrics_registry: MetricsRegistry,
    ) -> None:
        doc = await items.save(items.new(num=1))
        created = items.new(num=9)
        txn = await coordinator.begin(
            new_transaction_id(datetime.now(timezone.utc) - timedelta(minutes=5))
        )
        await txn.add(doc)
        await txn.add(created)

        found = await items.find({})

        assert [d.to_dict() for d in found] == [{"_id": doc.id, "num": 1}]
        assert await store.collection("transactions").find_one({"_id": txn.id}) is None
        assert metrics_registry._registry.get_sample_value(
            "mongo_txn_recoveries_total", {"action": "rollback"}
        ) == 1

    async def test_committed_transaction_rolled_forward(
        self,
        coordinator: TransactionCoordinator,
        items: TransactedModel,
        store: InMemoryDocumentStore,
    ) -> None:
        doc = await items.save(items.new(num=1))
        txn = await coordinator.begin()
        await txn.add(doc)
        doc["num"] = 6
        await txn._commit()

        native = await items.find_one_native({"_id": doc.id})

        assert native == {"_id": doc.id, "num": 6}
        assert await store.collection("transactions").find_one({"_id": txn.id}) is None
