"""Unit tests for the in-memory document store adapter."""

from __future__ import annotations

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from mongo_txn.adapters.outbound.memory_store import (
    InMemoryCollection,
    InMemoryDocumentStore,
    apply_update,
    matches,
)


@pytest.mark.unit
class TestMatches:
    """Selector evaluation."""

    def test_equality(self) -> None:
        oid = ObjectId()
        assert matches({"_id": oid, "a": 1}, {"_id": oid, "a": 1})
        assert not matches({"a": 1}, {"a": 2})

    def test_null_matches_missing(self) -> None:
        assert matches({"a": 1}, {"t": None})
        assert matches({"a": 1}, {"t": {"$in": [ObjectId(), None]}})

    def test_operators(self) -> None:
        doc = {"n": 5, "s": "x"}
        assert matches(doc, {"n": {"$gt": 4, "$lte": 5}})
        assert not matches(doc, {"n": {"$lt": 5}})
        assert matches(doc, {"n": {"$ne": 4}})
        assert matches(doc, {"s": {"$in": ["x", "y"]}})
        assert matches(doc, {"s": {"$exists": True}, "z": {"$exists": False}})

    def test_and_or(self) -> None:
        doc = {"n": 5}
        assert matches(doc, {"$and": [{"n": {"$gte": 5}}, {"n": {"$lte": 5}}]})
        assert matches(doc, {"$or": [{"n": 1}, {"n": 5}]})

    def test_array_membership(self) -> None:
        assert matches({"tags": ["a", "b"]}, {"tags": "b"})

    def test_dotted_path(self) -> None:
        assert matches({"a": {"b": 1}}, {"a.b": 1})

    def test_comparison_with_missing_field(self) -> None:
        assert not matches({}, {"n": {"$gt": 1}})

    def test_unsupported_operator(self) -> None:
        with pytest.raises(ValueError):
            matches({"n": 1}, {"n": {"$regex": "x"}})


@pytest.mark.unit
class TestApplyUpdate:
    """Update document evaluation."""

    def test_set_unset_push(self) -> None:
        doc = {"a": 1, "b": 2}
        apply_update(doc, {"$set": {"a": 3, "c.d": 4}, "$unset": {"b": ""}, "$push": {"l": 1}})
        assert doc == {"a": 3, "c": {"d": 4}, "l": [1]}

    def test_push_appends(self) -> None:
        doc = {"l": [1]}
        apply_update(doc, {"$push": {"l": 2}})
        assert doc["l"] == [1, 2]

    def test_unsupported_operator(self) -> None:
        with pytest.raises(ValueError):
            apply_update({}, {"$inc": {"a": 1}})


@pytest.mark.unit
class TestInMemoryCollection:
    """CRUD through the DocumentCollection contract."""

    @pytest.fixture
    def collection(self) -> InMemoryCollection:
        return InMemoryDocumentStore().collection("things")

    async def test_insert_and_find(self, collection: InMemoryCollection) -> None:
        await collection.insert_one({"_id": 1, "n": 1})
        assert await collection.find_one({"_id": 1}) == {"_id": 1, "n": 1}
        assert await collection.find_one({"_id": 2}) is None

    async def test_insert_assigns_id(self, collection: InMemoryCollection) -> None:
        await collection.insert_one({"n": 1})
        doc = await collection.find_one({"n": 1})
        assert isinstance(doc["_id"], ObjectId)

    async def test_duplicate_key(self, collection: InMemoryCollection) -> None:
        await collection.insert_one({"_id": 1})
        with pytest.raises(DuplicateKeyError):
            await collection.insert_one({"_id": 1})

    async def test_returned_documents_are_copies(self, collection: InMemoryCollection) -> None:
        await collection.insert_one({"_id": 1, "l": [1]})
        doc = await collection.find_one({"_id": 1})
        doc["l"].append(2)
        assert (await collection.find_one({"_id": 1}))["l"] == [1]

    async def test_natural_order_and_sort(self, collection: InMemoryCollection) -> None:
        for n in (3, 1, 2):
            await collection.insert_one({"_id": n, "n": n})

        natural = await collection.find({})
        ascending = await collection.find({}, sort=[("n", 1)])
        descending = await collection.find({}, sort={"n": -1})

        assert [d["n"] for d in natural] == [3, 1, 2]
        assert [d["n"] for d in ascending] == [1, 2, 3]
        assert [d["n"] for d in descending] == [3, 2, 1]

    async def test_projection_keeps_id(self, collection: InMemoryCollection) -> None:
        await collection.insert_one({"_id": 1, "a": 1, "b": 2})
        assert await collection.find_one({}, projection=["a"]) == {"_id": 1, "a": 1}

    async def test_conditional_writes_report_match(self, collection: InMemoryCollection) -> None:
        await collection.insert_one({"_id": 1, "v": 1})

        assert await collection.update_one({"_id": 1, "v": 1}, {"$set": {"v": 2}})
        assert not await collection.update_one({"_id": 1, "v": 1}, {"$set": {"v": 3}})
        assert await collection.replace_one({"_id": 1, "v": 2}, {"w": 1})
        assert await collection.find_one({"_id": 1}) == {"_id": 1, "w": 1}
        assert not await collection.delete_one({"_id": 2})
        assert await collection.delete_one({"_id": 1})
        assert len(collection) == 0

    async def test_find_one_and_update(self, collection: InMemoryCollection) -> None:
        await collection.insert_one({"_id": 1, "v": 1})

        before = await collection.find_one_and_update({"_id": 1}, {"$set": {"v": 2}})
        after = await collection.find_one_and_update(
            {"_id": 1}, {"$set": {"v": 3}}, return_updated=True
        )
        missing = await collection.find_one_and_update({"_id": 9}, {"$set": {"v": 0}})

        assert before == {"_id": 1, "v": 1}
        assert after == {"_id": 1, "v": 3}
        assert missing is None

    async def test_find_one_and_update_respects_sort(self, collection: InMemoryCollection) -> None:
        for n in (2, 1, 3):
            await collection.insert_one({"_id": n, "n": n})

        first = await collection.find_one_and_update(
            {}, {"$set": {"hit": True}}, sort=[("n", -1)]
        )

        assert first["n"] == 3

    async def test_unique_index(self, collection: InMemoryCollection) -> None:
        await collection.create_index([("name", 1)], unique=True)
        await collection.insert_one({"_id": 1, "name": "a"})
        await collection.insert_one({"_id": 2, "name": "b"})

        with pytest.raises(DuplicateKeyError):
            await collection.insert_one({"_id": 3, "name": "a"})
        with pytest.raises(DuplicateKeyError):
            await collection.update_one({"_id": 2}, {"$set": {"name": "a"}})
        with pytest.raises(DuplicateKeyError):
            await collection.replace_one({"_id": 2}, {"name": "a"})

        assert await collection.find_one({"_id": 2}) == {"_id": 2, "name": "b"}
        assert await collection.replace_one({"_id": 1}, {"name": "a", "v": 1})

    async def test_unique_index_treats_missing_as_null(self, collection: InMemoryCollection) -> None:
        await collection.create_index({"name": 1}, unique=True)
        await collection.insert_one({"_id": 1})

        with pytest.raises(DuplicateKeyError):
            await collection.insert_one({"_id": 2, "name": None})

    async def test_unique_index_rejects_existing_clash(self, collection: InMemoryCollection) -> None:
        await collection.insert_one({"_id": 1, "name": "a"})
        await collection.insert_one({"_id": 2, "name": "a"})

        with pytest.raises(DuplicateKeyError):
            await collection.create_index([("name", 1)], unique=True)


@pytest.mark.unit
class TestInMemoryDocumentStore:
    def test_collections_are_cached(self) -> None:
        store = InMemoryDocumentStore()
        assert store.collection("a") is store.collection("a")
        assert store.collection("a").name == "a"

    async def test_clear(self) -> None:
        store = InMemoryDocumentStore()
        await store.collection("a").insert_one({"_id": 1})
        store.clear()
        assert await store.collection("a").find_one({}) is None
