"""Unit tests for the Document handle."""

from __future__ import annotations

import json

import pytest
from bson import ObjectId

from mongo_txn.domain.entities import Document, New, Persisted
from mongo_txn.domain.value_objects import NULL_OBJECTID


@pytest.mark.unit
class TestDocument:
    """Tests for Document state and field access."""

    def test_new_document(self) -> None:
        doc = Document("items", {"num": 1})

        assert doc.is_new
        assert isinstance(doc.state, New)
        assert isinstance(doc.id, ObjectId)
        assert doc["num"] == 1
        assert doc.lock == NULL_OBJECTID
        assert not doc.is_locked

    def test_from_native(self) -> None:
        """A stored image becomes a persisted handle with the lock kept apart."""
        holder = ObjectId()
        doc = Document.from_native("items", {"_id": 5, "num": 2, "t": holder})

        assert not doc.is_new
        assert isinstance(doc.state, Persisted)
        assert doc.state.saved_fields == {"_id": 5, "num": 2}
        assert doc.lock == holder
        assert doc.is_locked
        assert "t" not in doc

    def test_from_native_without_lock_field(self) -> None:
        doc = Document.from_native("items", {"_id": 5})
        assert doc.lock == NULL_OBJECTID

    def test_lock_field_not_assignable(self) -> None:
        doc = Document("items", {})
        with pytest.raises(KeyError):
            doc["t"] = ObjectId()
        with pytest.raises(KeyError):
            doc["__new"] = True

    def test_persisted_id_is_immutable(self) -> None:
        doc = Document.from_native("items", {"_id": 5})
        with pytest.raises(KeyError):
            doc["_id"] = 6
        with pytest.raises(KeyError):
            del doc["_id"]

    def test_new_id_is_assignable(self) -> None:
        doc = Document("items", {})
        doc["_id"] = 42
        assert doc.id == 42

    def test_serialization_hides_lock(self) -> None:
        doc = Document.from_native("items", {"_id": 5, "num": 2, "t": ObjectId()})

        assert doc.to_dict() == {"_id": 5, "num": 2}
        assert "t" not in json.loads(doc.to_json())
        assert doc.to_native()["t"] == doc.lock

    def test_mark_persisted(self) -> None:
        doc = Document("items", {"_id": 1, "num": 1})
        doc.lock = ObjectId()

        doc.mark_persisted({"_id": 1, "num": 3, "t": ObjectId()})

        assert not doc.is_new
        assert doc["num"] == 3
        assert doc.lock == NULL_OBJECTID

    def test_reset(self) -> None:
        doc = Document.from_native("items", {"_id": 1, "num": 1})
        doc["num"] = 9
        doc["extra"] = True

        doc.reset()

        assert doc.to_dict() == {"_id": 1, "num": 1}

    def test_saved_fields_are_a_copy(self) -> None:
        doc = Document.from_native("items", {"_id": 1, "tags": ["a"]})
        doc["tags"].append("b")
        assert doc.state.saved_fields["tags"] == ["a"]

    def test_mapping_protocol(self) -> None:
        doc = Document("items", {"_id": 1, "a": 1, "b": 2})
        assert len(doc) == 3
        assert set(doc) == {"_id", "a", "b"}
        del doc["a"]
        assert "a" not in doc
