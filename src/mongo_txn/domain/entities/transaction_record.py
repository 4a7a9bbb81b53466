"""Persisted transaction record and its document entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import BaseModel, Field

from mongo_txn.domain.entities.schema import DocumentSchema
from mongo_txn.domain.value_objects import ID_FIELD, RESERVED_FIELDS, TransactionId, TransactionState


def diff_fields(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
) -> tuple[dict[str, Any], list[str]]:
    """Compare two images of a document's business fields.

    Returns:
        The fields to ``$set`` (added or changed) and the fields to ``$unset``.
    """
    before = {k: v for k, v in before.items() if k not in RESERVED_FIELDS}
    after = {k: v for k, v in after.items() if k not in RESERVED_FIELDS}
    changed = {k: v for k, v in after.items() if k not in before or before[k] != v}
    removed = [k for k in before if k not in after]
    return changed, removed


@dataclass
class DocEntry:
    """One document touched by a transaction.

    ``saved_fields`` is the full pre-image captured by the atomic lock
    acquisition and is what a rollback writes back. The commit image is
    filled in only when the transaction leaves ``born``: a full
    ``post_image`` for a new document, otherwise the fields the caller
    changed (``set_fields``/``unset_fields``), so concurrent writes to
    other fields survive the commit.
    """

    # Collection name, resolved through the model registry
    collection: str

    document_id: Any

    # Shard-key selector of the document (always contains every routing field)
    key: dict[str, Any]

    is_new: bool = False

    # Pending delete registered by remove_doc
    remove: bool = False

    saved_fields: dict[str, Any] | None = None

    post_image: dict[str, Any] | None = None

    set_fields: dict[str, Any] | None = None

    unset_fields: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.set_fields) or bool(self.unset_fields)

    def committed_image(self) -> dict[str, Any] | None:
        """The stored image once this entry is applied, if it can be derived."""
        if self.post_image is not None:
            return dict(self.post_image)
        if self.saved_fields is None:
            return None
        image = {**self.saved_fields, **(self.set_fields or {})}
        for name in self.unset_fields:
            image.pop(name, None)
        return image

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "document_id": self.document_id,
            "key": self.key,
            "is_new": self.is_new,
            "remove": self.remove,
            "saved_fields": self.saved_fields,
            "post_image": self.post_image,
            "set_fields": self.set_fields,
            "unset_fields": list(self.unset_fields),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DocEntry:
        return cls(
            collection=data["collection"],
            document_id=data["document_id"],
            key=data.get("key") or {ID_FIELD: data["document_id"]},
            is_new=data.get("is_new", False),
            remove=data.get("remove", False),
            saved_fields=data.get("saved_fields"),
            post_image=data.get("post_image"),
            set_fields=data.get("set_fields"),
            unset_fields=list(data.get("unset_fields") or []),
        )


@dataclass
class TransactionRecord:
    """A document of the transactions collection."""

    id: TransactionId

    state: TransactionState = TransactionState.BORN

    # Entries in acquisition order; append-only while BORN
    docs: list[DocEntry] = field(default_factory=list)

    # Shard-key values and any other fields the transaction schema adds
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            ID_FIELD: self.id,
            "state": self.state.value,
            "docs": [entry.to_dict() for entry in self.docs],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransactionRecord:
        extra = {k: v for k, v in data.items() if k not in (ID_FIELD, "state", "docs")}
        return cls(
            id=TransactionId(data[ID_FIELD]),
            state=TransactionState(data.get("state", TransactionState.BORN.value)),
            docs=[DocEntry.from_dict(entry) for entry in data.get("docs", [])],
            extra=extra,
        )

    def find_entry(self, collection: str, document_id: Any) -> DocEntry | None:
        for entry in self.docs:
            if entry.collection == collection and entry.document_id == document_id:
                return entry
        return None


class TransactionFields(BaseModel):
    """Validation model for transaction records.

    ``bind_shard_key`` extends it when the transactions collection is sharded.
    """

    state: TransactionState = TransactionState.BORN
    docs: list[dict[str, Any]] = Field(default_factory=list)


TRANSACTION_SCHEMA = DocumentSchema(TransactionFields)
