"""In-memory handle on a business document.

A ``Document`` is a mutable mapping of business fields plus two pieces of
bookkeeping kept apart from those fields: the lock field value, and an
explicit persistence state. The state is a tagged value, ``New()`` for a
document never written to the store and ``Persisted(saved_fields)`` for one
that was read from or written to it, so "is this document new?" is never
guessed from which fields happen to be present.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, MutableMapping, Union

from bson import ObjectId, json_util

from mongo_txn.domain.value_objects import (
    ID_FIELD,
    LOCK_FIELD,
    NEW_MARKER_FIELD,
    NULL_OBJECTID,
    is_unlocked,
)


@dataclass(frozen=True)
class New:
    """The document has never been written to the store."""


@dataclass(frozen=True)
class Persisted:
    """The document exists in the store.

    Attributes:
        saved_fields: The persisted image as of the last read or write.
    """

    saved_fields: Mapping[str, Any] = field(default_factory=dict)


DocumentState = Union[New, Persisted]


class Document(MutableMapping[str, Any]):
    """A business document belonging to one collection.

    Item access reads and writes business fields; ``_id`` is readable but
    cannot be reassigned once the document is persisted, and the lock and
    new-document marker fields are not reachable through the mapping at all.
    """

    def __init__(
        self,
        collection: str,
        fields: Mapping[str, Any] | None = None,
        *,
        state: DocumentState | None = None,
        lock: ObjectId = NULL_OBJECTID,
    ) -> None:
        self._collection = collection
        self._fields: dict[str, Any] = {
            k: v for k, v in (fields or {}).items() if k not in (LOCK_FIELD, NEW_MARKER_FIELD)
        }
        self._fields.setdefault(ID_FIELD, ObjectId())
        self.lock = lock
        self.state: DocumentState = state or New()

    @classmethod
    def from_native(cls, collection: str, raw: Mapping[str, Any]) -> Document:
        """Build a persisted handle from a document as returned by the store."""
        fields = {k: v for k, v in raw.items() if k not in (LOCK_FIELD, NEW_MARKER_FIELD)}
        lock = raw.get(LOCK_FIELD)
        return cls(
            collection,
            fields,
            state=Persisted(copy.deepcopy(fields)),
            lock=NULL_OBJECTID if lock is None else lock,
        )

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def id(self) -> Any:
        return self._fields[ID_FIELD]

    @property
    def is_new(self) -> bool:
        return isinstance(self.state, New)

    @property
    def is_locked(self) -> bool:
        return not is_unlocked(self.lock)

    def mark_persisted(self, image: Mapping[str, Any]) -> None:
        """Record that ``image`` is now the stored state and the lock is free."""
        self._fields = {
            k: copy.deepcopy(v)
            for k, v in image.items()
            if k not in (LOCK_FIELD, NEW_MARKER_FIELD)
        }
        self.state = Persisted(copy.deepcopy(self._fields))
        self.lock = NULL_OBJECTID

    def reset(self) -> None:
        """Discard unsaved changes, going back to the last persisted image."""
        if isinstance(self.state, Persisted):
            self._fields = copy.deepcopy(dict(self.state.saved_fields))
        self.lock = NULL_OBJECTID

    def to_native(self) -> dict[str, Any]:
        """Full store image, lock field included."""
        native = copy.deepcopy(self._fields)
        native[LOCK_FIELD] = self.lock
        return native

    def to_dict(self) -> dict[str, Any]:
        """Business fields only. The lock field is never exposed."""
        return copy.deepcopy(self._fields)

    def to_json(self) -> str:
        """Extended-JSON serialization of ``to_dict``."""
        return json_util.dumps(self.to_dict())

    def __getitem__(self, key: str) -> Any:
        return self._fields[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key in (LOCK_FIELD, NEW_MARKER_FIELD):
            raise KeyError(f"{key!r} is managed by the transaction coordinator")
        if key == ID_FIELD and not self.is_new and value != self.id:
            raise KeyError("_id of a persisted document cannot change")
        self._fields[key] = value

    def __delitem__(self, key: str) -> None:
        if key == ID_FIELD:
            raise KeyError("_id cannot be removed")
        del self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        state = "new" if self.is_new else "persisted"
        return f"Document({self._collection}:{self.id}, {state}, t={self.lock})"
