"""Document Store port for single-document atomic operations.

This outbound port defines the contract the coordinator needs from a
document database. Every multi-document guarantee the package offers is
built from these primitives alone:

- Reads by selector, with optional sort and projection
- Conditional single-document writes that report whether they matched
- An atomic find-and-modify returning the image before (or after) the update

Selectors and update documents use MongoDB query language. Adapters must
support at least equality (ObjectIds included), ``$in``, ``$ne``,
``$exists``, the range operators and ``$and`` in selectors, and ``$set``,
``$unset`` and ``$push`` in updates.

References:
    - MongoDB CRUD semantics: findOneAndUpdate, updateOne, replaceOne
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Mapping, Protocol, Sequence, Union

SortDirection = int
"""1 for ascending, -1 for descending."""

SortSpec = Union[Sequence[tuple[str, SortDirection]], Mapping[str, SortDirection]]
Projection = Sequence[str]


def normalize_sort(sort: SortSpec | None) -> list[tuple[str, SortDirection]] | None:
    """Turn a sort given as a mapping or pair sequence into a list of pairs."""
    if sort is None:
        return None
    if isinstance(sort, Mapping):
        return [(key, int(direction)) for key, direction in sort.items()]
    return [(key, int(direction)) for key, direction in sort]


class DocumentCollection(Protocol):
    """Protocol for one collection of a document store.

    All methods are coroutines. Documents cross the port as plain dicts.

    Thread Safety:
        Each write method must be atomic with respect to the single
        document it touches. No multi-document atomicity is assumed.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the collection name."""
        ...

    @abstractmethod
    async def find_one(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> dict[str, Any] | None:
        """Return the first matching document, or None."""
        ...

    @abstractmethod
    async def find(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> list[dict[str, Any]]:
        """Return all matching documents.

        Unsorted results keep the store's natural order.
        """
        ...

    @abstractmethod
    async def insert_one(self, document: Mapping[str, Any]) -> None:
        """Insert a document.

        Raises:
            pymongo.errors.DuplicateKeyError: If ``_id`` or a unique index value already exists.
        """
        ...

    @abstractmethod
    async def update_one(
        self, selector: Mapping[str, Any], update: Mapping[str, Any]
    ) -> bool:
        """Apply an update document to the first match.

        Returns:
            True if a document matched the selector.
        """
        ...

    @abstractmethod
    async def replace_one(
        self, selector: Mapping[str, Any], document: Mapping[str, Any]
    ) -> bool:
        """Replace the first match with ``document``.

        Returns:
            True if a document matched the selector.
        """
        ...

    @abstractmethod
    async def delete_one(self, selector: Mapping[str, Any]) -> bool:
        """Delete the first match.

        Returns:
            True if a document was deleted.
        """
        ...

    @abstractmethod
    async def find_one_and_update(
        self,
        selector: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        return_updated: bool = False,
    ) -> dict[str, Any] | None:
        """Atomically update the first match and return it.

        Args:
            selector: Query selecting the document.
            update: Update document (operators only).
            sort: Picks the first match when several documents qualify.
            return_updated: Return the image after the update instead of before.

        Returns:
            The document image, or None if nothing matched.
        """
        ...

    @abstractmethod
    async def create_index(self, keys: SortSpec, *, unique: bool = False) -> None:
        """Create an index on ``keys`` if it does not exist.

        Raises:
            pymongo.errors.DuplicateKeyError: If ``unique`` and stored
                documents already clash.
        """
        ...


class DocumentStore(Protocol):
    """Protocol for a database holding named collections."""

    @abstractmethod
    def collection(self, name: str) -> DocumentCollection:
        """Return the collection called ``name``, creating it lazily."""
        ...
