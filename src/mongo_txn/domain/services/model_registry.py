"""Registry mapping collection names to their store and schema.

Transaction records only remember the *name* of each collection they
touched. Whoever finishes or rolls back a transaction, possibly another
process long after the original coordinator died, looks the name up here
to find the collection to write to and the schema that builds its
shard-key selectors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from mongo_txn.domain.entities import DocumentSchema
from mongo_txn.ports.outbound import DocumentCollection, DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelEntry:
    """A registered collection: where it lives and how its documents look."""

    name: str
    collection: DocumentCollection
    schema: DocumentSchema


class UnknownCollectionError(KeyError):
    """Raised when a transaction references a collection nobody registered."""


class ModelRegistry:
    """Read-mostly map from collection name to ``ModelEntry``.

    Populated at setup time and passed explicitly to the coordinator.

    Usage:
        registry = ModelRegistry()
        registry.add_collection_pseudo_model_pair("accounts", store, DocumentSchema(Account))
        entry = registry.get("accounts")
    """

    def __init__(self) -> None:
        self._entries: dict[str, ModelEntry] = {}

    def add_collection_pseudo_model_pair(
        self,
        name: str,
        store: DocumentStore,
        schema: DocumentSchema,
    ) -> ModelEntry:
        """Register ``name`` in ``store`` with the given schema.

        Registering a name again replaces the previous entry.
        """
        if name in self._entries:
            logger.warning("Collection %s registered twice; replacing previous entry", name)
        entry = ModelEntry(name=name, collection=store.collection(name), schema=schema)
        self._entries[name] = entry
        return entry

    def get(self, name: str) -> ModelEntry:
        """Return the entry registered for ``name``.

        Raises:
            UnknownCollectionError: If ``name`` was never registered.
        """
        try:
            return self._entries[name]
        except KeyError:
            raise UnknownCollectionError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
