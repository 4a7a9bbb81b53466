"""Direct, non-transactional access to one registered collection.

Reads go through the Lock Protocol: a document locked by a dead or
finished transaction is recovered before it is returned, and a document
held by a live transaction is re-read after a bounded wait. Callers thus
never see the half-written state of an in-flight transaction.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from mongo_txn.domain.entities import Document, DocumentSchema
from mongo_txn.domain.services.lock_protocol import UNLOCKED, LockProtocol, strip_lock
from mongo_txn.domain.services.model_registry import ModelEntry
from mongo_txn.domain.value_objects import (
    ID_FIELD,
    LOCK_FIELD,
    NULL_OBJECTID,
    LockStatus,
    is_unlocked,
)
from mongo_txn.ports.outbound import DocumentCollection, Projection, SortSpec

logger = logging.getLogger(__name__)


class TransactedModel:
    """Lock-aware accessor for one collection.

    Usage:
        accounts = coordinator.model("accounts")
        doc = accounts.new(owner="ann", balance=10)
        await accounts.save(doc)
        doc = await accounts.find_one({"owner": "ann"})
    """

    def __init__(self, entry: ModelEntry, locks: LockProtocol) -> None:
        self._entry = entry
        self._locks = locks

    @property
    def entry(self) -> ModelEntry:
        return self._entry

    @property
    def name(self) -> str:
        return self._entry.name

    @property
    def schema(self) -> DocumentSchema:
        return self._entry.schema

    @property
    def collection(self) -> DocumentCollection:
        return self._entry.collection

    def new(self, **fields: Any) -> Document:
        """Create an unsaved document of this collection."""
        return Document(self.name, fields)

    async def save(self, document: Document) -> Document:
        """Validate and write a document outside of any transaction.

        A new document is inserted unlocked. A persisted one is replaced only
        while no transaction holds it.

        Raises:
            TransactionConflictError: TRANSACTION_CONFLICT_1 if a transaction holds the document.
            pydantic.ValidationError: If the document fails validation.
        """
        self.schema.initialize(document)
        image = {**self.schema.validate(document), ID_FIELD: document.id}

        if document.is_new:
            await self.collection.insert_one({**image, LOCK_FIELD: NULL_OBJECTID})
        else:
            selector = {**self.schema.build_selector(image), LOCK_FIELD: UNLOCKED}
            replaced = await self.collection.replace_one(
                selector, {**image, LOCK_FIELD: NULL_OBJECTID}
            )
            if not replaced:
                raise self._locks.write_conflict(None, self.name, document.id)

        document.mark_persisted(image)
        logger.debug("Saved %s:%s", self.name, document.id)
        return document

    def _projection(self, projection: Projection | None) -> list[str] | None:
        if projection is None:
            return None
        return sorted(set(projection) | self.schema.routing_fields)

    async def _read_one(
        self,
        selector: Mapping[str, Any],
        sort: SortSpec | None,
        projection: Projection | None,
    ) -> dict[str, Any] | None:
        projected = self._projection(projection)
        waits = 0
        while True:
            raw = await self.collection.find_one(selector, sort=sort, projection=projected)
            if raw is None or is_unlocked(raw.get(LOCK_FIELD)):
                return raw

            status = await self._locks.resolve_on_read(self._entry, raw)
            if status is LockStatus.HELD:
                if waits >= self._locks.config.read_retry_count:
                    raise self._locks.read_conflict(None, self.name, raw)
                waits += 1
                await self._locks.wait()

    async def _read_many(
        self,
        selector: Mapping[str, Any],
        sort: SortSpec | None,
        projection: Projection | None,
    ) -> list[dict[str, Any]]:
        projected = self._projection(projection)
        waits = 0
        while True:
            raws = await self.collection.find(selector, sort=sort, projection=projected)
            locked = [raw for raw in raws if not is_unlocked(raw.get(LOCK_FIELD))]
            if not locked:
                return raws

            held = None
            for raw in locked:
                status = await self._locks.resolve_on_read(self._entry, raw)
                if status is LockStatus.HELD and held is None:
                    held = raw
            if held is not None:
                if waits >= self._locks.config.read_retry_count:
                    raise self._locks.read_conflict(None, self.name, held)
                waits += 1
                await self._locks.wait()

    async def find_one(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> Document | None:
        """Return the first matching document once no live transaction holds it.

        Raises:
            TransactionConflictError: TRANSACTION_CONFLICT_2 if it stayed locked.
        """
        raw = await self._read_one(selector, sort, projection)
        return Document.from_native(self.name, raw) if raw is not None else None

    async def find_by_id(self, document_id: Any) -> Document | None:
        return await self.find_one({ID_FIELD: document_id})

    async def find(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> list[Document]:
        """Return every matching document once none is held by a live transaction."""
        raws = await self._read_many(selector, sort, projection)
        return [Document.from_native(self.name, raw) for raw in raws]

    async def find_one_native(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> dict[str, Any] | None:
        """Like ``find_one`` but return a plain dict without the lock field."""
        raw = await self._read_one(selector, sort, projection)
        return strip_lock(raw) if raw is not None else None

    async def find_native(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> list[dict[str, Any]]:
        raws = await self._read_many(selector, sort, projection)
        return [strip_lock(raw) for raw in raws]

    async def find_one_force(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
    ) -> Document | None:
        """Read without looking at locks. The lock stays visible on ``Document.lock``."""
        raw = await self.collection.find_one(selector, sort=sort)
        return Document.from_native(self.name, raw) if raw is not None else None

    async def find_force(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
    ) -> list[Document]:
        raws = await self.collection.find(selector, sort=sort)
        return [Document.from_native(self.name, raw) for raw in raws]

    def __repr__(self) -> str:
        return f"TransactedModel({self.name})"
