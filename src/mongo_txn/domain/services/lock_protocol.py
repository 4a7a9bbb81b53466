"""Lock Protocol on the ``t`` field of business documents.

Every business document carries a lock field holding either the id of the
transaction that owns it or ``NULL_OBJECTID``. A transaction takes the
lock with one atomic conditional update, ``t: NULL -> id``, which is the
only compare-and-swap the whole package relies on.

Locks are never released by a background process. Any reader that meets
a locked document looks up the owning transaction record and, depending
on what it finds, finishes the work a dead coordinator left behind:

    record missing          release the orphaned lock
    record expire           restore every entry, delete the record
    record live but stale   move it to expire, then as above
    record commit           apply every committed change, delete the record
    record live, owned      hand the document to its owner
    record live, foreign    wait, bounded

Every restore and replay write is conditional on ``t`` still naming the
transaction, so recovery by several readers at once is harmless.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping

from pymongo.errors import DuplicateKeyError

from mongo_txn.domain.entities import DocEntry, Document, TransactionRecord
from mongo_txn.domain.services.model_registry import ModelEntry, ModelRegistry
from mongo_txn.domain.services.transaction_repository import TransactionRepository
from mongo_txn.domain.value_objects import (
    ID_FIELD,
    LOCK_FIELD,
    NEW_MARKER_FIELD,
    NULL_OBJECTID,
    ErrorType,
    LockStatus,
    TransactionId,
    TransactionState,
    is_stale,
    is_unlocked,
)
from mongo_txn.infrastructure.config import TransactionConfig
from mongo_txn.infrastructure.metrics import MetricsRegistry, get_metrics
from mongo_txn.infrastructure.tracing import transaction_span
from mongo_txn.ports.inbound.transaction_coordinator import TransactionConflictError
from mongo_txn.ports.outbound import SortSpec

logger = logging.getLogger(__name__)

# Documents written by other tools have no lock field; MongoDB's null
# equality matches a missing field.
UNLOCKED = {"$in": [NULL_OBJECTID, None]}


def strip_lock(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Return a document image without the lock and new-document marker fields."""
    return {k: v for k, v in raw.items() if k not in (LOCK_FIELD, NEW_MARKER_FIELD)}


class LockProtocol:
    """Acquires, releases and resolves document locks.

    Usage:
        locks = LockProtocol(registry, repository, config)
        saved = await locks.acquire(entry, document, txn_id)
        ...
        await locks.restore(doc_entry, txn_id)
    """

    def __init__(
        self,
        registry: ModelRegistry,
        repository: TransactionRepository,
        config: TransactionConfig | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._config = config or TransactionConfig()
        self._metrics = metrics or get_metrics()

    @property
    def config(self) -> TransactionConfig:
        return self._config

    # =========================================================================
    # Acquire
    # =========================================================================

    async def acquire(
        self,
        model: ModelEntry,
        document: Document,
        transaction_id: TransactionId,
    ) -> dict[str, Any] | None:
        """Lock ``document`` for ``transaction_id``.

        A new document is reserved by inserting a placeholder carrying its
        validated fields, the lock and the new-document marker. Unique
        indexes on business fields therefore see the real values.

        Returns:
            The persisted pre-image (lock field stripped), or None for a new document.

        Raises:
            TransactionConflictError: TRANSACTION_CONFLICT_1 if the document
                is held by another transaction, or a new document's id is taken.
        """
        key = model.schema.build_selector(document)

        if document.is_new:
            placeholder = {
                **model.schema.validate(document),
                ID_FIELD: document.id,
                **key,
                LOCK_FIELD: transaction_id,
                NEW_MARKER_FIELD: True,
            }
            try:
                await model.collection.insert_one(placeholder)
            except DuplicateKeyError:
                raise self.write_conflict(transaction_id, model.name, document.id) from None
            return None

        saved = await model.collection.find_one_and_update(
            {**key, LOCK_FIELD: UNLOCKED},
            {"$set": {LOCK_FIELD: transaction_id}},
        )
        if saved is None:
            raise self.write_conflict(transaction_id, model.name, document.id)
        return strip_lock(saved)

    async def acquire_matching(
        self,
        model: ModelEntry,
        selector: Mapping[str, Any],
        transaction_id: TransactionId,
        sort: SortSpec | None = None,
    ) -> dict[str, Any] | None:
        """Lock the first unlocked document matching ``selector``.

        Returns:
            Its pre-image (lock field stripped), or None if no unlocked document matched.
        """
        saved = await model.collection.find_one_and_update(
            {**selector, LOCK_FIELD: UNLOCKED},
            {"$set": {LOCK_FIELD: transaction_id}},
            sort=sort,
        )
        return strip_lock(saved) if saved is not None else None

    # =========================================================================
    # Release
    # =========================================================================

    async def restore(self, entry: DocEntry, transaction_id: TransactionId) -> bool:
        """Undo an entry: delete a placeholder, or write back the pre-image unlocked."""
        collection = self._registry.get(entry.collection).collection
        selector = {**entry.key, LOCK_FIELD: transaction_id}

        if entry.is_new or entry.saved_fields is None:
            return await collection.delete_one(selector)
        return await collection.replace_one(
            selector, {**entry.saved_fields, LOCK_FIELD: NULL_OBJECTID}
        )

    async def apply(self, entry: DocEntry, transaction_id: TransactionId) -> bool:
        """Replay an entry: delete, write the new document, or update the changed fields.

        Persisted documents only get the fields the transaction changed, so
        fields written by others since the document was read are kept.
        """
        collection = self._registry.get(entry.collection).collection
        selector = {**entry.key, LOCK_FIELD: transaction_id}

        if entry.remove:
            return await collection.delete_one(selector)
        if entry.post_image is not None:
            return await collection.replace_one(
                selector, {**entry.post_image, LOCK_FIELD: NULL_OBJECTID}
            )
        if entry.is_new:
            return await collection.delete_one(selector)

        update: dict[str, Any] = {"$set": {**(entry.set_fields or {}), LOCK_FIELD: NULL_OBJECTID}}
        if entry.unset_fields:
            update["$unset"] = {name: "" for name in entry.unset_fields}
        return await collection.update_one(selector, update)

    async def release_orphan(
        self, model: ModelEntry, raw: Mapping[str, Any], holder: TransactionId
    ) -> bool:
        """Release a lock whose transaction left no instructions for the document."""
        selector = {**model.schema.build_selector(raw), LOCK_FIELD: holder}
        if raw.get(NEW_MARKER_FIELD):
            return await model.collection.delete_one(selector)
        return await model.collection.update_one(selector, {"$set": {LOCK_FIELD: NULL_OBJECTID}})

    async def rollback(self, record: TransactionRecord) -> None:
        """Restore every entry of an expired record, then delete the record."""
        for entry in record.docs:
            await self.restore(entry, record.id)
        await self._repository.delete(record)

    async def roll_forward(self, record: TransactionRecord) -> None:
        """Replay every entry of a committed record, then delete the record."""
        for entry in record.docs:
            await self.apply(entry, record.id)
        await self._repository.delete(record)

    # =========================================================================
    # Resolve
    # =========================================================================

    async def resolve_on_read(
        self,
        model: ModelEntry,
        raw: Mapping[str, Any],
        owner: TransactionId | None = None,
    ) -> LockStatus:
        """Decide what a locked document means for a reader, recovering it if its owner is gone.

        Args:
            model: Collection the document was read from
            raw: The document as read, routing fields included
            owner: The reading transaction, if any

        Returns:
            RELEASED if the lock was cleared (re-read), OWNED if ``owner``
            holds it, HELD if another live transaction does.
        """
        holder = raw.get(LOCK_FIELD)
        if is_unlocked(holder):
            return LockStatus.RELEASED
        if owner is not None and holder == owner:
            return LockStatus.OWNED

        record = await self._repository.get(holder)
        if record is None:
            logger.info("Releasing orphaned lock %s on %s:%s", holder, model.name, raw.get("_id"))
            await self.release_orphan(model, raw, holder)
            self._metrics.recoveries_total.labels(action="orphan").inc()
            return LockStatus.RELEASED

        if record.state is TransactionState.COMMIT:
            with transaction_span("roll_forward", record.id):
                logger.info("Rolling forward committed transaction %s", record.id)
                await self.roll_forward(record)
                await self.release_orphan(model, raw, holder)
            self._metrics.recoveries_total.labels(action="roll_forward").inc()
            return LockStatus.RELEASED

        stale = is_stale(record.id, self._config.expire_gap)
        if record.state is TransactionState.EXPIRE or stale:
            with transaction_span("rollback", record.id):
                if record.state.is_live():
                    moved = await self._repository.move_state(
                        record,
                        (TransactionState.BORN, TransactionState.PENDING),
                        TransactionState.EXPIRE,
                    )
                    if not moved:
                        # Somebody else moved it first; the next read sees their outcome
                        return LockStatus.RELEASED
                    logger.warning("Expiring stale transaction %s", record.id)
                await self.rollback(record)
                await self.release_orphan(model, raw, holder)
            self._metrics.recoveries_total.labels(action="rollback").inc()
            return LockStatus.RELEASED

        return LockStatus.HELD

    # =========================================================================
    # Waiting and conflicts
    # =========================================================================

    async def wait(self) -> None:
        """Pause before re-reading a document held by a live foreign transaction."""
        started = time.perf_counter()
        await asyncio.sleep(self._config.read_retry_interval)
        self._metrics.lock_wait_seconds.observe(time.perf_counter() - started)

    def write_conflict(
        self,
        transaction_id: TransactionId | None,
        collection: str,
        document_id: Any,
    ) -> TransactionConflictError:
        self._metrics.lock_conflicts_total.labels(kind="write").inc()
        return TransactionConflictError(
            ErrorType.TRANSACTION_CONFLICT_1,
            transaction_id,
            detail=f"{collection}:{document_id} is locked by another transaction",
        )

    def read_conflict(
        self,
        transaction_id: TransactionId | None,
        collection: str,
        raw: Mapping[str, Any],
    ) -> TransactionConflictError:
        self._metrics.lock_conflicts_total.labels(kind="read").inc()
        return TransactionConflictError(
            ErrorType.TRANSACTION_CONFLICT_2,
            transaction_id,
            detail=f"{collection}:{raw.get('_id')} stayed locked",
            holder=raw.get(LOCK_FIELD),
        )
