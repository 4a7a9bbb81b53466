"""Transaction Coordinator for multi-document transactions.

This module implements the coordinator, which drives:
- The transaction record lifecycle (born, pending, commit, expire)
- Lock acquisition for every document a transaction touches
- Replay of buffered mutations on commit
- Restoration of pre-images on expire

Commit protocol:
    1. ``born -> pending``, writing every entry's validated changes
       (the fields the caller modified, or the whole image of a new
       document) together with the transition. From here on, anyone
       can finish the commit from the record alone.
    2. Replay each entry, conditional on the document still being locked
       by this transaction.
    3. ``pending -> commit``, then delete the record.

A coordinator that dies after step 1 leaves a record that readers either
roll forward (``commit``) or, once stale, roll back (``born``/``pending``).

References:
    - MongoDB manual, "Perform Two Phase Commits" (3.x tutorial)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, Mapping

from mongo_txn.domain.entities import (
    DocEntry,
    Document,
    DocumentSchema,
    New,
    Persisted,
    TransactionRecord,
    diff_fields,
)
from mongo_txn.domain.services.lock_protocol import LockProtocol
from mongo_txn.domain.services.model_registry import ModelEntry, ModelRegistry
from mongo_txn.domain.services.transacted_model import TransactedModel
from mongo_txn.domain.services.transaction_repository import TransactionRepository
from mongo_txn.domain.value_objects import (
    ID_FIELD,
    LOCK_FIELD,
    NULL_OBJECTID,
    ErrorType,
    LockStatus,
    TransactionId,
    TransactionState,
    is_stale,
    is_unlocked,
    new_transaction_id,
)
from mongo_txn.infrastructure.config import TransactionConfig
from mongo_txn.infrastructure.metrics import MetricsRegistry, get_metrics
from mongo_txn.infrastructure.tracing import transaction_span
from mongo_txn.ports.inbound.transaction_coordinator import (
    TransactionExpiredError,
    TransactionStateError,
    UnknownCommitError,
)
from mongo_txn.ports.outbound import DocumentCollection, DocumentStore, SortSpec

logger = logging.getLogger(__name__)

_LIVE = (TransactionState.BORN, TransactionState.PENDING)


class Transaction:
    """Handle on one transaction record.

    The handle keeps the documents it locked. Callers mutate them in memory
    and ``commit`` writes them all; ``cancel``/``expire`` put back what was
    there before.

    Usage:
        txn = await coordinator.begin()
        doc = await txn.find_one("accounts", {"owner": "ann"})
        doc["balance"] += 5
        await txn.add(accounts.new(owner="bob", balance=0))
        await txn.commit()
    """

    def __init__(
        self,
        record: TransactionRecord,
        registry: ModelRegistry,
        repository: TransactionRepository,
        locks: LockProtocol,
        metrics: MetricsRegistry,
        active: bool = False,
    ) -> None:
        self._record = record
        self._registry = registry
        self._repository = repository
        self._locks = locks
        self._metrics = metrics
        self._state = record.state
        self._documents: dict[tuple[str, Any], Document] = {}
        # True while this handle counts towards the active-transactions gauge
        self._active = active
        self._resolved = False

    @property
    def id(self) -> TransactionId:
        return self._record.id

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def record(self) -> TransactionRecord:
        return self._record

    @property
    def documents(self) -> list[Document]:
        """Documents this handle has locked, in acquisition order."""
        return list(self._documents.values())

    def is_stale(self) -> bool:
        return is_stale(self.id, self._locks.config.expire_gap)

    def __repr__(self) -> str:
        return f"Transaction({self.id}, {self._state.value}, docs={len(self._record.docs)})"

    # =========================================================================
    # Registering documents
    # =========================================================================

    def _require_born(self) -> None:
        if self._state is TransactionState.EXPIRE:
            raise TransactionExpiredError(transaction_id=self.id)
        if self._state is not TransactionState.BORN:
            raise TransactionStateError(
                transaction_id=self.id,
                detail=f"transaction is {self._state.value}, not accepting documents",
            )

    def _resolve_model(self, model: TransactedModel | ModelEntry | str) -> ModelEntry:
        if isinstance(model, TransactedModel):
            return model.entry
        if isinstance(model, ModelEntry):
            return model
        return self._registry.get(model)

    def _track(self, document: Document, entry: DocEntry) -> None:
        document.lock = self.id
        self._documents[(entry.collection, entry.document_id)] = document

    async def _register(self, entry: DocEntry) -> None:
        """Persist an entry on the record, undoing its lock if the record left ``born``."""
        appended = await self._repository.append_entry(self._record, entry)
        if not appended:
            await self._locks.restore(entry, self.id)
            self._state = TransactionState.EXPIRE
            raise TransactionExpiredError(
                transaction_id=self.id, detail="record left born while adding a document"
            )
        self._record.docs.append(entry)

    async def add(self, document: Document) -> None:
        """Lock ``document`` and register it for writing on commit.

        Raises:
            TransactionConflictError: TRANSACTION_CONFLICT_1 if another
                transaction holds the document.
            TransactionExpiredError: If the transaction has expired.
            TransactionStateError: If the transaction left ``born``.
            pydantic.ValidationError: If the document fails validation.
        """
        await self._add(document, remove=False)

    async def remove_doc(self, document: Document) -> None:
        """Lock ``document`` and register its deletion on commit."""
        await self._add(document, remove=True)

    async def _add(self, document: Document, remove: bool) -> None:
        self._require_born()
        model = self._registry.get(document.collection)

        existing = self._record.find_entry(model.name, document.id)
        if existing is not None:
            if remove:
                existing.remove = True
            self._documents.setdefault((model.name, document.id), document)
            return

        model.schema.initialize(document)
        model.schema.validate(document)

        saved = await self._locks.acquire(model, document, self.id)
        entry = DocEntry(
            collection=model.name,
            document_id=document.id,
            key=model.schema.build_selector(document),
            is_new=document.is_new,
            remove=remove,
            saved_fields=saved,
        )
        await self._register(entry)
        self._track(document, entry)
        logger.debug("Transaction %s locked %s:%s", self.id, model.name, document.id)

    # =========================================================================
    # Transaction-scoped reads
    # =========================================================================

    async def find_one(
        self,
        model: TransactedModel | ModelEntry | str,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
    ) -> Document | None:
        """Find the first matching document and lock it for this transaction.

        A document this transaction already holds is returned as the handle
        it already tracks.

        Raises:
            TransactionConflictError: TRANSACTION_CONFLICT_2 if the match
                stayed locked by another live transaction past the bounded wait.
            TransactionExpiredError: If the transaction has expired.
        """
        self._require_born()
        entry = self._resolve_model(model)
        waits = 0
        while True:
            saved = await self._locks.acquire_matching(entry, selector, self.id, sort=sort)
            if saved is not None:
                return await self._adopt(entry, saved)

            raw = await entry.collection.find_one(selector, sort=sort)
            if raw is None:
                return None
            if is_unlocked(raw.get(LOCK_FIELD)):
                continue

            status = await self._locks.resolve_on_read(entry, raw, owner=self.id)
            if status is LockStatus.OWNED:
                tracked = self._documents.get((entry.name, raw[ID_FIELD]))
                return tracked if tracked is not None else Document.from_native(entry.name, raw)
            if status is LockStatus.HELD:
                if waits >= self._locks.config.read_retry_count:
                    raise self._locks.read_conflict(self.id, entry.name, raw)
                waits += 1
                await self._locks.wait()

    async def find(
        self,
        model: TransactedModel | ModelEntry | str,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
    ) -> list[Document]:
        """Find every matching document and lock each of them for this transaction.

        Documents that stop matching while they are being locked are left out.
        """
        self._require_born()
        entry = self._resolve_model(model)
        candidates = await entry.collection.find(selector, sort=sort, projection=[ID_FIELD])

        found = []
        for candidate in candidates:
            document = await self.find_one(entry, {**selector, ID_FIELD: candidate[ID_FIELD]})
            if document is not None:
                found.append(document)
        return found

    async def _adopt(self, model: ModelEntry, saved: dict[str, Any]) -> Document:
        entry = DocEntry(
            collection=model.name,
            document_id=saved[ID_FIELD],
            key=model.schema.build_selector(saved),
            saved_fields=saved,
        )
        await self._register(entry)
        document = Document.from_native(model.name, saved)
        self._track(document, entry)
        return document

    # =========================================================================
    # State transitions
    # =========================================================================

    async def _move_state(
        self,
        expected: TransactionState | Iterable[TransactionState],
        next_state: TransactionState,
        docs: list[DocEntry] | None = None,
    ) -> bool:
        """Conditionally move the persisted record; the only way its state changes."""
        if isinstance(expected, TransactionState):
            expected = (expected,)
        moved = await self._repository.move_state(self._record, tuple(expected), next_state, docs)
        if moved:
            self._record.state = next_state
            if docs is not None:
                self._record.docs = list(docs)
        return moved

    def _commit_entries(self) -> list[DocEntry]:
        """Validate every tracked document into what commit will write.

        A new document gets its full image. A persisted one gets only the
        fields that differ from the image the handle was read with.

        Raises:
            pydantic.ValidationError: If a document no longer validates.
        """
        entries = []
        for entry in self._record.docs:
            document = self._documents.get((entry.collection, entry.document_id))
            if entry.remove or document is None:
                entries.append(replace(entry, post_image=None, set_fields=None, unset_fields=[]))
                continue

            validated = self._registry.get(entry.collection).schema.validate(document)
            if entry.is_new:
                entries.append(replace(entry, post_image={**validated, ID_FIELD: document.id}))
                continue

            if isinstance(document.state, Persisted):
                baseline = document.state.saved_fields
            else:
                baseline = entry.saved_fields or {}
            changed, removed = diff_fields(baseline, validated)
            entries.append(
                replace(entry, post_image=None, set_fields=changed, unset_fields=removed)
            )
        return entries

    async def _begin_commit(self) -> list[DocEntry]:
        """Move ``born -> pending`` with the commit images, handling every failure mode."""
        if self._state is TransactionState.EXPIRE:
            raise TransactionExpiredError(transaction_id=self.id)
        if self._state is not TransactionState.BORN:
            raise TransactionStateError(
                transaction_id=self.id, detail=f"cannot commit from {self._state.value}"
            )
        if self.is_stale():
            logger.warning("Transaction %s is stale at commit; expiring", self.id)
            await self.expire()
            raise TransactionExpiredError(transaction_id=self.id, detail="stale")

        entries = self._commit_entries()
        try:
            moved = await self._move_state(TransactionState.BORN, TransactionState.PENDING, entries)
        except Exception as exc:
            logger.exception("Commit transition of %s failed; forcing expire", self.id)
            await self.expire()
            raise UnknownCommitError(transaction_id=self.id, detail=str(exc)) from exc

        if not moved:
            persisted = await self._repository.get_state(self.id)
            if persisted is None or persisted is TransactionState.EXPIRE:
                await self.expire()
                raise TransactionExpiredError(transaction_id=self.id)
            if persisted is TransactionState.COMMIT:
                # Committed through another handle; readers apply the persisted record
                logger.error("Transaction %s was committed by another handle", self.id)
                self._state = TransactionState.COMMIT
                self._finish(TransactionState.COMMIT)
                raise UnknownCommitError(
                    transaction_id=self.id, detail="committed by another handle"
                )
            logger.error("Transaction %s found in %s at commit; forcing expire", self.id, persisted.value)
            await self.expire()
            raise UnknownCommitError(transaction_id=self.id, detail=f"found {persisted.value}")

        self._state = TransactionState.PENDING
        return entries

    def _finish(self, status: TransactionState) -> None:
        if self._resolved:
            return
        self._resolved = True
        self._metrics.transactions_total.labels(status=status.value).inc()
        if self._active:
            self._active = False
            self._metrics.transactions_active.dec()

    async def commit(self) -> None:
        """Write every buffered mutation and release every lock.

        Committing a committed handle is a no-op.

        Raises:
            TransactionExpiredError: If the transaction expired, explicitly,
                by staleness, or by another process.
            UnknownCommitError: If the commit transition failed otherwise;
                the transaction has been expired.
            pydantic.ValidationError: If a document no longer validates;
                the transaction stays ``born``.
        """
        if self._state is TransactionState.COMMIT:
            return

        with transaction_span("commit", self.id):
            entries = await self._begin_commit()

            for entry in entries:
                await self._locks.apply(entry, self.id)

            if not await self._move_state(TransactionState.PENDING, TransactionState.COMMIT):
                # A reader rolled the record back mid-replay; conditional writes lost to it
                self._state = TransactionState.EXPIRE
                self._finish(TransactionState.EXPIRE)
                raise TransactionExpiredError(transaction_id=self.id, detail="expired during replay")

            self._state = TransactionState.COMMIT
            await self._repository.delete(self._record)

        for entry in entries:
            document = self._documents.get((entry.collection, entry.document_id))
            if document is None:
                continue
            if entry.remove:
                document.state = New()
                document.lock = NULL_OBJECTID
            else:
                document.mark_persisted(entry.committed_image() or document.to_dict())

        self._finish(TransactionState.COMMIT)
        logger.info("Transaction %s committed %d document(s)", self.id, len(entries))

    async def _commit(self) -> None:
        """Persist the commit decision without replaying it.

        Moves the record ``born -> pending -> commit`` with its changes and
        stops. Documents stay locked until a reader meets them and rolls
        the transaction forward.
        """
        await self._begin_commit()
        if not await self._move_state(TransactionState.PENDING, TransactionState.COMMIT):
            self._state = TransactionState.EXPIRE
            raise TransactionExpiredError(transaction_id=self.id)
        self._state = TransactionState.COMMIT
        self._finish(TransactionState.COMMIT)

    async def _expire(self) -> bool:
        """Move the record to ``expire`` without restoring anything."""
        self._state = TransactionState.EXPIRE
        return await self._move_state(_LIVE, TransactionState.EXPIRE)

    async def expire(self) -> None:
        """Roll back: restore pre-images, delete placeholders, release locks.

        A no-op on a committed handle; safe to repeat on an expired one.

        Raises:
            TransactionStateError: SOMETHING_WRONG if another process
                committed the transaction.
        """
        if self._state is TransactionState.COMMIT:
            return

        with transaction_span("expire", self.id):
            moved = await self._expire()
            record = self._record
            if not moved:
                persisted = await self._repository.get(self.id)
                if persisted is not None and persisted.state is TransactionState.COMMIT:
                    self._state = TransactionState.COMMIT
                    raise TransactionStateError(
                        transaction_id=self.id, detail="committed by another process"
                    )
                if persisted is not None:
                    record = persisted

            await self._locks.rollback(record)

        for document in self._documents.values():
            document.lock = NULL_OBJECTID

        self._finish(TransactionState.EXPIRE)
        logger.info("Transaction %s expired", self.id)

    async def cancel(self, reason: Any = None) -> None:
        """Log ``reason`` and expire the transaction.

        Raises:
            TransactionStateError: SOMETHING_WRONG if the transaction committed.
        """
        if self._state is TransactionState.COMMIT:
            raise TransactionStateError(
                ErrorType.SOMETHING_WRONG, self.id, detail="cannot cancel a committed transaction"
            )
        logger.info("Cancelling transaction %s: %s", self.id, reason)
        await self.expire()


class TransactionCoordinator:
    """Creates transactions and lock-aware collection accessors.

    Usage:
        registry = ModelRegistry()
        registry.add_collection_pseudo_model_pair("accounts", store, DocumentSchema(Account))
        coordinator = TransactionCoordinator(registry, store.collection("transactions"))
        txn = await coordinator.begin()
    """

    def __init__(
        self,
        registry: ModelRegistry,
        transactions: DocumentCollection | TransactionRepository,
        config: TransactionConfig | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            registry: Collections transactions may touch.
            transactions: Collection holding transaction records, or a
                repository wrapping it (to use a shard-bound transaction schema).
            config: Retry and expiry settings.
            metrics: Metrics registry (the global one if not provided).
        """
        self._registry = registry
        if isinstance(transactions, TransactionRepository):
            self._repository = transactions
        else:
            self._repository = TransactionRepository(transactions)
        self._config = config or TransactionConfig()
        self._metrics = metrics or get_metrics()
        self._locks = LockProtocol(registry, self._repository, self._config, self._metrics)
        self._models: dict[str, TransactedModel] = {}

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def repository(self) -> TransactionRepository:
        return self._repository

    @property
    def locks(self) -> LockProtocol:
        return self._locks

    @property
    def config(self) -> TransactionConfig:
        return self._config

    async def begin(self, transaction_id: TransactionId | None = None) -> Transaction:
        """Insert a ``born`` transaction record and return its handle.

        Args:
            transaction_id: Use this id instead of a fresh one.
        """
        record = self._repository.new_record(transaction_id or new_transaction_id())
        await self._repository.insert(record)
        self._metrics.transactions_active.inc()
        logger.debug("Transaction %s begun", record.id)
        return Transaction(
            record, self._registry, self._repository, self._locks, self._metrics, active=True
        )

    async def load(self, transaction_id: TransactionId) -> Transaction:
        """Return a new handle on an existing transaction record.

        The handle knows the record's entries but not the in-memory
        documents of the handle that created them; committing it releases
        those documents unchanged.

        Raises:
            TransactionExpiredError: If no record exists for the id.
        """
        record = await self._repository.get(transaction_id)
        if record is None:
            raise TransactionExpiredError(transaction_id=transaction_id, detail="no such transaction")
        return Transaction(record, self._registry, self._repository, self._locks, self._metrics)

    def model(self, name: str) -> TransactedModel:
        """Return the lock-aware accessor of a registered collection."""
        model = self._models.get(name)
        if model is None or model.entry is not self._registry.get(name):
            model = TransactedModel(self._registry.get(name), self._locks)
            self._models[name] = model
        return model

    def transacted_model(
        self, store: DocumentStore, name: str, schema: DocumentSchema
    ) -> TransactedModel:
        """Register a collection and return its accessor."""
        self._registry.add_collection_pseudo_model_pair(name, store, schema)
        return self.model(name)

    def is_stale(self, transaction_id: TransactionId) -> bool:
        return is_stale(transaction_id, self._config.expire_gap)
