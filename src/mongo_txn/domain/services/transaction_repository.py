"""Persistence of transaction records.

Every write to a record is conditional on its current state and is
addressed through the transaction schema's shard-key selector, so two
coordinators racing on the same record cannot both move it, and sharded
deployments can route each update.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from mongo_txn.domain.entities import (
    TRANSACTION_SCHEMA,
    DocEntry,
    DocumentSchema,
    TransactionRecord,
)
from mongo_txn.domain.value_objects import ID_FIELD, TransactionId, TransactionState
from mongo_txn.ports.outbound import DocumentCollection

_RECORD_FIELDS = (ID_FIELD, "state", "docs")


class TransactionRepository:
    """Reads and conditionally writes transaction records."""

    def __init__(
        self,
        collection: DocumentCollection,
        schema: DocumentSchema = TRANSACTION_SCHEMA,
    ) -> None:
        self._collection = collection
        self._schema = schema

    @property
    def collection(self) -> DocumentCollection:
        return self._collection

    @property
    def schema(self) -> DocumentSchema:
        return self._schema

    def new_record(self, transaction_id: TransactionId) -> TransactionRecord:
        """Build a ``born`` record, running the schema's initializers.

        Raises:
            pydantic.ValidationError: If the transaction schema rejects the record.
        """
        fields: dict[str, Any] = {ID_FIELD: transaction_id}
        self._schema.initialize(fields)
        validated = self._schema.validate(fields)
        extra = {k: v for k, v in validated.items() if k not in _RECORD_FIELDS}
        return TransactionRecord(id=transaction_id, state=TransactionState.BORN, extra=extra)

    def selector(self, record: TransactionRecord) -> dict[str, Any]:
        return self._schema.build_selector({**record.extra, ID_FIELD: record.id})

    async def insert(self, record: TransactionRecord) -> None:
        await self._collection.insert_one(record.to_dict())

    async def get(self, transaction_id: TransactionId) -> TransactionRecord | None:
        raw = await self._collection.find_one({ID_FIELD: transaction_id})
        return TransactionRecord.from_dict(raw) if raw is not None else None

    async def get_state(self, transaction_id: TransactionId) -> TransactionState | None:
        raw = await self._collection.find_one({ID_FIELD: transaction_id}, projection=["state"])
        if raw is None:
            return None
        return TransactionState(raw["state"])

    async def move_state(
        self,
        record: TransactionRecord,
        expected: Iterable[TransactionState],
        next_state: TransactionState,
        docs: Sequence[DocEntry] | None = None,
    ) -> bool:
        """Move the record to ``next_state`` if its persisted state is one of ``expected``.

        Args:
            record: The record to move
            expected: States the persisted record may currently be in
            next_state: State to move to
            docs: Entries to write together with the transition

        Returns:
            True if the persisted record was moved
        """
        update: dict[str, Any] = {"state": next_state.value}
        if docs is not None:
            update["docs"] = [entry.to_dict() for entry in docs]
        selector = {
            **self.selector(record),
            "state": {"$in": [state.value for state in expected]},
        }
        return await self._collection.update_one(selector, {"$set": update})

    async def append_entry(self, record: TransactionRecord, entry: DocEntry) -> bool:
        """Append an entry while the record is still ``born``."""
        selector = {**self.selector(record), "state": TransactionState.BORN.value}
        return await self._collection.update_one(selector, {"$push": {"docs": entry.to_dict()}})

    async def delete(self, record: TransactionRecord) -> bool:
        return await self._collection.delete_one(self.selector(record))
