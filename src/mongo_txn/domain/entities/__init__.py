"""Domain entities: document handles, schemas and transaction records."""

from mongo_txn.domain.entities.document import Document, DocumentState, New, Persisted
from mongo_txn.domain.entities.schema import DocumentSchema, Initializer, bind_shard_key
from mongo_txn.domain.entities.transaction_record import (
    TRANSACTION_SCHEMA,
    DocEntry,
    TransactionFields,
    TransactionRecord,
    diff_fields,
)

__all__ = [
    "Document",
    "DocumentState",
    "New",
    "Persisted",
    "DocumentSchema",
    "Initializer",
    "bind_shard_key",
    "DocEntry",
    "TransactionRecord",
    "TransactionFields",
    "TRANSACTION_SCHEMA",
    "diff_fields",
]
