"""
mongo_txn - Multi-document transactions for MongoDB

Application-level transactions built on single-document atomic updates:
a lock field on every business document, a transaction record with a
guarded state machine, and lazy recovery of abandoned transactions by
whichever reader finds them first.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"

from mongo_txn.application.engine import TransactionEngine
from mongo_txn.domain.entities import Document, DocumentSchema, bind_shard_key
from mongo_txn.domain.services import (
    ModelRegistry,
    Transaction,
    TransactedModel,
    TransactionCoordinator,
)
from mongo_txn.domain.value_objects import NULL_OBJECTID, ErrorType, TransactionState
from mongo_txn.ports.inbound.transaction_coordinator import (
    TransactionConflictError,
    TransactionError,
    TransactionExpiredError,
    TransactionStateError,
    UnknownCommitError,
)

__all__ = [
    "Document",
    "DocumentSchema",
    "ErrorType",
    "ModelRegistry",
    "NULL_OBJECTID",
    "Transaction",
    "TransactedModel",
    "TransactionConflictError",
    "TransactionCoordinator",
    "TransactionEngine",
    "TransactionError",
    "TransactionExpiredError",
    "TransactionState",
    "TransactionStateError",
    "UnknownCommitError",
    "bind_shard_key",
]
