"""Domain services for transaction logic.

Services implement the lock protocol, the transaction lifecycle and the
lock-aware read paths. They coordinate entities and value objects with
the document store port.
"""

from mongo_txn.domain.services.lock_protocol import LockProtocol
from mongo_txn.domain.services.model_registry import (
    ModelEntry,
    ModelRegistry,
    UnknownCollectionError,
)
from mongo_txn.domain.services.transacted_model import TransactedModel
from mongo_txn.domain.services.transaction_coordinator import (
    Transaction,
    TransactionCoordinator,
)
from mongo_txn.domain.services.transaction_repository import TransactionRepository

__all__ = [
    "LockProtocol",
    "ModelEntry",
    "ModelRegistry",
    "UnknownCollectionError",
    "TransactedModel",
    "Transaction",
    "TransactionCoordinator",
    "TransactionRepository",
]
