"""Inbound ports - API contracts for the transaction coordinator."""

from mongo_txn.ports.inbound.transaction_coordinator import (
    TransactionConflictError,
    TransactionCoordinatorPort,
    TransactionError,
    TransactionExpiredError,
    TransactionHandle,
    TransactionStateError,
    UnknownCommitError,
)

__all__ = [
    # Contracts
    "TransactionCoordinatorPort",
    "TransactionHandle",
    # Errors
    "TransactionError",
    "TransactionConflictError",
    "TransactionExpiredError",
    "TransactionStateError",
    "UnknownCommitError",
]
