"""Value objects for the transaction domain.

Exports:
    Identifiers:
        - TransactionId: ObjectId of a transaction record
        - NULL_OBJECTID: Lock field value of an unlocked document
        - LOCK_FIELD, NEW_MARKER_FIELD, ID_FIELD, RESERVED_FIELDS: Reserved field names
        - new_transaction_id, is_unlocked, transaction_age, is_stale: Helpers

    Transaction Types:
        - TransactionState: born, pending, commit, expire
        - ErrorType: Error codes raised by the coordinator
        - LockStatus: Outcome of resolving a lock on read
"""

from mongo_txn.domain.value_objects.identifiers import (
    ID_FIELD,
    LOCK_FIELD,
    NEW_MARKER_FIELD,
    NULL_OBJECTID,
    RESERVED_FIELDS,
    TransactionId,
    is_stale,
    is_unlocked,
    new_transaction_id,
    transaction_age,
)
from mongo_txn.domain.value_objects.transaction_types import (
    ErrorType,
    LockStatus,
    TransactionState,
)

__all__ = [
    # Identifiers
    "TransactionId",
    "NULL_OBJECTID",
    "LOCK_FIELD",
    "NEW_MARKER_FIELD",
    "ID_FIELD",
    "RESERVED_FIELDS",
    "new_transaction_id",
    "is_unlocked",
    "transaction_age",
    "is_stale",
    # Transaction types
    "TransactionState",
    "ErrorType",
    "LockStatus",
]
