"""Identifiers and reserved field names used by the lock protocol.

Transactions are identified by BSON ObjectIds. An ObjectId embeds its
creation time, which is what staleness detection reads: no separate
``created_at`` field is stored on a transaction record.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import NewType

from bson import ObjectId

TransactionId = NewType("TransactionId", ObjectId)
"""Identifier of a transaction record. Also the value written to a locked document's lock field."""

NULL_OBJECTID = ObjectId("000000000000000000000000")
"""Sentinel stored in the lock field of an unlocked document."""

LOCK_FIELD = "t"
"""Lock field present on every business document."""

NEW_MARKER_FIELD = "__new"
"""Marker carried by placeholder documents inserted for a transaction and not yet committed."""

ID_FIELD = "_id"

RESERVED_FIELDS = frozenset({ID_FIELD, LOCK_FIELD, NEW_MARKER_FIELD})


def new_transaction_id(created_at: datetime | None = None) -> TransactionId:
    """Create a transaction id.

    Args:
        created_at: Backdate the embedded timestamp. Ids built this way are
            only unique to the second, so this is meant for recovery tooling
            and tests.

    Returns:
        A fresh transaction id
    """
    if created_at is None:
        return TransactionId(ObjectId())
    return TransactionId(ObjectId.from_datetime(created_at))


def is_unlocked(value: ObjectId | None) -> bool:
    """Return True if a lock field value means "no transaction holds this document"."""
    return value is None or value == NULL_OBJECTID


def transaction_age(transaction_id: ObjectId, now: datetime | None = None) -> timedelta:
    """Age of a transaction, derived from the timestamp embedded in its id."""
    now = now or datetime.now(timezone.utc)
    return now - transaction_id.generation_time


def is_stale(transaction_id: ObjectId, expire_gap: timedelta, now: datetime | None = None) -> bool:
    """Return True if the transaction is older than the expiry gap."""
    return transaction_age(transaction_id, now) > expire_gap
