"""Unit tests for domain value objects."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from mongo_txn.domain.value_objects import (
    LOCK_FIELD,
    NULL_OBJECTID,
    RESERVED_FIELDS,
    ErrorType,
    TransactionState,
    is_stale,
    is_unlocked,
    new_transaction_id,
    transaction_age,
)


@pytest.mark.unit
class TestIdentifiers:
    """Tests for transaction ids and the lock sentinel."""

    def test_null_objectid_is_all_zeros(self) -> None:
        assert str(NULL_OBJECTID) == "0" * 24

    def test_new_transaction_id_is_objectid(self) -> None:
        txn_id = new_transaction_id()
        assert isinstance(txn_id, ObjectId)
        assert txn_id != NULL_OBJECTID

    def test_backdated_transaction_id(self) -> None:
        """A backdated id carries the given creation time."""
        created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        txn_id = new_transaction_id(created)
        assert txn_id.generation_time == created

    def test_is_unlocked(self) -> None:
        """Missing and sentinel lock values both mean unlocked."""
        assert is_unlocked(None)
        assert is_unlocked(NULL_OBJECTID)
        assert not is_unlocked(ObjectId())

    def test_reserved_fields(self) -> None:
        assert LOCK_FIELD == "t"
        assert RESERVED_FIELDS == {"_id", "t", "__new"}


@pytest.mark.unit
class TestStaleness:
    """Staleness is derived from the timestamp inside the id."""

    def test_age(self) -> None:
        now = datetime.now(timezone.utc)
        txn_id = new_transaction_id(now - timedelta(seconds=30))
        assert timedelta(seconds=29) <= transaction_age(txn_id, now) <= timedelta(seconds=31)

    def test_fresh_is_not_stale(self) -> None:
        assert not is_stale(new_transaction_id(), timedelta(seconds=60))

    def test_old_is_stale(self) -> None:
        old = new_transaction_id(datetime.now(timezone.utc) - timedelta(minutes=5))
        assert is_stale(old, timedelta(seconds=60))


@pytest.mark.unit
class TestTransactionTypes:
    """Tests for state and error enumerations."""

    def test_state_values(self) -> None:
        assert [s.value for s in TransactionState] == ["born", "pending", "commit", "expire"]

    def test_terminal_states(self) -> None:
        assert TransactionState.COMMIT.is_terminal()
        assert TransactionState.EXPIRE.is_terminal()
        assert not TransactionState.BORN.is_terminal()
        assert not TransactionState.PENDING.is_terminal()

    def test_live_states(self) -> None:
        assert TransactionState.BORN.is_live()
        assert TransactionState.PENDING.is_live()
        assert not TransactionState.EXPIRE.is_live()

    def test_error_codes_match_names(self) -> None:
        for error_type in ErrorType:
            assert error_type.value == error_type.name
