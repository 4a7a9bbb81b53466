"""Transaction-related types and enumerations."""

from __future__ import annotations

from enum import Enum


class TransactionState(str, Enum):
    """Persisted lifecycle state of a transaction record.

    State machine:

        BORN ──commit()──> PENDING ──replay done──> COMMIT
          │                   │
          └──cancel()/expire()/stale/commit failure──> EXPIRE

    COMMIT and EXPIRE are terminal. Every transition is a conditional
    update on the persisted record keyed on the expected current state,
    so two handles racing on the same record cannot both win.
    """

    BORN = "born"
    """Accepting documents. The only state in which ``docs`` may grow."""

    PENDING = "pending"
    """Commit started; buffered mutations are being replayed."""

    COMMIT = "commit"
    """All mutations are durable. Readers finish any leftover replay."""

    EXPIRE = "expire"
    """Rolled back, or being rolled back. Readers restore any leftover document."""

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (COMMIT or EXPIRE)."""
        return self in (TransactionState.COMMIT, TransactionState.EXPIRE)

    def is_live(self) -> bool:
        """Check if a transaction in this state may still hold locks legitimately."""
        return self in (TransactionState.BORN, TransactionState.PENDING)


class ErrorType(str, Enum):
    """Error codes surfaced by the coordinator.

    The value doubles as the exception message, so callers may compare
    either ``exc.error_type`` or ``str(exc)``.
    """

    TRANSACTION_CONFLICT_1 = "TRANSACTION_CONFLICT_1"
    """Write-write race: the document is already held by another live transaction."""

    TRANSACTION_CONFLICT_2 = "TRANSACTION_CONFLICT_2"
    """Read race: the document stayed locked by another transaction past the bounded wait."""

    TRANSACTION_EXPIRED = "TRANSACTION_EXPIRED"
    """The transaction was already resolved to expire."""

    UNKNOWN_COMMIT_ERROR = "UNKNOWN_COMMIT_ERROR"
    """The guarded commit transition failed for another reason; the transaction was expired."""

    SOMETHING_WRONG = "SOMETHING_WRONG"
    """An invalid state transition was attempted."""


class LockStatus(Enum):
    """Outcome of resolving a locked document on read."""

    RELEASED = "released"
    """The lock belonged to a dead or finished transaction and has been cleared; re-read."""

    OWNED = "owned"
    """The lock belongs to the reading transaction."""

    HELD = "held"
    """A different live transaction holds the lock."""
