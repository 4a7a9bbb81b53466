"""Transaction Coordinator port for multi-document transactions.

This inbound port defines the contract applications use to group writes
to many documents, across many collections, into one unit that either
commits or rolls back as a whole.

Key responsibilities:
- Manage the transaction record lifecycle (born, pending, commit, expire)
- Lock documents through their lock field before they are modified
- Replay buffered mutations on commit, restore pre-images on expire
- Resolve locks left behind by dead transactions on every read

References:
    - Gray & Reuter, "Transaction Processing: Concepts and Techniques" (1992)
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Mapping, Protocol

from mongo_txn.domain.entities import Document
from mongo_txn.domain.value_objects import ErrorType, TransactionId, TransactionState

if TYPE_CHECKING:
    from mongo_txn.ports.outbound import SortSpec


class TransactionHandle(Protocol):
    """Protocol for an in-flight transaction.

    A handle tracks the documents it has locked. The caller mutates those
    documents in memory; nothing is written to their collections until
    ``commit``.

    Example:
        txn = await coordinator.begin()
        try:
            account = await txn.find_one("accounts", {"owner": "ann"})
            account["balance"] -= 10
            await txn.commit()
        except TransactionError:
            await txn.cancel("transfer failed")
            raise
    """

    @property
    @abstractmethod
    def id(self) -> TransactionId:
        """Return the transaction id, also the value written to locked documents."""
        ...

    @property
    @abstractmethod
    def state(self) -> TransactionState:
        """Return the state as last seen by this handle."""
        ...

    @abstractmethod
    async def add(self, document: Document) -> None:
        """Lock a document and register it with the transaction.

        New documents are reserved with a placeholder; persisted documents
        have their pre-image captured.

        Raises:
            TransactionConflictError: TRANSACTION_CONFLICT_1 if another
                transaction holds the document.
            TransactionExpiredError: If the transaction has expired.
            TransactionStateError: If the transaction is not accepting documents.
            pydantic.ValidationError: If the document fails validation.
        """
        ...

    @abstractmethod
    async def remove_doc(self, document: Document) -> None:
        """Lock a document and register its deletion on commit."""
        ...

    @abstractmethod
    async def find_one(
        self,
        model: Any,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
    ) -> Document | None:
        """Find a document and lock it for this transaction.

        Raises:
            TransactionConflictError: TRANSACTION_CONFLICT_2 if the document
                stayed locked by another transaction past the bounded wait.
        """
        ...

    @abstractmethod
    async def find(
        self,
        model: Any,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
    ) -> list[Document]:
        """Find documents and lock each of them for this transaction."""
        ...

    @abstractmethod
    async def commit(self) -> None:
        """Write every buffered mutation and release every lock.

        Raises:
            TransactionExpiredError: If the transaction expired first.
            UnknownCommitError: If the commit transition failed; the
                transaction has been expired.
        """
        ...

    @abstractmethod
    async def expire(self) -> None:
        """Roll back: restore pre-images, delete placeholders, release locks.

        Raises:
            TransactionStateError: If the transaction already committed.
        """
        ...

    @abstractmethod
    async def cancel(self, reason: Any = None) -> None:
        """Log ``reason`` and expire the transaction."""
        ...


class TransactionCoordinatorPort(Protocol):
    """Protocol for creating and loading transactions."""

    @abstractmethod
    async def begin(self, transaction_id: TransactionId | None = None) -> TransactionHandle:
        """Insert a new transaction record in state born and return its handle."""
        ...

    @abstractmethod
    async def load(self, transaction_id: TransactionId) -> TransactionHandle:
        """Return a handle on an existing transaction record.

        Raises:
            TransactionExpiredError: If no record exists for the id.
        """
        ...


class TransactionError(Exception):
    """Base class of errors raised by the coordinator.

    ``str(exc)`` is the error code, so callers written against the codes
    and callers catching the subclasses both work.
    """

    error_type: ErrorType = ErrorType.SOMETHING_WRONG

    def __init__(
        self,
        error_type: ErrorType | None = None,
        transaction_id: TransactionId | None = None,
        detail: str | None = None,
    ):
        if error_type is not None:
            self.error_type = error_type
        super().__init__(self.error_type.value)
        self.transaction_id = transaction_id
        self.detail = detail


class TransactionConflictError(TransactionError):
    """Raised when a document is locked by another live transaction.

    TRANSACTION_CONFLICT_1 on a lost write race, TRANSACTION_CONFLICT_2
    when a read gave up waiting for the holder.
    """

    error_type = ErrorType.TRANSACTION_CONFLICT_1

    def __init__(
        self,
        error_type: ErrorType = ErrorType.TRANSACTION_CONFLICT_1,
        transaction_id: TransactionId | None = None,
        detail: str | None = None,
        holder: TransactionId | None = None,
    ):
        super().__init__(error_type, transaction_id, detail)
        self.holder = holder


class TransactionExpiredError(TransactionError):
    """Raised when the transaction was already resolved to expire."""

    error_type = ErrorType.TRANSACTION_EXPIRED


class UnknownCommitError(TransactionError):
    """Raised when the commit transition failed for a reason other than expiry."""

    error_type = ErrorType.UNKNOWN_COMMIT_ERROR


class TransactionStateError(TransactionError):
    """Raised on an invalid state transition."""

    error_type = ErrorType.SOMETHING_WRONG
