"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the document database the
coordinator stores business documents and transaction records in.
"""

from mongo_txn.ports.outbound.document_store import (
    DocumentCollection,
    DocumentStore,
    Projection,
    SortSpec,
    normalize_sort,
)

__all__ = [
    "DocumentCollection",
    "DocumentStore",
    "Projection",
    "SortSpec",
    "normalize_sort",
]
