"""Adapters layer - concrete implementations of port interfaces."""

from mongo_txn.adapters.outbound import InMemoryDocumentStore, MongoDocumentStore

__all__ = [
    "InMemoryDocumentStore",
    "MongoDocumentStore",
]
