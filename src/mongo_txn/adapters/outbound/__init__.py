"""Outbound adapters - implementations of the document store port.

MongoDocumentStore talks to MongoDB through motor; InMemoryDocumentStore
serves development and tests.
"""

from mongo_txn.adapters.outbound.memory_store import InMemoryCollection, InMemoryDocumentStore
from mongo_txn.adapters.outbound.mongo_store import MongoCollection, MongoDocumentStore

__all__ = [
    "InMemoryCollection",
    "InMemoryDocumentStore",
    "MongoCollection",
    "MongoDocumentStore",
]
