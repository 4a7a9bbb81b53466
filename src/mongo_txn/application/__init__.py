"""Application layer for mongo_txn.

Exports:
    TransactionEngine:
        - TransactionEngine: Main entry point wiring store, registry and coordinator
"""

from mongo_txn.application.engine import TransactionEngine

__all__ = [
    "TransactionEngine",
]
