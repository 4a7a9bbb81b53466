"""MongoDB document store adapter.

Implements the DocumentStore port on top of motor, the asyncio driver
for MongoDB. Every method maps onto a single driver call, so each write
keeps MongoDB's single-document atomicity.

Usage:
    store = MongoDocumentStore.from_uri("mongodb://localhost:27017", "shop")
    accounts = store.collection("accounts")
    await accounts.insert_one({"_id": 1, "balance": 10})
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument

from mongo_txn.ports.outbound.document_store import Projection, SortSpec, normalize_sort

logger = logging.getLogger(__name__)


def _projection(projection: Projection | None) -> dict[str, int] | None:
    if projection is None:
        return None
    return {field: 1 for field in projection}


class MongoCollection:
    """DocumentCollection backed by a motor collection."""

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    async def find_one(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> dict[str, Any] | None:
        return await self._collection.find_one(
            dict(selector), _projection(projection), sort=normalize_sort(sort)
        )

    async def find(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> list[dict[str, Any]]:
        cursor = self._collection.find(dict(selector), _projection(projection))
        order = normalize_sort(sort)
        if order:
            cursor = cursor.sort(order)
        return await cursor.to_list(length=None)

    async def insert_one(self, document: Mapping[str, Any]) -> None:
        await self._collection.insert_one(dict(document))

    async def update_one(self, selector: Mapping[str, Any], update: Mapping[str, Any]) -> bool:
        result = await self._collection.update_one(dict(selector), dict(update))
        return result.matched_count > 0

    async def replace_one(self, selector: Mapping[str, Any], document: Mapping[str, Any]) -> bool:
        result = await self._collection.replace_one(dict(selector), dict(document))
        return result.matched_count > 0

    async def delete_one(self, selector: Mapping[str, Any]) -> bool:
        result = await self._collection.delete_one(dict(selector))
        return result.deleted_count > 0

    async def find_one_and_update(
        self,
        selector: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        return_updated: bool = False,
    ) -> dict[str, Any] | None:
        return await self._collection.find_one_and_update(
            dict(selector),
            dict(update),
            sort=normalize_sort(sort),
            return_document=ReturnDocument.AFTER if return_updated else ReturnDocument.BEFORE,
        )

    async def create_index(self, keys: SortSpec, *, unique: bool = False) -> None:
        await self._collection.create_index(normalize_sort(keys), unique=unique)


class MongoDocumentStore:
    """DocumentStore backed by a motor database.

    Collection wrappers are cached per name. The motor client owns the
    connection pool; ``close`` releases it when the store created the client.
    """

    def __init__(self, database: AsyncIOMotorDatabase, client: AsyncIOMotorClient | None = None) -> None:
        self._database = database
        self._client = client
        self._collections: dict[str, MongoCollection] = {}

    @classmethod
    def from_uri(
        cls,
        uri: str,
        database: str,
        server_selection_timeout_ms: int = 5000,
    ) -> MongoDocumentStore:
        """Create a store with its own motor client.

        Args:
            uri: MongoDB connection string
            database: Database holding business collections and transaction records
            server_selection_timeout_ms: Driver server selection timeout

        Returns:
            A store owning the client
        """
        client: AsyncIOMotorClient = AsyncIOMotorClient(
            uri, serverSelectionTimeoutMS=server_selection_timeout_ms
        )
        logger.info("Connecting to MongoDB database %s", database)
        return cls(client[database], client)

    @property
    def database_name(self) -> str:
        return self._database.name

    def collection(self, name: str) -> MongoCollection:
        wrapper = self._collections.get(name)
        if wrapper is None:
            wrapper = MongoCollection(self._database[name])
            self._collections[name] = wrapper
        return wrapper

    async def drop_collection(self, name: str) -> None:
        """Drop a collection. Used by test fixtures and tooling."""
        await self._database.drop_collection(name)
        self._collections.pop(name, None)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
