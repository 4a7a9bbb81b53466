"""In-memory document store adapter.

A simple in-memory implementation of the DocumentStore port for testing
and development purposes. Data is not persisted across restarts.

Every operation yields to the event loop once before touching the data
and then runs to completion without awaiting, so concurrent coroutines
interleave between operations the way separate clients interleave
between round trips to a real server, and each single-document write
stays atomic.

Usage:
    store = InMemoryDocumentStore()
    accounts = store.collection("accounts")
    await accounts.insert_one({"_id": 1, "balance": 10})
    doc = await accounts.find_one({"balance": {"$gte": 5}})
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Mapping

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from mongo_txn.ports.outbound.document_store import Projection, SortSpec, normalize_sort

_MISSING = object()


def _get_path(document: Mapping[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _equals(value: Any, expected: Any) -> bool:
    if value is _MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        return any(item == expected for item in value)
    return value == expected


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(value: Any, operand: Any) -> bool:
        if value is _MISSING or value is None:
            return False
        try:
            return op(value, operand)
        except TypeError:
            return False

    return check


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": _equals,
    "$ne": lambda value, operand: not _equals(value, operand),
    "$in": lambda value, operand: any(_equals(value, item) for item in operand),
    "$nin": lambda value, operand: not any(_equals(value, item) for item in operand),
    "$exists": lambda value, operand: (value is not _MISSING) == bool(operand),
    "$gt": _compare(lambda a, b: a > b),
    "$gte": _compare(lambda a, b: a >= b),
    "$lt": _compare(lambda a, b: a < b),
    "$lte": _compare(lambda a, b: a <= b),
}


def _is_operator_doc(condition: Any) -> bool:
    return (
        isinstance(condition, Mapping)
        and bool(condition)
        and all(isinstance(key, str) and key.startswith("$") for key in condition)
    )


def matches(document: Mapping[str, Any], selector: Mapping[str, Any]) -> bool:
    """Evaluate a MongoDB selector against a document."""
    for key, condition in selector.items():
        if key == "$and":
            if not all(matches(document, sub) for sub in condition):
                return False
            continue
        if key == "$or":
            if not any(matches(document, sub) for sub in condition):
                return False
            continue

        value = _get_path(document, key)
        if _is_operator_doc(condition):
            for op, operand in condition.items():
                check = _OPERATORS.get(op)
                if check is None:
                    raise ValueError(f"Unsupported query operator {op}")
                if not check(value, operand):
                    return False
        elif not _equals(value, condition):
            return False
    return True


def _set_path(document: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _unset_path(document: dict[str, Any], path: str) -> None:
    parts = path.split(".")
    target: Any = document
    for part in parts[:-1]:
        target = target.get(part) if isinstance(target, dict) else None
        if target is None:
            return
    if isinstance(target, dict):
        target.pop(parts[-1], None)


def apply_update(document: dict[str, Any], update: Mapping[str, Any]) -> None:
    """Apply an update document (``$set``, ``$unset``, ``$push``) in place."""
    for op, fields in update.items():
        if op == "$set":
            for path, value in fields.items():
                _set_path(document, path, copy.deepcopy(value))
        elif op == "$unset":
            for path in fields:
                _unset_path(document, path)
        elif op == "$push":
            for path, value in fields.items():
                current = _get_path(document, path)
                if current is _MISSING:
                    current = []
                    _set_path(document, path, current)
                if not isinstance(current, list):
                    raise ValueError(f"Cannot $push to non-array field {path}")
                current.append(copy.deepcopy(value))
        else:
            raise ValueError(f"Unsupported update operator {op}")


def _sort_key(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (0, 0)
    if isinstance(value, ObjectId):
        return (2, value.binary)
    return (1, value)


def _sorted(documents: list[dict[str, Any]], sort: SortSpec | None) -> list[dict[str, Any]]:
    order = normalize_sort(sort)
    if not order:
        return documents
    result = list(documents)
    for field, direction in reversed(order):
        result.sort(key=lambda doc: _sort_key(_get_path(doc, field)), reverse=direction < 0)
    return result


def _index_value(document: Mapping[str, Any], fields: tuple[str, ...]) -> tuple:
    values = (_get_path(document, field) for field in fields)
    return tuple(None if value is _MISSING else value for value in values)


def _project(document: dict[str, Any], projection: Projection | None) -> dict[str, Any]:
    if projection is None:
        return copy.deepcopy(document)
    fields = set(projection) | {"_id"}
    return {k: copy.deepcopy(v) for k, v in document.items() if k in fields}


class InMemoryCollection:
    """In-memory implementation of DocumentCollection.

    Documents are kept in insertion order, which is the natural order
    unsorted queries return.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._documents: dict[Any, dict[str, Any]] = {}
        self._unique: list[tuple[str, ...]] = []

    @property
    def name(self) -> str:
        return self._name

    def __len__(self) -> int:
        return len(self._documents)

    def _check_unique(self, candidate: Mapping[str, Any]) -> None:
        """Raise DuplicateKeyError if ``candidate`` clashes on a unique index.

        A missing field indexes as null, as MongoDB does.
        """
        for fields in self._unique:
            value = _index_value(candidate, fields)
            for other in self._documents.values():
                if other["_id"] == candidate["_id"]:
                    continue
                if _index_value(other, fields) == value:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {self._name} "
                        f"index: {'_'.join(fields)} dup key: {value!r}",
                        11000,
                    )

    async def create_index(self, keys: SortSpec, *, unique: bool = False) -> None:
        await asyncio.sleep(0)
        fields = tuple(field for field, _ in normalize_sort(keys) or [])
        if not unique or fields in self._unique:
            return
        seen: list[tuple] = []
        for document in self._documents.values():
            value = _index_value(document, fields)
            if value in seen:
                raise DuplicateKeyError(
                    f"E11000 duplicate key error collection: {self._name} "
                    f"index: {'_'.join(fields)} dup key: {value!r}",
                    11000,
                )
            seen.append(value)
        self._unique.append(fields)

    def _matching(self, selector: Mapping[str, Any], sort: SortSpec | None) -> list[dict[str, Any]]:
        found = [doc for doc in self._documents.values() if matches(doc, selector)]
        return _sorted(found, sort)

    async def find_one(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        found = self._matching(selector, sort)
        return _project(found[0], projection) if found else None

    async def find(
        self,
        selector: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        projection: Projection | None = None,
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        return [_project(doc, projection) for doc in self._matching(selector, sort)]

    async def insert_one(self, document: Mapping[str, Any]) -> None:
        await asyncio.sleep(0)
        stored = copy.deepcopy(dict(document))
        stored.setdefault("_id", ObjectId())
        if stored["_id"] in self._documents:
            raise DuplicateKeyError(
                f"E11000 duplicate key error collection: {self._name} _id: {stored['_id']!r}",
                11000,
            )
        self._check_unique(stored)
        self._documents[stored["_id"]] = stored

    async def update_one(self, selector: Mapping[str, Any], update: Mapping[str, Any]) -> bool:
        await asyncio.sleep(0)
        found = self._matching(selector, None)
        if not found:
            return False
        updated = copy.deepcopy(found[0])
        apply_update(updated, update)
        self._check_unique(updated)
        self._documents[updated["_id"]] = updated
        return True

    async def replace_one(self, selector: Mapping[str, Any], document: Mapping[str, Any]) -> bool:
        await asyncio.sleep(0)
        found = self._matching(selector, None)
        if not found:
            return False
        current = found[0]
        replacement = copy.deepcopy(dict(document))
        replacement["_id"] = current["_id"]
        self._check_unique(replacement)
        self._documents[current["_id"]] = replacement
        return True

    async def delete_one(self, selector: Mapping[str, Any]) -> bool:
        await asyncio.sleep(0)
        found = self._matching(selector, None)
        if not found:
            return False
        del self._documents[found[0]["_id"]]
        return True

    async def find_one_and_update(
        self,
        selector: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        return_updated: bool = False,
    ) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        found = self._matching(selector, sort)
        if not found:
            return None
        before = found[0]
        updated = copy.deepcopy(before)
        apply_update(updated, update)
        self._check_unique(updated)
        self._documents[updated["_id"]] = updated
        return copy.deepcopy(updated) if return_updated else copy.deepcopy(before)


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore.

    Useful for testing and development. Not suitable for production use.
    """

    def __init__(self) -> None:
        self._collections: dict[str, InMemoryCollection] = {}

    def collection(self, name: str) -> InMemoryCollection:
        if name not in self._collections:
            self._collections[name] = InMemoryCollection(name)
        return self._collections[name]

    def clear(self) -> None:
        """Drop every collection."""
        self._collections.clear()
