"""In-memory stand-ins for pymongo async collections and databases.

Only the query operators the tenant layer emits are supported:
equality, ``$or``, ``$and``, ``$exists``, ``$in``, ``$nin``, ``$ne``.
Every call records the filter that reached storage in ``calls`` so
tests can assert on what the scoped wrapper actually sent.
"""

from __future__ import annotations

import itertools
from collections.abc import AsyncIterator, Mapping
from types import SimpleNamespace
from typing import Any

import pytest
from pymongo.errors import OperationFailure

from tenant_guard.storage.plugin import TenantPlugin, TenantScopedCollection

_MISSING = object()


def _value(document: Mapping[str, Any], key: str) -> Any:
    value = document.get(key, _MISSING)
    return None if value is _MISSING else value


def _match_condition(document: Mapping[str, Any], key: str, condition: Any) -> bool:
    present = key in document
    value = _value(document, key)
    if isinstance(condition, Mapping) and condition and all(
        op.startswith("$") for op in condition
    ):
        for op, arg in condition.items():
            if op == "$exists":
                if present != bool(arg):
                    return False
            elif op == "$in":
                if value not in arg:
                    return False
            elif op == "$nin":
                if value in arg:
                    return False
            elif op == "$ne":
                if value == arg:
                    return False
            elif op == "$eq":
                if value != arg:
                    return False
            else:
                raise NotImplementedError(op)
        return True
    return value == condition


def matches(document: Mapping[str, Any], query: Mapping[str, Any] | None) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(document, branch) for branch in condition):
                return False
        elif key == "$and":
            if not all(matches(document, branch) for branch in condition):
                return False
        elif not _match_condition(document, key, condition):
            return False
    return True


class FakeCursor:
    """Subset of ``AsyncCursor``: sort/skip/limit, to_list, async iteration."""

    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents
        self._skip = 0
        self._limit = 0

    def sort(self, key: str, direction: int = 1) -> FakeCursor:
        self._documents.sort(
            key=lambda doc: (doc.get(key) is not None, doc.get(key)),
            reverse=direction < 0,
        )
        return self

    def skip(self, count: int) -> FakeCursor:
        self._skip = count
        return self

    def limit(self, count: int) -> FakeCursor:
        self._limit = count
        return self

    def _window(self) -> list[dict[str, Any]]:
        end = self._skip + self._limit if self._limit else None
        return self._documents[self._skip : end]

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        return self._window()

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        for document in self._window():
            yield document


class FakeCollection:
    """Async collection backed by a list of dicts."""

    _ids = itertools.count(1)

    def __init__(self, name: str, database: FakeDatabase | None = None) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.indexes: dict[str, dict[str, Any]] = {"_id_": {"key": [("_id", 1)]}}
        self.calls: list[tuple[str, Any]] = []
        self._database = database

    def _check_failure(self, operation: str) -> None:
        if self._database is not None and self.name in self._database.failing:
            raise OperationFailure(f"{operation} failed on {self.name}")

    def _matching(self, query: Mapping[str, Any] | None) -> list[dict[str, Any]]:
        return [doc for doc in self.documents if matches(doc, query)]

    # ── Writes ──────────────────────────────────────────────────

    async def insert_one(self, document: Mapping[str, Any]) -> SimpleNamespace:
        self.calls.append(("insert_one", dict(document)))
        stored = dict(document)
        stored.setdefault("_id", next(self._ids))
        self.documents.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def insert_many(self, documents: list[Mapping[str, Any]]) -> SimpleNamespace:
        self.calls.append(("insert_many", [dict(doc) for doc in documents]))
        ids = []
        for document in documents:
            stored = dict(document)
            stored.setdefault("_id", next(self._ids))
            self.documents.append(stored)
            ids.append(stored["_id"])
        return SimpleNamespace(inserted_ids=ids)

    @staticmethod
    def _apply(document: dict[str, Any], update: Mapping[str, Any]) -> bool:
        before = dict(document)
        for key, value in update.get("$set", {}).items():
            document[key] = value
        for key in update.get("$unset", {}):
            document.pop(key, None)
        return document != before

    async def _update(
        self, operation: str, query: Mapping[str, Any], update: Any, many: bool
    ) -> SimpleNamespace:
        self.calls.append((operation, dict(query)))
        self._check_failure(operation)
        targets = self._matching(query)
        if not many:
            targets = targets[:1]
        modified = sum(self._apply(doc, update) for doc in targets)
        return SimpleNamespace(matched_count=len(targets), modified_count=modified)

    async def update_one(
        self, query: Mapping[str, Any], update: Any, **_: Any
    ) -> SimpleNamespace:
        return await self._update("update_one", query, update, many=False)

    async def update_many(
        self, query: Mapping[str, Any], update: Any, **_: Any
    ) -> SimpleNamespace:
        return await self._update("update_many", query, update, many=True)

    async def replace_one(
        self, query: Mapping[str, Any], replacement: Mapping[str, Any], **_: Any
    ) -> SimpleNamespace:
        self.calls.append(("replace_one", dict(query)))
        targets = self._matching(query)[:1]
        for doc in targets:
            kept_id = doc.get("_id")
            doc.clear()
            doc.update(replacement)
            doc["_id"] = kept_id
        return SimpleNamespace(matched_count=len(targets), modified_count=len(targets))

    async def find_one_and_update(
        self, query: Mapping[str, Any], update: Any, **_: Any
    ) -> dict[str, Any] | None:
        self.calls.append(("find_one_and_update", dict(query)))
        targets = self._matching(query)[:1]
        if not targets:
            return None
        before = dict(targets[0])
        self._apply(targets[0], update)
        return before

    async def find_one_and_replace(
        self, query: Mapping[str, Any], replacement: Mapping[str, Any], **_: Any
    ) -> dict[str, Any] | None:
        self.calls.append(("find_one_and_replace", dict(query)))
        targets = self._matching(query)[:1]
        if not targets:
            return None
        before = dict(targets[0])
        targets[0].clear()
        targets[0].update(replacement)
        targets[0]["_id"] = before.get("_id")
        return before

    async def _delete(
        self, operation: str, query: Mapping[str, Any], many: bool
    ) -> SimpleNamespace:
        self.calls.append((operation, dict(query)))
        targets = self._matching(query)
        if not many:
            targets = targets[:1]
        for doc in targets:
            self.documents.remove(doc)
        return SimpleNamespace(deleted_count=len(targets))

    async def delete_one(self, query: Mapping[str, Any], **_: Any) -> SimpleNamespace:
        return await self._delete("delete_one", query, many=False)

    async def delete_many(self, query: Mapping[str, Any], **_: Any) -> SimpleNamespace:
        return await self._delete("delete_many", query, many=True)

    async def find_one_and_delete(
        self, query: Mapping[str, Any], **_: Any
    ) -> dict[str, Any] | None:
        self.calls.append(("find_one_and_delete", dict(query)))
        targets = self._matching(query)[:1]
        if not targets:
            return None
        self.documents.remove(targets[0])
        return targets[0]

    # ── Reads ───────────────────────────────────────────────────

    def find(self, query: Mapping[str, Any] | None = None, *_: Any, **__: Any) -> FakeCursor:
        self.calls.append(("find", dict(query or {})))
        return FakeCursor([dict(doc) for doc in self._matching(query)])

    async def find_one(
        self, query: Mapping[str, Any] | None = None, *_: Any, **__: Any
    ) -> dict[str, Any] | None:
        self.calls.append(("find_one", dict(query or {})))
        found = self._matching(query)
        return dict(found[0]) if found else None

    async def count_documents(self, query: Mapping[str, Any], **_: Any) -> int:
        self.calls.append(("count_documents", dict(query)))
        return len(self._matching(query))

    async def distinct(
        self, key: str, query: Mapping[str, Any] | None = None, **_: Any
    ) -> list[Any]:
        self.calls.append(("distinct", dict(query or {})))
        values: list[Any] = []
        for doc in self._matching(query):
            value = doc.get(key)
            if value not in values:
                values.append(value)
        return values

    async def aggregate(
        self, pipeline: list[Mapping[str, Any]], **_: Any
    ) -> FakeCursor:
        self.calls.append(("aggregate", [dict(stage) for stage in pipeline]))
        documents = [dict(doc) for doc in self.documents]
        for stage in pipeline:
            if "$match" in stage:
                documents = [doc for doc in documents if matches(doc, stage["$match"])]
            elif "$count" in stage:
                documents = [{stage["$count"]: len(documents)}]
            elif "$group" in stage:
                documents = self._group(documents, stage["$group"])
            else:
                raise NotImplementedError(next(iter(stage)))
        return FakeCursor(documents)

    @staticmethod
    def _group(
        documents: list[dict[str, Any]], spec: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        key_expr = spec["_id"]
        groups: dict[Any, dict[str, Any]] = {}
        for doc in documents:
            key = doc.get(key_expr[1:]) if isinstance(key_expr, str) else key_expr
            group = groups.setdefault(key, {"_id": key})
            for field, accumulator in spec.items():
                if field == "_id":
                    continue
                group[field] = group.get(field, 0) + accumulator["$sum"]
        return list(groups.values())

    # ── Indexes ─────────────────────────────────────────────────

    async def create_index(
        self, keys: list[tuple[str, int]], name: str | None = None, **options: Any
    ) -> str:
        self._check_failure("create_index")
        index_name = name or "_".join(f"{key}_{direction}" for key, direction in keys)
        self.indexes[index_name] = {"key": list(keys), **options}
        return index_name

    async def index_information(self) -> dict[str, dict[str, Any]]:
        return {name: dict(info) for name, info in self.indexes.items()}


class FakeDatabase:
    """Async database: lazily created collections, addressable by name."""

    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}
        self.failing: set[str] = set()

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name, self)
        return self.collections[name]

    async def list_collection_names(self) -> list[str]:
        return list(self.collections)


@pytest.fixture()
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture()
def courses(fake_db: FakeDatabase) -> FakeCollection:
    """Raw ``courses`` collection."""
    return fake_db["courses"]


@pytest.fixture()
def plugin() -> TenantPlugin:
    return TenantPlugin()


@pytest.fixture()
def scoped_courses(
    courses: FakeCollection, plugin: TenantPlugin
) -> TenantScopedCollection:
    """Tenant-scoped wrapper around the raw ``courses`` collection."""
    return TenantScopedCollection(courses, plugin)  # type: ignore[arg-type]
