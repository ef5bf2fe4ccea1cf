"""Generic tenant-scoped repository over pydantic entities."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Generic

from pymongo import DESCENDING

from tenant_guard.storage.entity import EntityDefinition, ModelT, to_document
from tenant_guard.storage.plugin import TenantScopedCollection


class TenantRepository(Generic[ModelT]):
    """CRUD for one entity type, scoped to the ambient tenant.

    All queries go through ``TenantScopedCollection``, so the tenant
    filter is applied without call sites passing a tenant id.

    Usage::

        courses = TenantRepository(COURSES, store.scoped("courses"))
        course = await courses.create(Course(name="Python 101"))
    """

    def __init__(
        self,
        definition: EntityDefinition[ModelT],
        collection: TenantScopedCollection,
    ) -> None:
        self._definition = definition
        self._collection = collection

    @property
    def model(self) -> type[ModelT]:
        return self._definition.model

    def _load(self, document: Mapping[str, Any]) -> ModelT:
        return self.model.model_validate(dict(document))

    async def create(self, entity: ModelT) -> ModelT:
        """Insert *entity*, stamped with the current tenant.

        Returns:
            A new instance carrying the stored ``_id`` and ``tenantId``.
        """
        document = self._collection.stamp(to_document(entity))
        result = await self._collection.insert_one(document)
        document["_id"] = result.inserted_id
        return self._load(document)

    async def get_by_id(self, entity_id: Any) -> ModelT | None:
        """Return the entity if it exists and belongs to the current tenant."""
        document = await self._collection.find_one({"_id": entity_id})
        return self._load(document) if document is not None else None

    async def list_all(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        limit: int = 100,
        skip: int = 0,
    ) -> list[ModelT]:
        """List entities newest first."""
        cursor = (
            self._collection.find(filter or {})
            .sort("createdAt", DESCENDING)
            .skip(skip)
            .limit(limit)
        )
        return [self._load(document) async for document in cursor]

    async def count(self, filter: Mapping[str, Any] | None = None) -> int:
        return await self._collection.count_documents(filter or {})

    async def update(self, entity_id: Any, changes: Mapping[str, Any]) -> bool:
        """Apply ``$set`` *changes*; returns False if nothing matched."""
        patch = {**changes, "updatedAt": datetime.now(UTC)}
        result = await self._collection.update_one({"_id": entity_id}, {"$set": patch})
        return result.matched_count > 0

    async def delete(self, entity_id: Any) -> bool:
        result = await self._collection.delete_one({"_id": entity_id})
        return result.deleted_count > 0

    async def aggregate(
        self, pipeline: Sequence[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        cursor = await self._collection.aggregate(pipeline)
        return [document async for document in cursor]

    async def ensure_indexes(self) -> list[str]:
        """Create the entity's tenant indexes on the underlying collection."""
        names = []
        for spec in self._definition.indexes:
            names.append(
                await self._collection.raw.create_index(
                    spec.keys, name=spec.name, unique=spec.unique, sparse=spec.sparse
                )
            )
        return names
