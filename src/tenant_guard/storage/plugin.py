"""Tenant interception for document-store collections.

``TenantScopedCollection`` wraps a pymongo ``AsyncCollection`` and
rewrites every operation against the ambient tenant context before it
reaches the database:

* inserts are stamped with the active tenant (``"default"`` when no
  context is active, for seed/bootstrap code);
* reads, counts, updates and deletes get a ``tenantId`` filter, or fail
  with ``MissingTenantContextError`` when no context is active and the
  filter carries no ``__allowSystemQuery`` marker;
* aggregation pipelines get a leading ``$match`` on the tenant.

Wrap collections once at the data-access boundary (see
``DocumentStore.scoped`` and ``TenantRepository``) rather than at call
sites.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

import structlog

from tenant_guard.context import current
from tenant_guard.errors import MissingTenantContextError
from tenant_guard.storage.bulk import stamp_bulk_operations, to_write_models
from tenant_guard.storage.filters import (
    FALLBACK_TENANT_ID,
    TENANT_FIELD,
    Filter,
    constrains_tenant,
    pin_tenant,
    pop_system_marker,
    scope_filter,
    stamp_document,
)

if TYPE_CHECKING:
    from pymongo.asynchronous.collection import AsyncCollection
    from pymongo.asynchronous.command_cursor import AsyncCommandCursor
    from pymongo.asynchronous.cursor import AsyncCursor
    from pymongo.results import (
        BulkWriteResult,
        DeleteResult,
        InsertManyResult,
        InsertOneResult,
        UpdateResult,
    )

logger = structlog.get_logger()


class TenantPlugin:
    """Tenant rules shared by every scoped collection.

    Args:
        strict_aggregations: refuse aggregations without a tenant
            context instead of running them unscoped with a warning.
        fallback_tenant_id: tenant stamped on inserts made outside any
            tenant scope.
    """

    def __init__(
        self,
        *,
        strict_aggregations: bool = False,
        fallback_tenant_id: str = FALLBACK_TENANT_ID,
    ) -> None:
        self.strict_aggregations = strict_aggregations
        self.fallback_tenant_id = fallback_tenant_id

    def creation_tenant(self) -> str:
        ctx = current()
        return ctx.tenant_id if ctx is not None else self.fallback_tenant_id

    def scope(
        self,
        query: Mapping[str, Any] | None,
        operation: str,
        collection: str | None = None,
    ) -> Filter:
        return scope_filter(
            query, current(), operation=operation, collection=collection
        )

    def scope_pipeline(
        self,
        pipeline: Sequence[Mapping[str, Any]],
        collection: str | None = None,
    ) -> list[dict[str, Any]]:
        """Prepend a tenant ``$match`` stage to *pipeline*."""
        stages = [dict(stage) for stage in pipeline]
        is_system = False
        if stages and isinstance(stages[0].get("$match"), Mapping):
            stripped, is_system = pop_system_marker(stages[0]["$match"])
            stages[0] = {**stages[0], "$match": stripped}

        ctx = current()
        if ctx is not None:
            return [{"$match": {TENANT_FIELD: ctx.tenant_id}}, *stages]

        if self.strict_aggregations and not is_system:
            raise MissingTenantContextError("aggregate", collection)
        logger.warning(
            "aggregation_without_tenant_context",
            collection=collection,
            system_query=is_system,
        )
        return stages


class TenantScopedCollection:
    """Collection proxy enforcing tenant isolation on every operation."""

    def __init__(
        self,
        collection: AsyncCollection[dict[str, Any]],
        plugin: TenantPlugin | None = None,
    ) -> None:
        self._collection = collection
        self._plugin = plugin or TenantPlugin()

    @property
    def name(self) -> str:
        return str(self._collection.name)

    @property
    def raw(self) -> AsyncCollection[dict[str, Any]]:
        """The unwrapped collection, for maintenance tooling only."""
        return self._collection

    def _scope(self, query: Mapping[str, Any] | None, operation: str) -> Filter:
        return self._plugin.scope(query, operation, self.name)

    # ── Writes that create documents ────────────────────────────

    def stamp(self, document: Mapping[str, Any]) -> dict[str, Any]:
        """Copy of *document* carrying the tenant an insert would give it."""
        return stamp_document(document, self._plugin.creation_tenant())

    async def insert_one(
        self, document: Mapping[str, Any], **kwargs: Any
    ) -> InsertOneResult:
        return await self._collection.insert_one(self.stamp(document), **kwargs)

    async def insert_many(
        self, documents: Iterable[Mapping[str, Any]], **kwargs: Any
    ) -> InsertManyResult:
        tenant_id = self._plugin.creation_tenant()
        stamped = [stamp_document(doc, tenant_id) for doc in documents]
        return await self._collection.insert_many(stamped, **kwargs)

    # ── Reads ───────────────────────────────────────────────────

    def find(
        self, filter: Mapping[str, Any] | None = None, *args: Any, **kwargs: Any
    ) -> AsyncCursor[dict[str, Any]]:
        return self._collection.find(self._scope(filter, "find"), *args, **kwargs)

    async def find_one(
        self, filter: Mapping[str, Any] | None = None, *args: Any, **kwargs: Any
    ) -> dict[str, Any] | None:
        return await self._collection.find_one(
            self._scope(filter, "find_one"), *args, **kwargs
        )

    async def count_documents(
        self, filter: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> int:
        return await self._collection.count_documents(
            self._scope(filter, "count_documents"), **kwargs
        )

    async def distinct(
        self, key: str, filter: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> list[Any]:
        return await self._collection.distinct(
            key, self._scope(filter, "distinct"), **kwargs
        )

    # ── Updates ─────────────────────────────────────────────────

    async def update_one(
        self, filter: Mapping[str, Any], update: Any, **kwargs: Any
    ) -> UpdateResult:
        return await self._collection.update_one(
            self._scope(filter, "update_one"), update, **kwargs
        )

    async def update_many(
        self, filter: Mapping[str, Any], update: Any, **kwargs: Any
    ) -> UpdateResult:
        return await self._collection.update_many(
            self._scope(filter, "update_many"), update, **kwargs
        )

    async def replace_one(
        self,
        filter: Mapping[str, Any],
        replacement: Mapping[str, Any],
        **kwargs: Any,
    ) -> UpdateResult:
        scoped = self._scope(filter, "replace_one")
        return await self._collection.replace_one(
            scoped, self._stamp_replacement(filter, replacement), **kwargs
        )

    async def find_one_and_update(
        self, filter: Mapping[str, Any], update: Any, **kwargs: Any
    ) -> dict[str, Any] | None:
        return await self._collection.find_one_and_update(
            self._scope(filter, "find_one_and_update"), update, **kwargs
        )

    async def find_one_and_replace(
        self,
        filter: Mapping[str, Any],
        replacement: Mapping[str, Any],
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        scoped = self._scope(filter, "find_one_and_replace")
        return await self._collection.find_one_and_replace(
            scoped, self._stamp_replacement(filter, replacement), **kwargs
        )

    def _stamp_replacement(
        self, query: Mapping[str, Any] | None, replacement: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Pin the replacement to the tenant whose document it replaces.

        A filter naming a tenant targets that tenant; otherwise the active
        tenant applies. Unscoped system replaces keep the replacement as given.
        """
        stripped, _ = pop_system_marker(query)
        if constrains_tenant(stripped):
            target = stripped.get(TENANT_FIELD)
            if isinstance(target, str):
                return pin_tenant(replacement, target)
            return dict(replacement)
        ctx = current()
        if ctx is None:
            return dict(replacement)
        return pin_tenant(replacement, ctx.tenant_id)

    # ── Deletes ─────────────────────────────────────────────────

    async def delete_one(self, filter: Mapping[str, Any], **kwargs: Any) -> DeleteResult:
        return await self._collection.delete_one(
            self._scope(filter, "delete_one"), **kwargs
        )

    async def delete_many(
        self, filter: Mapping[str, Any], **kwargs: Any
    ) -> DeleteResult:
        return await self._collection.delete_many(
            self._scope(filter, "delete_many"), **kwargs
        )

    async def find_one_and_delete(
        self, filter: Mapping[str, Any], **kwargs: Any
    ) -> dict[str, Any] | None:
        return await self._collection.find_one_and_delete(
            self._scope(filter, "find_one_and_delete"), **kwargs
        )

    # ── Aggregation & bulk ──────────────────────────────────────

    async def aggregate(
        self, pipeline: Sequence[Mapping[str, Any]], **kwargs: Any
    ) -> AsyncCommandCursor[dict[str, Any]]:
        stages = self._plugin.scope_pipeline(pipeline, self.name)
        return await self._collection.aggregate(stages, **kwargs)

    async def bulk_write(
        self, operations: Sequence[Mapping[str, Any]], **kwargs: Any
    ) -> BulkWriteResult:
        """Stamp mongo-shell style descriptors with the active tenant and run them."""
        stamped = stamp_bulk_operations(operations)
        return await self._collection.bulk_write(to_write_models(stamped), **kwargs)
