"""Tenant stamping for batched write operations.

Bulk descriptors use the mongo-shell shape::

    [
        {"insertOne": {"document": {"name": "x"}}},
        {"updateOne": {"filter": {"id": 1}, "update": {"$set": {...}}}},
        {"deleteMany": {"filter": {"archived": True}}},
    ]

Unlike single inserts, bulk writes never fall back to a default tenant:
they are explicit application batches, so a missing context is an error.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pymongo import DeleteMany, DeleteOne, InsertOne, ReplaceOne, UpdateMany, UpdateOne

from tenant_guard.context import require_current
from tenant_guard.storage.filters import pin_tenant, pop_system_marker, with_tenant

BulkOperation = dict[str, dict[str, Any]]

INSERT_KINDS = frozenset({"insertOne"})
FILTER_KINDS = frozenset(
    {"updateOne", "updateMany", "replaceOne", "deleteOne", "deleteMany"}
)


def _split(operation: Mapping[str, Any]) -> tuple[str, Mapping[str, Any]]:
    if len(operation) != 1:
        raise ValueError(f"Bulk operation must have exactly one kind: {dict(operation)!r}")
    ((kind, spec),) = operation.items()
    if kind not in INSERT_KINDS | FILTER_KINDS:
        raise ValueError(f"Unsupported bulk operation: {kind}")
    if not isinstance(spec, Mapping):
        raise ValueError(f"Bulk operation {kind} needs a mapping body")
    return kind, spec


def stamp_bulk_operations(
    operations: Sequence[Mapping[str, Any]],
    tenant_id: str | None = None,
) -> list[BulkOperation]:
    """Return a copy of *operations* confined to one tenant.

    Insert documents and replacements get ``tenantId`` overwritten with
    the tenant; every update, replace and delete filter is intersected
    with it. The input list and its dicts are left untouched.

    Raises:
        MissingTenantContextError: *tenant_id* not given and no context active.
        ValueError: unknown or malformed descriptor.
    """
    if tenant_id is None:
        tenant_id = require_current("bulk_write").tenant_id

    stamped: list[BulkOperation] = []
    for operation in operations:
        kind, spec = _split(operation)
        body = dict(spec)
        if kind in INSERT_KINDS:
            body["document"] = pin_tenant(body.get("document", {}), tenant_id)
        else:
            query, _ = pop_system_marker(body.get("filter"))
            body["filter"] = with_tenant(query, tenant_id)
            if kind == "replaceOne":
                body["replacement"] = pin_tenant(
                    body.get("replacement", {}), tenant_id
                )
        stamped.append({kind: body})
    return stamped


def _insert_one(spec: Mapping[str, Any]) -> InsertOne[Any]:
    return InsertOne(dict(spec["document"]))


def _update_one(spec: Mapping[str, Any]) -> UpdateOne:
    return UpdateOne(spec["filter"], spec["update"], upsert=bool(spec.get("upsert")))


def _update_many(spec: Mapping[str, Any]) -> UpdateMany:
    return UpdateMany(spec["filter"], spec["update"], upsert=bool(spec.get("upsert")))


def _replace_one(spec: Mapping[str, Any]) -> ReplaceOne[Any]:
    return ReplaceOne(
        spec["filter"], spec["replacement"], upsert=bool(spec.get("upsert"))
    )


def _delete_one(spec: Mapping[str, Any]) -> DeleteOne:
    return DeleteOne(spec["filter"])


def _delete_many(spec: Mapping[str, Any]) -> DeleteMany:
    return DeleteMany(spec["filter"])


_WRITE_MODEL_BUILDERS: dict[str, Callable[[Mapping[str, Any]], Any]] = {
    "insertOne": _insert_one,
    "updateOne": _update_one,
    "updateMany": _update_many,
    "replaceOne": _replace_one,
    "deleteOne": _delete_one,
    "deleteMany": _delete_many,
}


def to_write_models(operations: Sequence[Mapping[str, Any]]) -> list[Any]:
    """Convert descriptors into pymongo bulk request objects."""
    requests: list[Any] = []
    for operation in operations:
        kind, spec = _split(operation)
        requests.append(_WRITE_MODEL_BUILDERS[kind](spec))
    return requests
