"""Tenant filter rewriting for document-store queries.

Pure functions over filter dicts; nothing here touches the database.
Every function returns a new dict and leaves its input unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from tenant_guard.context import TenantContext
from tenant_guard.errors import MissingTenantContextError

logger = structlog.get_logger()

TENANT_FIELD = "tenantId"
SYSTEM_QUERY_MARKER = "__allowSystemQuery"
FALLBACK_TENANT_ID = "default"

Filter = dict[str, Any]


def constrains_tenant(query: Mapping[str, Any] | None) -> bool:
    """True when *query* names ``tenantId`` itself or in an ``$or``/``$and`` branch."""
    if not query:
        return False
    if TENANT_FIELD in query:
        return True
    for operator in ("$or", "$and"):
        branches = query.get(operator)
        if isinstance(branches, list | tuple) and any(
            isinstance(branch, Mapping) and constrains_tenant(branch)
            for branch in branches
        ):
            return True
    return False


def pop_system_marker(query: Mapping[str, Any] | None) -> tuple[Filter, bool]:
    """Return (*query* without the escape marker, whether it was set)."""
    stripped = dict(query or {})
    marker = stripped.pop(SYSTEM_QUERY_MARKER, False)
    return stripped, bool(marker)


def with_tenant(query: Mapping[str, Any] | None, tenant_id: str) -> Filter:
    """Intersect *query* with ``tenantId == tenant_id``.

    An unconstrained filter gets the field merged in; a filter that
    already pins a different tenant is wrapped in ``$and`` so it can
    only ever match the intersection.
    """
    merged = dict(query or {})
    if TENANT_FIELD not in merged:
        merged[TENANT_FIELD] = tenant_id
        return merged
    if merged[TENANT_FIELD] == tenant_id:
        return merged
    return {"$and": [merged, {TENANT_FIELD: tenant_id}]}


def scope_filter(
    query: Mapping[str, Any] | None,
    context: TenantContext | None,
    *,
    operation: str,
    collection: str | None = None,
) -> Filter:
    """Rewrite *query* for a read, count, update or delete.

    The escape marker is always stripped. An explicit tenant constraint
    is left untouched. Otherwise the active tenant is merged in; with no
    context, only a marked query may proceed (unscoped).

    Raises:
        MissingTenantContextError: no context and no escape marker.
    """
    stripped, is_system = pop_system_marker(query)
    if constrains_tenant(stripped):
        return stripped
    if context is not None:
        stripped[TENANT_FIELD] = context.tenant_id
        return stripped
    if is_system:
        logger.info("system_query", operation=operation, collection=collection)
        return stripped
    raise MissingTenantContextError(operation, collection)


def stamp_document(
    document: Mapping[str, Any], tenant_id: str
) -> dict[str, Any]:
    """Copy of *document* with ``tenantId`` set when it is missing or empty."""
    stamped = dict(document)
    if not stamped.get(TENANT_FIELD):
        stamped[TENANT_FIELD] = tenant_id
    return stamped


def pin_tenant(document: Mapping[str, Any], tenant_id: str) -> dict[str, Any]:
    """Copy of *document* whose ``tenantId`` is *tenant_id*, whatever it held."""
    return {**document, TENANT_FIELD: tenant_id}
