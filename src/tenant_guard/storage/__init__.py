"""Tenant-scoped access to the shared document store."""

from tenant_guard.storage.bulk import stamp_bulk_operations, to_write_models
from tenant_guard.storage.database import DocumentStore
from tenant_guard.storage.entity import (
    EntityDefinition,
    IndexSpec,
    TenantDocument,
    tenant_entity,
    tenant_indexes,
)
from tenant_guard.storage.filters import (
    FALLBACK_TENANT_ID,
    SYSTEM_QUERY_MARKER,
    TENANT_FIELD,
)
from tenant_guard.storage.plugin import TenantPlugin, TenantScopedCollection
from tenant_guard.storage.repository import TenantRepository

__all__ = [
    "FALLBACK_TENANT_ID",
    "SYSTEM_QUERY_MARKER",
    "TENANT_FIELD",
    "DocumentStore",
    "EntityDefinition",
    "IndexSpec",
    "TenantDocument",
    "TenantPlugin",
    "TenantRepository",
    "TenantScopedCollection",
    "stamp_bulk_operations",
    "tenant_entity",
    "tenant_indexes",
    "to_write_models",
]
