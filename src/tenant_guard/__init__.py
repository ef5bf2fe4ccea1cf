"""Tenant isolation for a shared document store."""

from tenant_guard.context import (
    TenantContext,
    activate,
    current,
    require_current,
    tenant_scope,
)
from tenant_guard.errors import MissingTenantContextError

__all__ = [
    "MissingTenantContextError",
    "TenantContext",
    "activate",
    "current",
    "require_current",
    "tenant_scope",
]
