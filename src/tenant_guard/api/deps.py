"""FastAPI dependency injection."""

from __future__ import annotations

from typing import cast

from fastapi import Request

from tenant_guard.context import TenantContext, require_current
from tenant_guard.storage.database import DocumentStore

__all__ = ["get_document_store", "get_tenant_context"]


async def get_tenant_context() -> TenantContext:
    """Return the tenant activated by ``TenantContextMiddleware``.

    Raises:
        MissingTenantContextError: middleware not installed for this route.
    """
    return require_current("request")


async def get_document_store(request: Request) -> DocumentStore:
    """Retrieve DocumentStore from app state.

    Initialized during lifespan startup.
    """
    return cast(DocumentStore, request.app.state.document_store)
