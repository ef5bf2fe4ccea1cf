"""Domain-specific exceptions for tenant-guard."""

from __future__ import annotations


class MissingTenantContextError(Exception):
    """A tenant-scoped operation ran without an active tenant context.

    Callers must map this to an authorization-style failure (401),
    never to a retryable server error.
    """

    def __init__(self, operation: str, collection: str | None = None) -> None:
        self.operation = operation
        self.collection = collection
        target = f" on {collection}" if collection else ""
        super().__init__(f"Tenant context required for {operation}{target}")
