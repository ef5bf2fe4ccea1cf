"""Async MongoDB client with an explicit open/close lifecycle."""

from __future__ import annotations

from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog
from pymongo import AsyncMongoClient

from tenant_guard.storage.plugin import TenantPlugin, TenantScopedCollection

if TYPE_CHECKING:
    from pymongo.asynchronous.collection import AsyncCollection
    from pymongo.asynchronous.database import AsyncDatabase

    from tenant_guard.config import Settings

logger = structlog.get_logger()


class DocumentStore:
    """Owns the pymongo connection pool for one process.

    Construct once at startup (FastAPI lifespan, arq worker startup,
    CLI entry point) and close at shutdown.

    Usage::

        async with DocumentStore(url, "tenant_guard") as store:
            courses = store.scoped("courses")
            await courses.find_one({"name": "Python 101"})
    """

    def __init__(
        self,
        url: str,
        database: str,
        *,
        plugin: TenantPlugin | None = None,
        timeout_ms: int = 5000,
    ) -> None:
        self._url = url
        self._database_name = database
        self._timeout_ms = timeout_ms
        self.plugin = plugin or TenantPlugin()
        self._client: AsyncMongoClient[dict[str, Any]] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> DocumentStore:
        return cls(
            settings.mongodb_url,
            settings.mongodb_database,
            plugin=TenantPlugin(strict_aggregations=settings.strict_aggregations),
            timeout_ms=settings.mongodb_timeout_ms,
        )

    async def open(self) -> None:
        """Create the underlying client (idempotent)."""
        if self._client is not None:
            return
        self._client = AsyncMongoClient(
            self._url,
            serverSelectionTimeoutMS=self._timeout_ms,
            tz_aware=True,
        )
        logger.info("document_store_opened", database=self._database_name)

    async def close(self) -> None:
        """Close the client and its connection pool."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("document_store_closed", database=self._database_name)

    async def __aenter__(self) -> DocumentStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def database(self) -> AsyncDatabase[dict[str, Any]]:
        if self._client is None:
            raise RuntimeError("DocumentStore is not open. Call open() first.")
        return self._client[self._database_name]

    def collection(self, name: str) -> AsyncCollection[dict[str, Any]]:
        """Unscoped collection handle, for migration tooling only."""
        return self.database[name]

    def scoped(self, name: str) -> TenantScopedCollection:
        """Tenant-scoped handle for application code."""
        return TenantScopedCollection(self.collection(name), self.plugin)

    async def ping(self) -> None:
        await self.database.command("ping")
