"""Shared fixtures for integration tests requiring live infrastructure."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Any

import pytest

from tenant_guard.config import get_settings
from tenant_guard.storage.database import DocumentStore

# ── Document store (throwaway database per test) ──────────────────


@pytest.fixture()
async def document_store() -> AsyncGenerator[DocumentStore]:
    """Open a DocumentStore on a uniquely named database, dropped afterwards."""
    settings = get_settings()
    store = DocumentStore(
        settings.mongodb_url,
        f"tenant_guard_test_{uuid.uuid4().hex[:8]}",
        timeout_ms=settings.mongodb_timeout_ms,
    )
    async with store:
        yield store
        await store.database.client.drop_database(store.database.name)


# ── Redis (ARQ) ───────────────────────────────────────────────────


@pytest.fixture()
async def arq_redis() -> AsyncGenerator[Any]:
    """Create and close a real ArqRedis connection pool."""
    from arq.connections import RedisSettings, create_pool

    pool = await create_pool(RedisSettings.from_dsn(get_settings().redis_url))
    yield pool
    await pool.aclose()
