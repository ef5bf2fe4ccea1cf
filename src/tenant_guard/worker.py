"""ARQ worker: tenant-aware background jobs and offline tooling jobs.

Run with::

    arq tenant_guard.worker.WorkerSettings

Jobs enqueued through ``enqueue_tenant_job`` carry the caller's tenant
and run inside the same tenant scope on the worker; jobs with no tenant
run under the configured default tenant.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any, ClassVar

import structlog
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from tenant_guard.config import get_settings
from tenant_guard.context import TenantContext, require_current, tenant_scope
from tenant_guard.logging_config import configure_logging
from tenant_guard.migration import migrate_database, tenant_stats, verify_tenant_isolation
from tenant_guard.storage.database import DocumentStore

WorkerCtx = dict[str, Any]

TENANT_KWARG = "_tenant_id"

JobFn = Callable[..., Awaitable[Any]]


def tenant_job(fn: JobFn) -> JobFn:
    """Run an ARQ job inside the tenant scope it was enqueued from.

    The tenant travels as the ``_tenant_id`` keyword argument; when it
    is absent the configured default tenant is used.
    """

    @functools.wraps(fn)
    async def wrapper(ctx: WorkerCtx, *args: Any, **kwargs: Any) -> Any:
        tenant_id = kwargs.pop(TENANT_KWARG, None) or get_settings().default_tenant_id
        with tenant_scope(TenantContext(tenant_id=tenant_id)):
            return await fn(ctx, *args, **kwargs)

    return wrapper


async def enqueue_tenant_job(
    redis: ArqRedis, function: str, *args: Any, **kwargs: Any
) -> Job | None:
    """Enqueue *function* carrying the current tenant.

    Raises:
        MissingTenantContextError: called outside a tenant scope.
    """
    tenant = require_current("enqueue_job")
    kwargs[TENANT_KWARG] = tenant.tenant_id
    return await redis.enqueue_job(function, *args, **kwargs)


def _store(ctx: WorkerCtx) -> DocumentStore:
    store: DocumentStore = ctx["document_store"]
    return store


@tenant_job
async def arq_tenant_stats(ctx: WorkerCtx) -> dict[str, Any]:
    """Document counts for the tenant the job was enqueued under."""
    tenant = require_current("tenant_stats")
    stats = await tenant_stats(_store(ctx).database, tenant.tenant_id)
    return asdict(stats)


async def arq_migrate_database(
    ctx: WorkerCtx,
    default_tenant_id: str | None = None,
    unique_fields: dict[str, list[str]] | None = None,
) -> dict[str, Any]:
    """Backfill and index every collection (maintenance job, no tenant).

    *unique_fields* maps a collection to fields unique per tenant.
    """
    default = default_tenant_id or get_settings().default_tenant_id
    report = await migrate_database(
        _store(ctx).database, default, unique_fields=unique_fields
    )
    return {"success": report.success, **asdict(report)}


async def arq_verify_isolation(ctx: WorkerCtx) -> dict[str, Any]:
    """Audit every collection for tenant compliance (maintenance job)."""
    report = await verify_tenant_isolation(_store(ctx).database)
    return {"success": report.success, **asdict(report)}


async def startup(ctx: WorkerCtx) -> None:
    """Configure logging and open the DocumentStore for the worker."""
    s = get_settings()
    configure_logging(
        environment=str(s.environment),
        log_level=s.log_level,
    )

    store = DocumentStore.from_settings(s)
    await store.open()
    ctx["document_store"] = store

    log = structlog.get_logger()
    log.info("worker_started", redis_url=s.redis_url, max_jobs=s.worker_max_jobs)


async def shutdown(ctx: WorkerCtx) -> None:
    """Close worker resources on shutdown."""
    log = structlog.get_logger()

    store = ctx.get("document_store")
    if store is not None:
        await store.close()

    log.info("worker_stopped")


class WorkerSettings:
    """ARQ worker settings, consumed by the ``arq`` CLI."""

    _settings = get_settings()

    redis_settings: RedisSettings = RedisSettings.from_dsn(
        _settings.redis_url,
    )
    functions: ClassVar[list[Any]] = [
        arq_tenant_stats,
        arq_migrate_database,
        arq_verify_isolation,
    ]
    on_startup = startup
    on_shutdown = shutdown

    max_jobs: int = _settings.worker_max_jobs
    job_timeout: int = _settings.worker_job_timeout
    max_tries: int = _settings.worker_max_tries

    keep_result: int = 3600
    poll_delay: float = 0.5
