"""Offline tooling that brings a dataset into tenant compliance and audits it.

Everything here works on the raw (unscoped) database: these are
maintenance operations that deliberately span tenants. All operations
are idempotent and safe to re-run.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from tenant_guard.storage.entity import tenant_indexes
from tenant_guard.storage.filters import TENANT_FIELD

if TYPE_CHECKING:
    from pymongo.asynchronous.database import AsyncDatabase

logger = structlog.get_logger()

SYSTEM_COLLECTION_PREFIX = "system."

MISSING_TENANT_FILTER: dict[str, Any] = {
    "$or": [
        {TENANT_FIELD: {"$exists": False}},
        {TENANT_FIELD: None},
        {TENANT_FIELD: ""},
    ]
}


@dataclass(frozen=True)
class BackfillResult:
    collection: str
    matched: int
    modified: int


@dataclass(frozen=True)
class CollectionError:
    """A collection the migration could not process."""

    collection: str
    error: str


@dataclass
class MigrationReport:
    """Aggregate outcome of ``migrate_database``."""

    collections_processed: int = 0
    documents_matched: int = 0
    documents_modified: int = 0
    results: list[BackfillResult] = field(default_factory=list)
    errors: list[CollectionError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class CollectionIssue:
    """A collection failing the isolation audit."""

    collection: str
    missing_tenant: int
    has_tenant_index: bool

    def describe(self) -> str:
        problems = []
        if self.missing_tenant:
            problems.append(f"{self.missing_tenant} documents without {TENANT_FIELD}")
        if not self.has_tenant_index:
            problems.append(f"no {TENANT_FIELD} index")
        return f"{self.collection}: {', '.join(problems)}"


@dataclass
class VerificationReport:
    collections_checked: int = 0
    issues: list[CollectionIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.issues


@dataclass
class TenantStats:
    tenant_id: str
    total_documents: int = 0
    collections: list[tuple[str, int]] = field(default_factory=list)


async def list_tenant_collections(db: AsyncDatabase[dict[str, Any]]) -> list[str]:
    """Collection names, minus ``system.*``, in stable order."""
    names = await db.list_collection_names()
    return sorted(name for name in names if not name.startswith(SYSTEM_COLLECTION_PREFIX))


async def backfill_tenant_id(
    db: AsyncDatabase[dict[str, Any]],
    collection: str,
    default_tenant_id: str,
) -> BackfillResult:
    """Set ``tenantId`` on every document in *collection* that lacks one."""
    result = await db[collection].update_many(
        MISSING_TENANT_FILTER, {"$set": {TENANT_FIELD: default_tenant_id}}
    )
    backfill = BackfillResult(
        collection=collection,
        matched=result.matched_count,
        modified=result.modified_count,
    )
    logger.info(
        "tenant_backfilled",
        collection=collection,
        matched=backfill.matched,
        modified=backfill.modified,
        default_tenant_id=default_tenant_id,
    )
    return backfill


async def ensure_tenant_indexes(
    db: AsyncDatabase[dict[str, Any]],
    collection: str,
    unique_per_tenant: Sequence[str] = (),
) -> list[str]:
    """Create the tenant index set on *collection*; returns index names.

    Fields in *unique_per_tenant* get unique sparse ``(tenantId, field)``
    indexes, replacing collection-wide uniqueness.
    """
    names = []
    for spec in tenant_indexes(tuple(unique_per_tenant)):
        names.append(
            await db[collection].create_index(
                spec.keys, name=spec.name, unique=spec.unique, sparse=spec.sparse
            )
        )
    logger.debug("tenant_indexes_ensured", collection=collection, indexes=names)
    return names


async def migrate_database(
    db: AsyncDatabase[dict[str, Any]],
    default_tenant_id: str,
    unique_fields: Mapping[str, Sequence[str]] | None = None,
) -> MigrationReport:
    """Backfill and index every collection.

    A failure in one collection is recorded in ``report.errors`` and the
    run moves on to the next collection.
    """
    unique_fields = unique_fields or {}
    report = MigrationReport()

    for name in await list_tenant_collections(db):
        try:
            backfill = await backfill_tenant_id(db, name, default_tenant_id)
            await ensure_tenant_indexes(db, name, unique_fields.get(name, ()))
        except Exception as e:
            logger.exception("migration_collection_failed", collection=name)
            report.errors.append(CollectionError(collection=name, error=str(e)))
            continue
        report.collections_processed += 1
        report.documents_matched += backfill.matched
        report.documents_modified += backfill.modified
        report.results.append(backfill)

    logger.info(
        "migration_finished",
        collections=report.collections_processed,
        matched=report.documents_matched,
        modified=report.documents_modified,
        errors=len(report.errors),
    )
    return report


def _has_tenant_index(index_info: Mapping[str, Mapping[str, Any]]) -> bool:
    return any(
        any(key == TENANT_FIELD for key, _ in spec.get("key", []))
        for spec in index_info.values()
    )


async def verify_tenant_isolation(
    db: AsyncDatabase[dict[str, Any]],
) -> VerificationReport:
    """Audit every collection for untagged documents and a tenant index."""
    report = VerificationReport()
    for name in await list_tenant_collections(db):
        collection = db[name]
        missing = await collection.count_documents(MISSING_TENANT_FILTER)
        indexed = _has_tenant_index(await collection.index_information())
        report.collections_checked += 1
        if missing or not indexed:
            report.issues.append(
                CollectionIssue(
                    collection=name, missing_tenant=missing, has_tenant_index=indexed
                )
            )

    if report.success:
        logger.info("isolation_verified", collections=report.collections_checked)
    else:
        logger.warning(
            "isolation_issues_found",
            collections=report.collections_checked,
            issues=[issue.describe() for issue in report.issues],
        )
    return report


async def tenant_stats(
    db: AsyncDatabase[dict[str, Any]], tenant_id: str
) -> TenantStats:
    """Per-collection document counts for one tenant, largest first."""
    stats = TenantStats(tenant_id=tenant_id)
    for name in await list_tenant_collections(db):
        count = await db[name].count_documents({TENANT_FIELD: tenant_id})
        if count:
            stats.collections.append((name, count))
            stats.total_documents += count
    stats.collections.sort(key=lambda item: item[1], reverse=True)
    return stats


async def prune_unknown_tenants(
    db: AsyncDatabase[dict[str, Any]],
    known_tenant_ids: Iterable[str],
    *,
    dry_run: bool = True,
) -> dict[str, int]:
    """Find (and unless *dry_run*, delete) documents owned by unknown tenants.

    Returns:
        Collection name → number of affected documents, for collections
        with at least one.
    """
    known = sorted(set(known_tenant_ids))
    if not known:
        raise ValueError("known_tenant_ids must not be empty")
    query = {TENANT_FIELD: {"$exists": True, "$nin": [*known, None, ""]}}

    affected: dict[str, int] = {}
    for name in await list_tenant_collections(db):
        if dry_run:
            count = await db[name].count_documents(query)
        else:
            count = (await db[name].delete_many(query)).deleted_count
        if count:
            affected[name] = count

    logger.info(
        "unknown_tenants_pruned" if not dry_run else "unknown_tenants_found",
        collections=len(affected),
        documents=sum(affected.values()),
    )
    return affected
