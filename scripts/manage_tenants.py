"""CLI for tenant migration and isolation audits.

Usage::

    uv run python -m scripts.manage_tenants <command> [options]

Commands:
    backfill         Set tenantId on documents of one collection that lack it
    create-indexes   Create the tenant index set on one collection
    migrate          Backfill and index every collection
    verify           Audit every collection for tenant compliance
    stats            Per-collection document counts for one tenant
    prune            Find (or delete) documents owned by unknown tenants
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Callable, Coroutine
from typing import Any

from tenant_guard.config import settings
from tenant_guard.logging_config import configure_logging
from tenant_guard.migration import (
    backfill_tenant_id,
    ensure_tenant_indexes,
    migrate_database,
    prune_unknown_tenants,
    tenant_stats,
    verify_tenant_isolation,
)
from tenant_guard.storage.database import DocumentStore


def get_store() -> DocumentStore:
    """Create a DocumentStore for CLI operations.

    Uses the same MongoDB settings as the app.
    """
    return DocumentStore.from_settings(settings)


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _unique_spec(value: str) -> tuple[str, list[str]]:
    """Parse ``collection:field,field`` into its collection and fields."""
    collection, sep, fields = value.partition(":")
    parsed = _split_csv(fields)
    if not sep or not collection.strip() or not parsed:
        raise argparse.ArgumentTypeError(
            f"expected collection:field[,field...], got {value!r}"
        )
    return collection.strip(), parsed


def _unique_fields(specs: list[tuple[str, list[str]]] | None) -> dict[str, list[str]]:
    unique: dict[str, list[str]] = {}
    for collection, fields in specs or []:
        unique.setdefault(collection, []).extend(fields)
    return unique


async def backfill(args: argparse.Namespace) -> None:
    """Backfill tenantId in one collection."""
    async with get_store() as store:
        result = await backfill_tenant_id(store.database, args.collection, args.tenant)
    print(
        f"Backfilled {result.collection}: "
        f"matched={result.matched} modified={result.modified}"
    )


async def create_indexes(args: argparse.Namespace) -> None:
    """Create tenant indexes on one collection."""
    unique = _split_csv(args.unique)
    async with get_store() as store:
        names = await ensure_tenant_indexes(store.database, args.collection, unique)
    print(f"Indexes on {args.collection}:")
    for name in names:
        print(f"  - {name}")


async def migrate(args: argparse.Namespace) -> None:
    """Backfill and index every collection."""
    async with get_store() as store:
        report = await migrate_database(
            store.database, args.tenant, unique_fields=_unique_fields(args.unique)
        )

    print("Migration summary:")
    print(f"  Collections processed: {report.collections_processed}")
    print(f"  Documents matched:     {report.documents_matched}")
    print(f"  Documents modified:    {report.documents_modified}")
    print(f"  Errors:                {len(report.errors)}")
    for error in report.errors:
        print(f"   - {error.collection}: {error.error}", file=sys.stderr)
    if not report.success:
        sys.exit(1)


async def verify(_args: argparse.Namespace) -> None:
    """Audit every collection for tenant compliance."""
    async with get_store() as store:
        report = await verify_tenant_isolation(store.database)

    if report.success:
        print(f"All {report.collections_checked} collections are tenant-scoped.")
        return

    print(f"Isolation issues ({len(report.issues)}):", file=sys.stderr)
    for issue in report.issues:
        print(f"  - {issue.describe()}", file=sys.stderr)
    sys.exit(1)


async def stats(args: argparse.Namespace) -> None:
    """Document counts per collection for one tenant."""
    async with get_store() as store:
        result = await tenant_stats(store.database, args.tenant)

    print(f"Tenant: {result.tenant_id}")
    print(f"Total documents: {result.total_documents}")
    for name, count in result.collections:
        print(f"  - {name}: {count}")


async def prune(args: argparse.Namespace) -> None:
    """Report or delete documents whose tenant is not in --known."""
    known = _split_csv(args.known)
    if not known:
        print("--known must list at least one tenant", file=sys.stderr)
        sys.exit(1)

    async with get_store() as store:
        affected = await prune_unknown_tenants(
            store.database, known, dry_run=not args.apply
        )

    if not affected:
        print("No documents with unknown tenants.")
        return

    verb = "Deleted" if args.apply else "Would delete"
    for name, count in affected.items():
        print(f"  {verb} {count} from {name}")
    if not args.apply:
        print("Re-run with --apply to delete.")


def main() -> None:
    """Parse arguments and dispatch to command handler."""
    parser = argparse.ArgumentParser(description="Tenant migration and audit CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # backfill
    p = sub.add_parser("backfill", help="Backfill tenantId in a collection")
    p.add_argument("--collection", required=True, help="Collection name")
    p.add_argument(
        "--tenant", default=settings.default_tenant_id, help="Tenant to assign"
    )

    # create-indexes
    p = sub.add_parser("create-indexes", help="Create tenant indexes")
    p.add_argument("--collection", required=True, help="Collection name")
    p.add_argument(
        "--unique", default="", help="Comma-separated fields unique per tenant"
    )

    # migrate
    p = sub.add_parser("migrate", help="Backfill and index every collection")
    p.add_argument(
        "--tenant", default=settings.default_tenant_id, help="Tenant to assign"
    )
    p.add_argument(
        "--unique",
        action="append",
        type=_unique_spec,
        default=[],
        metavar="COLLECTION:FIELD[,FIELD]",
        help="Fields unique per tenant on a collection (repeatable)",
    )

    # verify
    sub.add_parser("verify", help="Audit tenant isolation")

    # stats
    p = sub.add_parser("stats", help="Document counts for a tenant")
    p.add_argument("--tenant", required=True, help="Tenant id")

    # prune
    p = sub.add_parser("prune", help="Find documents owned by unknown tenants")
    p.add_argument("--known", required=True, help="Comma-separated known tenant ids")
    p.add_argument("--apply", action="store_true", help="Delete instead of report")

    args = parser.parse_args()
    configure_logging(environment=str(settings.environment), log_level="WARNING")
    commands: dict[
        str, Callable[[argparse.Namespace], Coroutine[Any, Any, None]]
    ] = {
        "backfill": backfill,
        "create-indexes": create_indexes,
        "migrate": migrate,
        "verify": verify,
        "stats": stats,
        "prune": prune,
    }
    asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    main()
