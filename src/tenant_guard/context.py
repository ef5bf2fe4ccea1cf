"""Ambient tenant context for requests and background jobs.

The active :class:`TenantContext` lives in a ``ContextVar``, so it follows
the logical task across ``await`` points and is copied into tasks spawned
from inside the scope. Concurrent requests never see each other's value.

Usage::

    async def handler() -> list[dict]:
        return await courses.find({}).to_list()

    await activate(TenantContext(tenant_id="acme"), handler)

    with tenant_scope(TenantContext(tenant_id="acme")):
        ...
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import ParamSpec, TypeVar

import structlog

from tenant_guard.errors import MissingTenantContextError

P = ParamSpec("P")
R = TypeVar("R")


@dataclass(frozen=True)
class TenantContext:
    """Tenant identity for one request or job.

    Built once by the resolver and never mutated afterwards.
    """

    tenant_id: str
    tenant_name: str | None = None
    subdomain: str | None = None

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("tenant_id must not be empty")


_current_tenant: ContextVar[TenantContext | None] = ContextVar(
    "current_tenant", default=None
)


def current() -> TenantContext | None:
    """Return the active tenant context, or None outside any scope."""
    return _current_tenant.get()


def require_current(operation: str = "operation") -> TenantContext:
    """Return the active tenant context.

    Raises:
        MissingTenantContextError: if no scope is active.
    """
    ctx = _current_tenant.get()
    if ctx is None:
        raise MissingTenantContextError(operation)
    return ctx


@contextmanager
def tenant_scope(context: TenantContext) -> Iterator[TenantContext]:
    """Make *context* ambient for the body of the ``with`` block.

    The previous value (usually none) is restored on exit, including
    when the body raises. ``tenant_id`` is bound into structlog
    contextvars for the same extent.
    """
    token = _current_tenant.set(context)
    try:
        with structlog.contextvars.bound_contextvars(tenant_id=context.tenant_id):
            yield context
    finally:
        _current_tenant.reset(token)


async def activate(
    context: TenantContext,
    fn: Callable[P, Awaitable[R]],
    *args: P.args,
    **kwargs: P.kwargs,
) -> R:
    """Await ``fn(*args, **kwargs)`` with *context* ambient and return its result."""
    with tenant_scope(context):
        return await fn(*args, **kwargs)
