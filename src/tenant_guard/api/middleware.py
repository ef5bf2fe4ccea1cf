"""HTTP middleware: request logging and tenant context activation."""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from tenant_guard.context import tenant_scope
from tenant_guard.resolver import TenantResolver

logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with method, path, status code, and latency."""

    SKIP_PATHS: frozenset[str] = frozenset(
        {"/health", "/docs", "/openapi.json", "/redoc"}
    )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request and log timing information."""
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - start) * 1000)

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        return response


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Resolve the caller's tenant and make it ambient for the request.

    Everything downstream (route handlers, repositories, scoped
    collections) reads it through ``tenant_guard.context.current()``.
    """

    def __init__(self, app: ASGIApp, resolver: TenantResolver) -> None:
        super().__init__(app)
        self._resolver = resolver

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        context = self._resolver.resolve(request)
        request.state.tenant = context
        with tenant_scope(context):
            return await call_next(request)
