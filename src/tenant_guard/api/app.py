"""FastAPI application with lifespan management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from tenant_guard.api.deps import get_tenant_context
from tenant_guard.api.middleware import RequestLoggingMiddleware, TenantContextMiddleware
from tenant_guard.auth.session import SessionDecoder
from tenant_guard.config import settings
from tenant_guard.context import TenantContext
from tenant_guard.errors import MissingTenantContextError
from tenant_guard.logging_config import configure_logging
from tenant_guard.resolver import TenantResolver
from tenant_guard.storage.database import DocumentStore

logger = structlog.get_logger()

HEALTH_CHECK_TIMEOUT = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown.

    Startup:
        - Configure logging.
        - Open the DocumentStore (one connection pool per process).
    Shutdown:
        - Close the DocumentStore.
    """
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
    )
    store = DocumentStore.from_settings(settings)
    async with store:
        app.state.document_store = store
        logger.info("app_started", environment=str(settings.environment))
        yield
    logger.info("app_stopped")


app = FastAPI(
    title="Tenant Guard",
    description="Tenant isolation layer for a shared document store",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.is_dev,
)

resolver = TenantResolver(
    settings,
    SessionDecoder(
        settings.session_secret.get_secret_value(),
        settings.session_algorithms,
    ),
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TenantContextMiddleware, resolver=resolver)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)


@app.get("/health")
async def health() -> JSONResponse:
    """Deep health check: verifies document store connectivity."""
    checks: dict[str, str] = {}
    overall = "ok"

    try:
        store: DocumentStore = app.state.document_store
        await asyncio.wait_for(store.ping(), timeout=HEALTH_CHECK_TIMEOUT)
        checks["mongodb"] = "ok"
    except (TimeoutError, PyMongoError) as e:
        logger.warning("health_check_mongodb_error", error=type(e).__name__)
        checks["mongodb"] = f"error: {type(e).__name__}"
        overall = "degraded"
    except Exception as e:
        logger.error("health_check_mongodb_unexpected", error=str(e), exc_info=True)
        checks["mongodb"] = f"error: {type(e).__name__}"
        overall = "degraded"

    status_code = 200 if overall == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall,
            "checks": checks,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
        },
    )


_tenant_dep = Depends(get_tenant_context)


@app.get("/api/v1/tenant")
async def current_tenant(tenant: TenantContext = _tenant_dep) -> dict[str, str | None]:
    """Tenant the caller's requests are scoped to."""
    return {
        "tenant_id": tenant.tenant_id,
        "tenant_name": tenant.tenant_name,
        "subdomain": tenant.subdomain,
    }


@app.exception_handler(MissingTenantContextError)
async def missing_tenant_context_handler(
    request: Request,
    exc: MissingTenantContextError,
) -> JSONResponse:
    """Unscoped data access is an authorization failure, not a server error."""
    logger.warning(
        "missing_tenant_context",
        operation=exc.operation,
        collection=exc.collection,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=401,
        content={"detail": "Tenant context required. Please sign in again."},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
