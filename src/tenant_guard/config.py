"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets (session signing key, internal caller token) use SecretStr
    to prevent accidental logging. ``default_tenant_id`` is the tenant
    every request or job falls back to when no other signal resolves one.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"
    # --- CORS ---
    cors_allowed_origins: list[str] = []
    cors_allow_credentials: bool = False
    cors_allowed_methods: list[str] = ["GET", "POST"]
    cors_allowed_headers: list[str] = ["Content-Type", "Authorization", "X-Tenant-ID"]

    # --- MongoDB ---
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "tenant_guard"
    mongodb_timeout_ms: int = 5000

    # --- Tenant resolution ---
    default_tenant_id: str = "default"
    tenant_header: str = "X-Tenant-ID"
    # When set, X-Tenant-ID is honoured only alongside a matching
    # X-Internal-Token header.
    internal_token_header: str = "X-Internal-Token"
    internal_token: SecretStr | None = None
    reserved_subdomains: list[str] = ["www", "app"]
    local_hostnames: list[str] = ["localhost", "127.0.0.1", "0.0.0.0", "::1"]

    # --- Session ---
    session_cookie_name: str = "session"
    session_secret: SecretStr = SecretStr("change-me")
    session_algorithms: list[str] = ["HS256"]

    # --- Storage interception ---
    # Off: aggregations without a tenant context run unscoped with a warning.
    strict_aggregations: bool = False

    # --- Redis / worker ---
    redis_url: str = "redis://localhost:6379/0"
    worker_max_jobs: int = 4
    worker_job_timeout: int = 3600
    worker_max_tries: int = 3

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from tenant_guard.config import get_settings
        settings = get_settings()

    Or for dependency injection in FastAPI::

        @app.get("/")
        def root(settings: Settings = Depends(get_settings)):
            ...
    """
    return Settings()


settings = get_settings()
