"""Tenant identifier resolution from competing request signals.

Priority, highest first:

1. verified session claims (``academyId``, then ``tenantId``)
2. trusted tenant header (``X-Tenant-ID``)
3. subdomain of the request host
4. configured default tenant

Resolution never fails: with no usable signal the default tenant wins.
"""

from __future__ import annotations

import ipaddress
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from starlette.requests import Request

from tenant_guard.auth.session import InvalidSessionError, SessionDecoder
from tenant_guard.config import Settings
from tenant_guard.context import TenantContext

logger = structlog.get_logger()

SESSION_TENANT_CLAIMS: tuple[str, ...] = ("academyId", "tenantId")
SESSION_NAME_CLAIMS: tuple[str, ...] = ("academyName", "tenantName")


@dataclass(frozen=True)
class TenantSignals:
    """Raw inputs for tenant resolution, any of which may be absent."""

    session_claims: Mapping[str, Any] | None = None
    header_tenant_id: str | None = None
    host: str | None = None


def _first_string_claim(
    claims: Mapping[str, Any] | None, names: tuple[str, ...]
) -> str | None:
    if not claims:
        return None
    for name in names:
        value = claims.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def tenant_from_claims(claims: Mapping[str, Any] | None) -> str | None:
    """Return the academy identifier, falling back to ``tenantId``."""
    return _first_string_claim(claims, SESSION_TENANT_CLAIMS)


def strip_port(host: str) -> str:
    """Drop a trailing ``:port`` (IPv6 literals keep their brackets removed)."""
    host = host.strip().lower()
    if host.startswith("["):
        return host[1:].split("]", 1)[0]
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def tenant_from_host(host: str | None, settings: Settings) -> str | None:
    """Derive a tenant from the request host.

    Local hosts map to the configured default; ``acme.app.example.com``
    maps to ``acme``; reserved first labels (``www``, ``app``) and
    hosts with two labels or fewer yield None. So do IP addresses.
    """
    if not host:
        return None
    hostname = strip_port(host)
    if not hostname:
        return None
    if hostname in settings.local_hostnames or hostname.endswith(".localhost"):
        return settings.default_tenant_id
    if is_ip_literal(hostname):
        return None

    labels = hostname.split(".")
    if len(labels) > 2:
        candidate = labels[0]
        if candidate and candidate not in settings.reserved_subdomains:
            return candidate
    return None


def resolve_tenant_id(signals: TenantSignals, settings: Settings) -> str:
    """Pick the tenant identifier from *signals* in strict priority order."""
    session_tenant = tenant_from_claims(signals.session_claims)
    if session_tenant:
        return session_tenant

    if signals.header_tenant_id and signals.header_tenant_id.strip():
        return signals.header_tenant_id.strip()

    host_tenant = tenant_from_host(signals.host, settings)
    if host_tenant:
        return host_tenant

    return settings.default_tenant_id


class TenantResolver:
    """Build a TenantContext from an inbound HTTP request."""

    def __init__(self, settings: Settings, session_decoder: SessionDecoder) -> None:
        self._settings = settings
        self._session_decoder = session_decoder
        if settings.is_prod and settings.internal_token is None:
            logger.warning(
                "tenant_header_unauthenticated",
                header=settings.tenant_header,
                token_header=settings.internal_token_header,
            )

    def resolve(self, request: Request) -> TenantContext:
        claims = self._session_claims(request)
        signals = TenantSignals(
            session_claims=claims,
            header_tenant_id=self._trusted_header(request),
            host=request.headers.get("host"),
        )
        tenant_id = resolve_tenant_id(signals, self._settings)

        subdomain = None
        if tenant_from_claims(claims) is None and signals.header_tenant_id is None:
            host_tenant = tenant_from_host(signals.host, self._settings)
            if host_tenant and host_tenant != self._settings.default_tenant_id:
                subdomain = host_tenant

        return TenantContext(
            tenant_id=tenant_id,
            tenant_name=_first_string_claim(claims, SESSION_NAME_CLAIMS),
            subdomain=subdomain,
        )

    def _session_token(self, request: Request) -> str | None:
        authorization = request.headers.get("authorization", "")
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
        return request.cookies.get(self._settings.session_cookie_name)

    def _session_claims(self, request: Request) -> dict[str, Any] | None:
        token = self._session_token(request)
        if not token:
            return None
        try:
            return self._session_decoder.decode(token)
        except InvalidSessionError as e:
            logger.debug("session_rejected", reason=str(e))
            return None

    def _trusted_header(self, request: Request) -> str | None:
        value = request.headers.get(self._settings.tenant_header)
        if not value:
            return None
        expected = self._settings.internal_token
        if expected is None:
            return value
        presented = request.headers.get(self._settings.internal_token_header, "")
        if secrets.compare_digest(
            presented.encode(), expected.get_secret_value().encode()
        ):
            return value
        logger.warning("untrusted_tenant_header", header=self._settings.tenant_header)
        return None
