"""Session verification consumed by tenant resolution."""

from tenant_guard.auth.session import InvalidSessionError, SessionDecoder

__all__ = ["InvalidSessionError", "SessionDecoder"]
