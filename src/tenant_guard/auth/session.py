"""Session credential verification.

Tokens are issued elsewhere; this module only verifies a signed session
JWT and hands its claims to the tenant resolver.
"""

from __future__ import annotations

from typing import Any

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError


class InvalidSessionError(Exception):
    """Raised when a session token cannot be verified."""


class SessionDecoder:
    """Verify HMAC-signed session JWTs and return their claims."""

    def __init__(self, secret: str, algorithms: list[str] | None = None) -> None:
        self._secret = secret
        self._algorithms = algorithms or ["HS256"]

    def decode(self, token: str) -> dict[str, Any]:
        """Verify *token* and return its claims.

        Raises:
            InvalidSessionError: malformed, badly signed or expired token.
        """
        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                options={"verify_aud": False},
            )
        except ExpiredSignatureError as e:
            raise InvalidSessionError("Session has expired") from e
        except JWTError as e:
            raise InvalidSessionError(f"Invalid session token: {e}") from e
        return claims
