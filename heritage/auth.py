"""Session lookup against the hosted auth service."""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from .config import settings

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sb-access-token"


class AuthError(Exception):
    """Raised when the caller is not authenticated."""
    pass


@dataclass
class AuthUser:
    """Authenticated caller."""
    id: str
    email: str | None = None


def extract_token(authorization: str | None, cookie_token: str | None) -> str | None:
    """Prefer an ``Authorization: Bearer`` header, fall back to the session cookie."""
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    return cookie_token or None


class AuthClient:
    """HTTP client for the auth user endpoint."""

    def __init__(self, http_client: httpx.AsyncClient, *, base_url: str | None = None) -> None:
        self._client = http_client
        self.base_url = (base_url or settings.backend.url).rstrip("/")

    async def get_user(self, token: str | None) -> AuthUser:
        """Resolve an access token into the user it belongs to.

        Raises:
            AuthError: If the token is missing, invalid or the service is unreachable
        """
        if not token:
            raise AuthError("Not authenticated")
        try:
            response = await self._client.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": settings.backend.anon_key, "Authorization": f"Bearer {token}"},
                timeout=settings.backend.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Auth lookup failed: {e}")
            raise AuthError("Auth service unavailable") from e

        if response.status_code in (401, 403):
            raise AuthError("Not authenticated")
        if not response.is_success:
            raise AuthError(f"Auth lookup failed ({response.status_code})")

        data = response.json()
        if not isinstance(data, dict) or not data.get("id"):
            raise AuthError("Not authenticated")
        return AuthUser(id=str(data["id"]), email=data.get("email"))
