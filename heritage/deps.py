"""FastAPI dependencies shared by the route handlers."""
from __future__ import annotations

import httpx
from fastapi import Cookie, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .auth import SESSION_COOKIE, AuthClient, AuthUser, extract_token
from .db import get_session
from .pipelines.records import OwnershipError
from .storage import StorageClient


def get_http_client(request: Request) -> httpx.AsyncClient:
    """The process-wide client opened in the app lifespan."""
    return request.app.state.http_client


def get_storage(client: httpx.AsyncClient = Depends(get_http_client)) -> StorageClient:
    return StorageClient(client)


def get_auth_client(client: httpx.AsyncClient = Depends(get_http_client)) -> AuthClient:
    return AuthClient(client)


async def get_current_user(
    authorization: str | None = Header(default=None),
    access_token: str | None = Cookie(default=None, alias=SESSION_COOKIE),
    auth: AuthClient = Depends(get_auth_client),
) -> AuthUser:
    return await auth.get_user(extract_token(authorization, access_token))


async def require_admin(
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> AuthUser:
    profile = await session.get(models.Profile, user.id)
    if profile is None or not profile.is_admin:
        raise OwnershipError("Admin access required")
    return user
