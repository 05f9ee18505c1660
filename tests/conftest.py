"""Shared fixtures: in-memory database, fake storage and an API client."""
from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from heritage import models
from heritage.api import app
from heritage.auth import AuthUser
from heritage.db import get_session
from heritage.deps import get_current_user, get_storage, require_admin
from heritage.storage import StorageClient, StorageError

USER_ID = "11111111-1111-1111-1111-111111111111"
OTHER_USER_ID = "22222222-2222-2222-2222-222222222222"


class FakeStorage:
    """In-memory stand-in for StorageClient."""

    base_url = "https://backend.test"

    def __init__(self, fail_paths: set[str] | None = None, fail_remove: bool = False) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.upload_calls: list[dict] = []
        self.removed: list[tuple[str, list[str]]] = []
        self.fail_paths = fail_paths or set()
        self.fail_remove = fail_remove

    async def upload(self, bucket, path, data, *, content_type="application/octet-stream", upsert=False, cache_control=None):
        self.upload_calls.append(
            {"bucket": bucket, "path": path, "content_type": content_type, "upsert": upsert, "cache_control": cache_control}
        )
        if path in self.fail_paths:
            raise StorageError(f"upload {bucket}/{path} failed (400): rejected")
        self.objects[(bucket, path)] = data
        return path

    async def remove(self, bucket, paths):
        if self.fail_remove:
            raise StorageError("remove failed (500): boom")
        self.removed.append((bucket, list(paths)))
        for path in paths:
            self.objects.pop((bucket, path), None)

    def public_url(self, bucket, path):
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"

    render_url = staticmethod(StorageClient.render_url)

    async def list(self, bucket, prefix="", *, limit=None, offset=0):
        folder = prefix.rstrip("/") + "/" if prefix else ""
        names = sorted(
            path[len(folder):]
            for (b, path), data in self.objects.items()
            if b == bucket and path.startswith(folder) and "/" not in path[len(folder):]
        )
        return [
            {"name": n, "id": n, "metadata": {"size": len(self.objects[(bucket, folder + n)])}}
            for n in names
        ][offset : offset + (limit or 100)]


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_maker) -> AsyncIterator[AsyncSession]:
    async with session_maker() as s:
        yield s


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
async def site(session) -> models.Site:
    row = models.Site(slug="hue-citadel", title="Hue Citadel", is_published=True, latitude=16.4698, longitude=107.5786)
    session.add(row)
    await session.commit()
    return row


@pytest.fixture
async def api_client(session_maker, fake_storage) -> AsyncIterator[httpx.AsyncClient]:
    """API client with the database, storage and caller overridden."""

    async def _session() -> AsyncIterator[AsyncSession]:
        async with session_maker() as s:
            yield s

    user = AuthUser(id=USER_ID, email="admin@example.com")
    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_storage] = lambda: fake_storage
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[require_admin] = lambda: user

    async with httpx.AsyncClient() as upstream:
        app.state.http_client = upstream
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    app.dependency_overrides.clear()
