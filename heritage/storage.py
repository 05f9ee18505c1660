"""Object storage client for the hosted backend.

Thin httpx wrapper over the storage REST API: upload, remove, list and
public/render URL helpers. Uploads retry transient failures.
"""
from __future__ import annotations

import logging
from urllib.parse import quote, urlencode

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a storage operation fails."""
    pass


class TransientStorageError(StorageError):
    """Network failure or 5xx answer; safe to retry."""
    pass


def _raise_for_storage(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    detail = response.text[:200]
    if response.status_code >= 500:
        raise TransientStorageError(f"{action} failed ({response.status_code}): {detail}")
    raise StorageError(f"{action} failed ({response.status_code}): {detail}")


class StorageClient:
    """HTTP client for the hosted storage API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        base_url: str | None = None,
        key: str | None = None,
    ) -> None:
        """Initialize with shared HTTP client.

        Args:
            http_client: Shared httpx AsyncClient instance
            base_url: Backend URL (defaults to ``BACKEND_URL``)
            key: API key sent as bearer; the service-role key by default
        """
        self._client = http_client
        self.base_url = (base_url or settings.backend.url).rstrip("/")
        self._key = key if key is not None else (settings.backend.service_role_key or settings.backend.anon_key)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._key}", "apikey": self._key}

    def object_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{bucket}/{quote(path)}"

    @retry(
        retry=retry_if_exception_type(TransientStorageError),
        stop=stop_after_attempt(settings.storage.upload_attempts),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
        cache_control: str | None = None,
    ) -> str:
        """Upload bytes to ``bucket/path`` and return the stored path.

        Raises:
            StorageError: On a non-retryable failure, or after the last retry
        """
        headers = {
            **self._headers(),
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
            "cache-control": f"max-age={cache_control or settings.storage.cache_control}",
        }
        try:
            response = await self._client.post(
                self.object_url(bucket, path),
                content=data,
                headers=headers,
                timeout=settings.backend.timeout_seconds,
            )
        except httpx.TransportError as e:
            raise TransientStorageError(f"upload {bucket}/{path} failed: {e}") from e
        _raise_for_storage(response, f"upload {bucket}/{path}")
        logger.debug(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return path

    async def remove(self, bucket: str, paths: list[str]) -> None:
        if not paths:
            return
        try:
            response = await self._client.request(
                "DELETE",
                f"{self.base_url}/storage/v1/object/{bucket}",
                json={"prefixes": paths},
                headers=self._headers(),
                timeout=settings.backend.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise StorageError(f"remove from {bucket} failed: {e}") from e
        _raise_for_storage(response, f"remove from {bucket}")
        logger.info(f"Removed {len(paths)} objects from {bucket}")

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    async def list(self, bucket: str, prefix: str = "", *, limit: int | None = None, offset: int = 0) -> list[dict]:
        """Objects directly under ``prefix``, sorted by name."""
        try:
            response = await self._client.post(
                f"{self.base_url}/storage/v1/object/list/{bucket}",
                json={
                    "prefix": prefix,
                    "limit": limit or settings.storage.list_page_size,
                    "offset": offset,
                    "sortBy": {"column": "name", "order": "asc"},
                },
                headers=self._headers(),
                timeout=settings.backend.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise StorageError(f"list {bucket}/{prefix} failed: {e}") from e
        _raise_for_storage(response, f"list {bucket}/{prefix}")
        return response.json()

    @staticmethod
    def render_url(public_url: str, width: int, quality: int = 75) -> str:
        """Rewrite a public object URL into the on-the-fly image render endpoint."""
        base = public_url.replace("/storage/v1/object/public/", "/storage/v1/render/image/public/", 1)
        sep = "&" if "?" in base else "?"
        return f"{base}{sep}{urlencode({'width': width, 'quality': quality})}"
