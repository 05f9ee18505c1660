"""Gallery uploads: store the original, then every downscaled JPEG variant."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from heritage.config import settings
from heritage.images import VARIANTS, ImageProcessingError, make_variant, variant_path, variant_public_url
from heritage.storage import StorageClient, StorageError

logger = logging.getLogger(__name__)


class GalleryUploadError(Exception):
    """Raised when the original or any variant fails to process or upload."""
    pass


@dataclass
class GalleryUpload:
    """Result of a gallery upload."""
    site_id: str
    key: str
    paths: dict[str, str] = field(default_factory=dict)


async def upload_with_variants(
    storage: StorageClient,
    file_bytes: bytes,
    content_type: str | None,
    site_id: str,
    key: str,
) -> GalleryUpload:
    """Upload an image and its thumb/sm/md/lg/hero variants.

    Args:
        storage: Storage client
        file_bytes: Original image bytes, uploaded unchanged
        content_type: MIME type of the original
        site_id: Listing the image belongs to
        key: Storage key of the original, e.g. ``gallery/<site>/<ts>-name.jpg``

    Returns:
        GalleryUpload with the path of every object written

    Raises:
        GalleryUploadError: Naming the step that failed
    """
    bucket = settings.storage.site_images_bucket
    result = GalleryUpload(site_id=site_id, key=key)

    try:
        await storage.upload(
            bucket,
            key,
            file_bytes,
            content_type=content_type or "image/jpeg",
            upsert=True,
            cache_control=settings.storage.cache_control,
        )
    except StorageError as e:
        logger.error(f"Original upload failed for {key}: {e}")
        raise GalleryUploadError(f"Upload failed for original ({key}): {e}") from e
    result.paths["original"] = key

    for variant in VARIANTS:
        target = settings.images.variant_long_edges[variant]
        try:
            output = make_variant(file_bytes, target)
        except ImageProcessingError as e:
            logger.error(f"Resize failed for variant {variant} of {key}: {e}")
            raise GalleryUploadError(f"Resize failed for {variant}: {e}") from e

        path = variant_path(key, variant)
        try:
            await storage.upload(
                bucket,
                path,
                output,
                content_type="image/jpeg",
                upsert=True,
                cache_control=settings.storage.cache_control,
            )
        except StorageError as e:
            logger.error(f"Variant upload failed for {variant} ({path}): {e}")
            raise GalleryUploadError(f"Upload failed for {variant} ({path}): {e}") from e
        result.paths[variant] = path

    logger.info(f"Uploaded gallery image {key} for site {site_id} with {len(VARIANTS)} variants")
    return result


def _is_variant(name: str) -> bool:
    stem = name.rpartition(".")[0] or name
    return any(stem.endswith(f"_{v}") for v in VARIANTS)


async def list_site_images(storage: StorageClient, site_id: str) -> list[dict]:
    """Originals stored under ``gallery/<site_id>/`` for the admin gallery manager.

    Variants and folder placeholders are skipped. Each entry carries a small
    preview from the render endpoint and the public thumb variant URL.
    """
    bucket = settings.storage.site_images_bucket
    folder = f"gallery/{site_id}"
    entries = await storage.list(bucket, folder)

    out = []
    for entry in entries:
        name = entry.get("name") or ""
        if not name or name.startswith(".") or entry.get("id") is None or _is_variant(name):
            continue
        key = f"{folder}/{name}"
        public = storage.public_url(bucket, key)
        out.append(
            {
                "key": key,
                "size": (entry.get("metadata") or {}).get("size"),
                "public_url": public,
                "preview_url": storage.render_url(public, settings.images.admin_preview_width),
                "thumb_url": variant_public_url(public, "thumb"),
            }
        )
    return out
