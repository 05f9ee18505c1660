"""Image transforms for the proxy endpoint and gallery variants.

Uses Pillow; every output is a baseline JPEG with EXIF orientation applied.
"""
from __future__ import annotations

import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import settings

logger = logging.getLogger(__name__)

VARIANTS = ("thumb", "sm", "md", "lg", "hero")


class ImageProcessingError(Exception):
    """Raised when an image cannot be decoded, validated or encoded."""
    pass


def clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError(f"Cannot decode image: {e}") from e
    return ImageOps.exif_transpose(img)


def _to_jpeg(img: Image.Image, quality: int) -> bytes:
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


def proxy_resize(data: bytes, width: int | None = None, quality: int | None = None) -> bytes:
    """Downscale to a clamped width and re-encode as JPEG.

    Args:
        data: Source image bytes
        width: Requested width, clamped to the proxy bounds; never enlarges
        quality: Requested JPEG quality, clamped to the proxy bounds

    Returns:
        JPEG bytes

    Raises:
        ImageProcessingError: If the image cannot be decoded
    """
    cfg = settings.images
    w = clamp(width if width is not None else cfg.proxy_default_width, cfg.proxy_min_width, cfg.proxy_max_width)
    q = clamp(
        quality if quality is not None else cfg.proxy_default_quality,
        cfg.proxy_min_quality,
        cfg.proxy_max_quality,
    )

    img = _open(data)
    if img.width > w:
        h = max(1, round(img.height * w / img.width))
        img = img.resize((w, h), Image.LANCZOS)
    return _to_jpeg(img, q)


def make_variant(data: bytes, long_edge: int) -> bytes:
    """Fit inside ``long_edge`` x ``long_edge`` without enlarging."""
    img = _open(data)
    if max(img.size) > long_edge:
        img.thumbnail((long_edge, long_edge), Image.LANCZOS)
    return _to_jpeg(img, settings.images.variant_quality)


def variant_path(key: str, variant: str) -> str:
    """``gallery/1/photo.jpg`` -> ``gallery/1/photo_md.jpg``."""
    stem, dot, ext = key.rpartition(".")
    if not dot or "/" in ext:
        return f"{key}_{variant}"
    return f"{stem}_{variant}.{ext}"


def assert_acceptable(content_type: str | None, size: int) -> None:
    cfg = settings.images
    if (content_type or "").lower() not in cfg.allowed_mime:
        raise ImageProcessingError(f"Unsupported image type: {content_type}")
    if size > cfg.max_input_bytes:
        raise ImageProcessingError(f"Image too large: {size} bytes (max {cfg.max_input_bytes})")


def variant_public_url(public_url: str, variant: str) -> str:
    """Public URL of a variant, given the public URL of the original."""
    base, sep, query = public_url.partition("?")
    return variant_path(base, variant) + (sep + query if sep else "")
