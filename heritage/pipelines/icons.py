"""Icon library: sanitized inline SVG in the database, original file in storage."""
from __future__ import annotations

import logging
import time

from bs4 import BeautifulSoup
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from heritage import models
from heritage.config import settings
from heritage.storage import StorageClient, StorageError

from .records import NotFoundError, RecordsError, ValidationError, commit
from .sites import listing_slugify

logger = logging.getLogger(__name__)

_UNSAFE_TAGS = ["script", "foreignObject", "iframe", "object", "embed"]
_COLOR_ATTRS = ("fill", "stroke", "style")


def process_svg(raw: str) -> str:
    """Strip active content and fixed colours so the icon inherits ``currentColor``.

    Raises:
        ValidationError: If the document has no ``<svg>`` root
    """
    soup = BeautifulSoup(raw, "xml")
    svg = soup.find("svg")
    if svg is None:
        raise ValidationError("Invalid SVG file: could not find <svg> element.")

    for tag in svg.find_all(_UNSAFE_TAGS):
        tag.decompose()
    for el in [svg, *svg.find_all(True)]:
        for attr in list(el.attrs):
            if attr.lower().startswith("on") or (attr.endswith("href") and str(el[attr]).startswith("javascript:")):
                del el[attr]

    svg["width"] = "1em"
    svg["height"] = "1em"
    svg["fill"] = "currentColor"
    for el in svg.find_all(True):
        for attr in _COLOR_ATTRS:
            if attr in el.attrs:
                del el[attr]
    return str(svg)


def parse_tags(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else value
    return [t.strip() for t in items if t and t.strip()]


def icon_to_dict(icon: models.Icon) -> dict:
    return {
        "id": icon.id,
        "name": icon.name,
        "tags": icon.tags,
        "svg_content": icon.svg_content,
        "storage_path": icon.storage_path,
        "created_at": icon.created_at,
    }


async def list_icons(session: AsyncSession, query: str | None = None) -> list[models.Icon]:
    result = await session.execute(select(models.Icon).order_by(models.Icon.name))
    icons = list(result.scalars().all())
    q = (query or "").strip().lower()
    if not q:
        return icons
    return [i for i in icons if q in i.name.lower() or any(q in t.lower() for t in i.tags or [])]


async def create_icon(
    session: AsyncSession,
    storage: StorageClient,
    name: str,
    raw_svg: str,
    tags: str | list[str] | None = None,
) -> models.Icon:
    """Upload the original SVG, then insert the sanitized icon row.

    A failed insert removes the just-uploaded object.
    """
    slug = listing_slugify(name or "")
    if not slug:
        raise ValidationError("Icon name is required")
    svg_content = process_svg(raw_svg)

    bucket = settings.storage.icons_bucket
    path = f"{slug}-{int(time.time() * 1000)}.svg"
    await storage.upload(bucket, path, raw_svg.encode("utf-8"), content_type="image/svg+xml")

    icon = models.Icon(name=slug, tags=parse_tags(tags), svg_content=svg_content, storage_path=path)
    session.add(icon)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Icon insert failed for {slug}, removing {path}: {e}")
        try:
            await storage.remove(bucket, [path])
        except StorageError as cleanup:
            logger.warning(f"Orphaned icon upload {path} could not be removed: {cleanup}")
        raise RecordsError(f"Failed to save icon {slug}: {e}") from e

    await session.refresh(icon)
    logger.info(f"Created icon {slug}")
    return icon


async def delete_icon(session: AsyncSession, storage: StorageClient, icon_id: str) -> None:
    icon = await session.get(models.Icon, icon_id)
    if icon is None:
        raise NotFoundError("Icon not found")
    path = icon.storage_path
    await session.delete(icon)
    await commit(session, "delete icon")

    if path:
        try:
            await storage.remove(settings.storage.icons_bucket, [path])
        except StorageError as e:
            logger.warning(f"Icon {icon_id} row removed but storage delete failed: {e}")
