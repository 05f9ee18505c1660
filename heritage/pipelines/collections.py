"""Saved images and the photo collections (albums) built from them.

An image is identified by whichever of its gallery row id, storage path or
external URL the caller knows; every user saves an image at most once and
may file it into any number of their collections.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from heritage import models
from heritage.config import settings
from heritage.storage import StorageClient

from .records import RecordsError, ValidationError, commit, ensure_owner

logger = logging.getLogger(__name__)

COLLECTED_LIST_LIMIT = 200


@dataclass(frozen=True)
class ImageRef:
    """Identity plus display metadata of an image being saved."""
    site_image_id: str | None = None
    storage_path: str | None = None
    image_url: str | None = None
    site_id: str | None = None
    alt_text: str | None = None
    caption: str | None = None
    credit: str | None = None


def make_collect_key(image: ImageRef) -> str:
    """``id:<site image>|sp:<storage path>|url:<url>`` from the parts that are present."""
    parts = []
    if image.site_image_id:
        parts.append(f"id:{image.site_image_id}")
    if image.storage_path:
        parts.append(f"sp:{image.storage_path}")
    if image.image_url:
        parts.append(f"url:{image.image_url}")
    if not parts:
        raise ValidationError("An image needs a site image id, storage path or URL")
    return "|".join(parts)


def public_image_url(storage: StorageClient, row: models.CollectedImage) -> str | None:
    if row.storage_path:
        return storage.public_url(settings.storage.site_images_bucket, row.storage_path)
    return row.image_url


def collected_to_dict(storage: StorageClient, row: models.CollectedImage) -> dict[str, Any]:
    return {
        "id": row.id,
        "collect_key": row.collect_key,
        "site_id": row.site_id,
        "site_image_id": row.site_image_id,
        "storage_path": row.storage_path,
        "image_url": row.image_url,
        "alt_text": row.alt_text,
        "caption": row.caption,
        "credit": row.credit,
        "public_url": public_image_url(storage, row),
        "created_at": row.created_at,
    }


async def find_collected(session: AsyncSession, user_id: str, image: ImageRef) -> models.CollectedImage | None:
    """The caller's saved row matching any identity field of ``image``."""
    identity = []
    if image.site_image_id:
        identity.append(models.CollectedImage.site_image_id == image.site_image_id)
    if image.storage_path:
        identity.append(models.CollectedImage.storage_path == image.storage_path)
    if image.image_url:
        identity.append(models.CollectedImage.image_url == image.image_url)
    if not identity:
        return None
    result = await session.execute(
        select(models.CollectedImage)
        .where(models.CollectedImage.user_id == user_id, or_(*identity))
        .order_by(models.CollectedImage.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def ensure_collected(session: AsyncSession, user_id: str, image: ImageRef) -> models.CollectedImage:
    """Save ``image`` for the caller, or return the row already saved.

    A concurrent save of the same image loses the unique-key race; the
    winner's row is returned instead.
    """
    key = make_collect_key(image)
    existing = await find_collected(session, user_id, image)
    if existing is not None:
        return existing

    row = models.CollectedImage(
        user_id=user_id,
        collect_key=key,
        site_id=image.site_id,
        site_image_id=image.site_image_id,
        storage_path=image.storage_path,
        image_url=image.image_url,
        alt_text=image.alt_text,
        caption=image.caption,
        credit=image.credit,
    )
    session.add(row)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        existing = await find_collected(session, user_id, image)
        if existing is not None:
            return existing
        logger.error(f"Saving image {key} for {user_id} failed: {e}")
        raise RecordsError(f"Failed to save image: {e}") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Saving image {key} for {user_id} failed: {e}")
        raise RecordsError(f"Failed to save image: {e}") from e
    await session.refresh(row)
    return row


async def remove_collected(session: AsyncSession, user_id: str, image: ImageRef) -> bool:
    """Unsave an image, dropping it from every collection. Returns False if it was not saved."""
    row = await find_collected(session, user_id, image)
    if row is None:
        return False
    await session.execute(
        update(models.PhotoCollection)
        .where(models.PhotoCollection.cover_collected_id == row.id)
        .values(cover_collected_id=None)
    )
    await session.execute(delete(models.PhotoCollectionItem).where(models.PhotoCollectionItem.collected_id == row.id))
    await session.execute(delete(models.CollectedImage).where(models.CollectedImage.id == row.id))
    await commit(session, "remove saved image")
    return True


async def is_collected(session: AsyncSession, user_id: str, image: ImageRef) -> bool:
    return await find_collected(session, user_id, image) is not None


async def toggle_collected(session: AsyncSession, user_id: str, image: ImageRef) -> str:
    """Save or unsave; returns ``"added"`` or ``"removed"``."""
    if await remove_collected(session, user_id, image):
        return "removed"
    await ensure_collected(session, user_id, image)
    return "added"


async def list_collected(
    session: AsyncSession,
    storage: StorageClient,
    user_id: str,
    limit: int = COLLECTED_LIST_LIMIT,
) -> list[dict[str, Any]]:
    result = await session.execute(
        select(models.CollectedImage)
        .where(models.CollectedImage.user_id == user_id)
        .order_by(models.CollectedImage.created_at.desc())
        .limit(limit)
    )
    return [collected_to_dict(storage, row) for row in result.scalars().all()]


# Photo collections
def photo_collection_to_dict(collection: models.PhotoCollection) -> dict[str, Any]:
    return {
        "id": collection.id,
        "user_id": collection.user_id,
        "name": collection.name,
        "is_public": collection.is_public,
        "cover_collected_id": collection.cover_collected_id,
        "created_at": collection.created_at,
    }


async def _owned_collection(session: AsyncSession, collection_id: str, user_id: str) -> models.PhotoCollection:
    collection = await session.get(models.PhotoCollection, collection_id)
    ensure_owner(collection, user_id, "collection")
    return collection


async def list_photo_collections(
    session: AsyncSession, storage: StorageClient, user_id: str
) -> list[dict[str, Any]]:
    """The caller's collections with item counts and a resolved cover URL."""
    counts = (
        select(models.PhotoCollectionItem.collection_id, func.count().label("n"))
        .group_by(models.PhotoCollectionItem.collection_id)
        .subquery()
    )
    rows = await session.execute(
        select(models.PhotoCollection, func.coalesce(counts.c.n, 0), models.CollectedImage)
        .select_from(models.PhotoCollection)
        .outerjoin(counts, counts.c.collection_id == models.PhotoCollection.id)
        .outerjoin(models.CollectedImage, models.CollectedImage.id == models.PhotoCollection.cover_collected_id)
        .where(models.PhotoCollection.user_id == user_id)
        .order_by(models.PhotoCollection.created_at.asc())
    )
    out = []
    for collection, count, cover in rows.all():
        entry = photo_collection_to_dict(collection)
        entry["item_count"] = count
        entry["cover_url"] = public_image_url(storage, cover) if cover is not None else None
        out.append(entry)
    return out


async def create_photo_collection(
    session: AsyncSession, user_id: str, name: str, is_public: bool = False
) -> models.PhotoCollection:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Collection name is required")
    collection = models.PhotoCollection(user_id=user_id, name=name, is_public=bool(is_public))
    session.add(collection)
    await commit(session, "create photo collection")
    await session.refresh(collection)
    logger.info(f"Created photo collection {collection.id} for user {user_id}")
    return collection


async def delete_photo_collection(session: AsyncSession, user_id: str, collection_id: str) -> None:
    await _owned_collection(session, collection_id, user_id)
    await session.execute(
        delete(models.PhotoCollectionItem).where(models.PhotoCollectionItem.collection_id == collection_id)
    )
    await session.execute(delete(models.PhotoCollection).where(models.PhotoCollection.id == collection_id))
    await commit(session, "delete photo collection")


async def collections_containing(session: AsyncSession, user_id: str, image: ImageRef) -> list[str]:
    """Ids of the caller's collections that hold ``image``."""
    row = await find_collected(session, user_id, image)
    if row is None:
        return []
    result = await session.execute(
        select(models.PhotoCollectionItem.collection_id)
        .where(models.PhotoCollectionItem.collected_id == row.id)
        .order_by(models.PhotoCollectionItem.created_at.asc())
    )
    return list(result.scalars().all())


async def add_to_collection(
    session: AsyncSession, user_id: str, collection_id: str, image: ImageRef
) -> models.PhotoCollectionItem:
    """Save the image if needed and file it into the collection; repeat adds are no-ops."""
    await _owned_collection(session, collection_id, user_id)
    collected = await ensure_collected(session, user_id, image)
    result = await session.execute(
        select(models.PhotoCollectionItem).where(
            models.PhotoCollectionItem.collection_id == collection_id,
            models.PhotoCollectionItem.collected_id == collected.id,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing
    item = models.PhotoCollectionItem(collection_id=collection_id, collected_id=collected.id, user_id=user_id)
    session.add(item)
    await commit(session, "add image to collection")
    await session.refresh(item)
    return item


async def remove_from_collection(session: AsyncSession, user_id: str, collection_id: str, image: ImageRef) -> None:
    """Take the image out of one collection; it stays saved."""
    await _owned_collection(session, collection_id, user_id)
    collected = await find_collected(session, user_id, image)
    if collected is None:
        return
    await session.execute(
        delete(models.PhotoCollectionItem).where(
            models.PhotoCollectionItem.collection_id == collection_id,
            models.PhotoCollectionItem.collected_id == collected.id,
        )
    )
    await commit(session, "remove image from collection")


async def list_collection_items(
    session: AsyncSession, storage: StorageClient, user_id: str, collection_id: str
) -> list[dict[str, Any]]:
    """Items in display order: explicit ``sort_order`` first, then newest."""
    await _owned_collection(session, collection_id, user_id)
    rows = await session.execute(
        select(models.PhotoCollectionItem, models.CollectedImage)
        .join(models.CollectedImage, models.CollectedImage.id == models.PhotoCollectionItem.collected_id)
        .where(models.PhotoCollectionItem.collection_id == collection_id)
        .order_by(
            models.PhotoCollectionItem.sort_order.is_(None),
            models.PhotoCollectionItem.sort_order.asc(),
            models.PhotoCollectionItem.created_at.desc(),
        )
    )
    return [
        {
            "id": item.id,
            "collected_id": item.collected_id,
            "sort_order": item.sort_order,
            "site_id": image.site_id,
            "public_url": public_image_url(storage, image),
            "alt_text": image.alt_text,
            "caption": image.caption,
            "credit": image.credit,
        }
        for item, image in rows.all()
    ]


async def reorder_collection_items(session: AsyncSession, user_id: str, collection_id: str, item_ids: list[str]) -> None:
    """Persist a drag-and-drop order: ``item_ids[i]`` gets ``sort_order = i``."""
    await _owned_collection(session, collection_id, user_id)
    if not item_ids:
        return
    result = await session.execute(
        select(models.PhotoCollectionItem).where(models.PhotoCollectionItem.id.in_(item_ids))
    )
    items = {i.id: i for i in result.scalars().all()}
    for index, item_id in enumerate(item_ids):
        item = items.get(item_id)
        if item is None or item.collection_id != collection_id:
            raise ValidationError(f"Item {item_id} is not in this collection")
        item.sort_order = index
    await commit(session, "reorder collection items")


async def set_collection_cover(session: AsyncSession, user_id: str, collection_id: str, collected_id: str) -> None:
    """Use one of the collection's own images as its cover."""
    collection = await _owned_collection(session, collection_id, user_id)
    result = await session.execute(
        select(func.count())
        .select_from(models.PhotoCollectionItem)
        .where(
            models.PhotoCollectionItem.collection_id == collection_id,
            models.PhotoCollectionItem.collected_id == collected_id,
        )
    )
    if not result.scalar_one():
        raise ValidationError("Cover image must belong to the collection")
    collection.cover_collected_id = collected_id
    await commit(session, "set collection cover")
