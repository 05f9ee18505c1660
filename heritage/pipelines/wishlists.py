"""Wishlists: named, per-user lists of sites to visit."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from heritage import models

from .records import NotFoundError, ValidationError, commit, ensure_owner, pick, reject_nulls, utcnow

logger = logging.getLogger(__name__)

WISHLIST_PATCH_FIELDS = ("name", "is_public", "cover_image_url", "notes")


def wishlist_to_dict(wishlist: models.Wishlist, item_count: int | None = None) -> dict[str, Any]:
    out = {
        "id": wishlist.id,
        "user_id": wishlist.user_id,
        "name": wishlist.name,
        "is_public": wishlist.is_public,
        "cover_image_url": wishlist.cover_image_url,
        "notes": wishlist.notes,
        "created_at": wishlist.created_at,
        "updated_at": wishlist.updated_at,
    }
    if item_count is not None:
        out["item_count"] = item_count
    return out


async def _owned_wishlist(session: AsyncSession, wishlist_id: str, user_id: str) -> models.Wishlist:
    wishlist = await session.get(models.Wishlist, wishlist_id)
    ensure_owner(wishlist, user_id, "wishlist")
    return wishlist


async def list_wishlists(session: AsyncSession, user_id: str) -> list[dict[str, Any]]:
    """The caller's wishlists, oldest first, each with its item count."""
    counts = (
        select(models.WishlistItem.wishlist_id, func.count().label("n"))
        .group_by(models.WishlistItem.wishlist_id)
        .subquery()
    )
    rows = await session.execute(
        select(models.Wishlist, func.coalesce(counts.c.n, 0))
        .select_from(models.Wishlist)
        .outerjoin(counts, counts.c.wishlist_id == models.Wishlist.id)
        .where(models.Wishlist.user_id == user_id)
        .order_by(models.Wishlist.created_at.asc())
    )
    return [wishlist_to_dict(w, n) for w, n in rows.all()]


async def create_wishlist(session: AsyncSession, user_id: str, name: str, is_public: bool = False) -> models.Wishlist:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Wishlist name is required")
    wishlist = models.Wishlist(user_id=user_id, name=name, is_public=bool(is_public))
    session.add(wishlist)
    await commit(session, "create wishlist")
    await session.refresh(wishlist)
    logger.info(f"Created wishlist {wishlist.id} for user {user_id}")
    return wishlist


async def update_wishlist(
    session: AsyncSession, user_id: str, wishlist_id: str, patch: dict[str, Any]
) -> models.Wishlist:
    """Rename, publish, or change the cover image or notes of a wishlist."""
    wishlist = await _owned_wishlist(session, wishlist_id, user_id)
    changes = pick(patch, WISHLIST_PATCH_FIELDS)
    reject_nulls(changes, ("name", "is_public"))
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise ValidationError("Wishlist name is required")
    for key, value in changes.items():
        setattr(wishlist, key, value)
    wishlist.updated_at = utcnow()
    await commit(session, "update wishlist")
    await session.refresh(wishlist)
    return wishlist


async def delete_wishlist(session: AsyncSession, user_id: str, wishlist_id: str) -> None:
    await _owned_wishlist(session, wishlist_id, user_id)
    await session.execute(delete(models.WishlistItem).where(models.WishlistItem.wishlist_id == wishlist_id))
    await session.execute(delete(models.Wishlist).where(models.Wishlist.id == wishlist_id))
    await commit(session, "delete wishlist")


async def add_site(session: AsyncSession, user_id: str, wishlist_id: str, site_id: str) -> models.WishlistItem:
    """Add a site to a wishlist; adding it again returns the existing item."""
    await _owned_wishlist(session, wishlist_id, user_id)
    if await session.get(models.Site, site_id) is None:
        raise NotFoundError("Site not found")
    result = await session.execute(
        select(models.WishlistItem).where(
            models.WishlistItem.wishlist_id == wishlist_id,
            models.WishlistItem.site_id == site_id,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing
    item = models.WishlistItem(wishlist_id=wishlist_id, site_id=site_id)
    session.add(item)
    await commit(session, "add site to wishlist")
    await session.refresh(item)
    return item


async def remove_site(session: AsyncSession, user_id: str, wishlist_id: str, site_id: str) -> None:
    await _owned_wishlist(session, wishlist_id, user_id)
    await session.execute(
        delete(models.WishlistItem).where(
            models.WishlistItem.wishlist_id == wishlist_id,
            models.WishlistItem.site_id == site_id,
        )
    )
    await commit(session, "remove site from wishlist")


async def lists_containing_site(session: AsyncSession, user_id: str, site_id: str) -> list[str]:
    """Ids of the caller's wishlists that already hold ``site_id``."""
    rows = await session.execute(
        select(models.WishlistItem.wishlist_id)
        .join(models.Wishlist, models.Wishlist.id == models.WishlistItem.wishlist_id)
        .where(models.Wishlist.user_id == user_id, models.WishlistItem.site_id == site_id)
        .order_by(models.Wishlist.created_at.asc())
    )
    return list(rows.scalars().all())


async def list_items(session: AsyncSession, user_id: str, wishlist_id: str) -> list[dict[str, Any]]:
    """Items of a wishlist with their site's title, slug and cover.

    Public wishlists are readable by anyone; private ones only by the owner.
    """
    wishlist = await session.get(models.Wishlist, wishlist_id)
    if wishlist is None or (not wishlist.is_public and wishlist.user_id != user_id):
        raise NotFoundError("wishlist not found")
    rows = await session.execute(
        select(models.WishlistItem, models.Site)
        .join(models.Site, models.Site.id == models.WishlistItem.site_id)
        .where(models.WishlistItem.wishlist_id == wishlist_id)
        .order_by(models.WishlistItem.created_at.asc())
    )
    return [
        {
            "id": item.id,
            "site_id": item.site_id,
            "site": {"title": site.title, "slug": site.slug, "cover_photo_url": site.cover_photo_url},
        }
        for item, site in rows.all()
    ]
