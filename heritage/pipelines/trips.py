"""Trip builder: trips, their ordered items and pretty URLs."""
from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from heritage import models

from .records import NotFoundError, OwnershipError, ValidationError, commit, ensure_owner, pick, utcnow

logger = logging.getLogger(__name__)

ITEM_PATCH_FIELDS = ("order_index", "date_in", "date_out", "notes")

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str | None) -> str:
    """``"Hue & Hoi An!"`` -> ``"hue-and-hoi-an"``; empty input gives ``"trip"``."""
    s = (value or "trip").lower().replace("&", " and ")
    s = _NON_SLUG.sub("-", s).strip("-")
    return s or "trip"


def trip_to_dict(trip: models.Trip) -> dict[str, Any]:
    return {
        "id": trip.id,
        "user_id": trip.user_id,
        "name": trip.name,
        "slug": trip.slug,
        "is_public": trip.is_public,
        "created_at": trip.created_at,
        "updated_at": trip.updated_at,
    }


def item_to_dict(item: models.TripItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "trip_id": item.trip_id,
        "site_id": item.site_id,
        "order_index": item.order_index,
        "date_in": item.date_in,
        "date_out": item.date_out,
        "notes": item.notes,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }


async def ensure_unique_trip_slug(session: AsyncSession, user_id: str, name: str) -> str:
    """Try ``base``, then ``base-2``, ``base-3``… until unused for this user."""
    base = slugify(name)
    candidate = base
    n = 1
    while True:
        result = await session.execute(
            select(func.count())
            .select_from(models.Trip)
            .where(models.Trip.user_id == user_id, models.Trip.slug == candidate)
        )
        if not result.scalar_one():
            return candidate
        n += 1
        candidate = f"{base}-{n}"


async def _owned_trip(session: AsyncSession, trip_id: str, user_id: str) -> models.Trip:
    trip = await session.get(models.Trip, trip_id)
    ensure_owner(trip, user_id, "trip")
    return trip


async def create_trip(session: AsyncSession, user_id: str, name: str, is_public: bool | None = None) -> models.Trip:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Trip name is required")
    slug = await ensure_unique_trip_slug(session, user_id, name)
    trip = models.Trip(user_id=user_id, name=name, slug=slug, is_public=is_public)
    session.add(trip)
    await commit(session, "create trip")
    await session.refresh(trip)
    logger.info(f"Created trip {trip.id} ({slug}) for user {user_id}")
    return trip


async def list_user_trips(session: AsyncSession, user_id: str) -> list[models.Trip]:
    result = await session.execute(
        select(models.Trip).where(models.Trip.user_id == user_id).order_by(models.Trip.updated_at.desc())
    )
    return list(result.scalars().all())


async def add_site_to_trip(
    session: AsyncSession,
    user_id: str,
    trip_id: str,
    site_id: str,
    order_index: int | None = None,
) -> models.TripItem:
    """Append a site to a trip; without an explicit index it goes last."""
    trip = await _owned_trip(session, trip_id, user_id)
    if order_index is None:
        result = await session.execute(
            select(func.max(models.TripItem.order_index)).where(models.TripItem.trip_id == trip_id)
        )
        current = result.scalar_one_or_none()
        order_index = 0 if current is None else current + 1
    item = models.TripItem(trip_id=trip_id, site_id=site_id, order_index=order_index)
    session.add(item)
    trip.updated_at = utcnow()
    await commit(session, "add site to trip")
    await session.refresh(item)
    return item


async def get_trip_by_username_slug(session: AsyncSession, username: str, slug: str) -> models.Trip:
    result = await session.execute(select(models.Profile.id).where(models.Profile.username == username))
    profile_id = result.scalar_one_or_none()
    if profile_id is None:
        raise NotFoundError("Profile not found")
    result = await session.execute(
        select(models.Trip).where(models.Trip.user_id == profile_id, models.Trip.slug == slug)
    )
    trip = result.scalar_one_or_none()
    if trip is None:
        raise NotFoundError("Trip not found")
    return trip


async def get_trip_url_by_id(session: AsyncSession, trip_id: str) -> str | None:
    """``/<username>/trip/<slug>``, or None when either part is missing."""
    trip = await session.get(models.Trip, trip_id)
    if trip is None:
        raise NotFoundError("Trip not found")
    if not trip.slug:
        return None
    profile = await session.get(models.Profile, trip.user_id)
    if profile is None or not profile.username:
        return None
    return f"/{profile.username}/trip/{trip.slug}"


async def get_trip_with_items(session: AsyncSession, trip_id: str) -> dict[str, Any]:
    """Trip plus ordered items, each with its site, province name and up to two categories."""
    trip = await session.get(models.Trip, trip_id)
    if trip is None:
        raise NotFoundError("Trip not found")

    result = await session.execute(
        select(models.TripItem).where(models.TripItem.trip_id == trip_id).order_by(models.TripItem.order_index)
    )
    items = list(result.scalars().all())
    site_ids = list({i.site_id for i in items})

    sites: dict[str, models.Site] = {}
    provinces: dict[int, str] = {}
    categories: dict[str, list[str]] = {}
    if site_ids:
        rows = await session.execute(select(models.Site).where(models.Site.id.in_(site_ids)))
        sites = {s.id: s for s in rows.scalars().all()}

        province_ids = {s.province_id for s in sites.values() if s.province_id}
        if province_ids:
            rows = await session.execute(
                select(models.Province.id, models.Province.name).where(models.Province.id.in_(province_ids))
            )
            provinces = {pid: name for pid, name in rows.all()}

        rows = await session.execute(
            select(models.SiteCategory.site_id, models.Category.name)
            .join(models.Category, models.Category.id == models.SiteCategory.category_id)
            .where(models.SiteCategory.site_id.in_(site_ids))
            .order_by(models.SiteCategory.site_id, models.Category.name)
        )
        for sid, name in rows.all():
            names = categories.setdefault(sid, [])
            if len(names) < 2:
                names.append(name)

    out_items = []
    for item in items:
        site = sites.get(item.site_id)
        out = item_to_dict(item)
        out["site"] = (
            {
                "id": site.id,
                "slug": site.slug,
                "title": site.title,
                "province_id": site.province_id,
                "cover_photo_url": site.cover_photo_url,
            }
            if site
            else None
        )
        out["province_name"] = provinces.get(site.province_id) if site and site.province_id else None
        out["experience"] = categories.get(item.site_id, [])
        out_items.append(out)

    return {"trip": trip_to_dict(trip), "items": out_items}


async def _owned_items(session: AsyncSession, user_id: str, item_ids: list[str]) -> dict[str, models.TripItem]:
    if not item_ids:
        return {}
    rows = await session.execute(
        select(models.TripItem, models.Trip.user_id)
        .join(models.Trip, models.Trip.id == models.TripItem.trip_id)
        .where(models.TripItem.id.in_(item_ids))
    )
    found: dict[str, models.TripItem] = {}
    for item, owner in rows.all():
        if owner != user_id:
            raise OwnershipError("Not the owner of this trip item")
        found[item.id] = item
    missing = set(item_ids) - set(found)
    if missing:
        raise NotFoundError(f"Trip items not found: {', '.join(sorted(missing))}")
    return found


async def update_trip_items_batch(
    session: AsyncSession,
    user_id: str,
    patches: list[dict[str, Any]],
    trip_id: str | None = None,
) -> int:
    """Apply partial patches; entries with nothing to change are skipped.

    With ``trip_id`` every patched item must belong to that trip.

    Returns:
        Number of items updated
    """
    effective = [(p["id"], pick(p, ITEM_PATCH_FIELDS)) for p in patches if p.get("id")]
    effective = [(item_id, patch) for item_id, patch in effective if patch]
    items = await _owned_items(session, user_id, [item_id for item_id, _ in effective])

    now = utcnow()
    for item_id, patch in effective:
        item = items[item_id]
        if trip_id is not None and item.trip_id != trip_id:
            raise ValidationError(f"Item {item_id} belongs to another trip")
        for key, value in patch.items():
            setattr(item, key, value)
        item.updated_at = now
    await commit(session, "update trip items")
    return len(effective)


async def reorder_trip_items(session: AsyncSession, user_id: str, trip_id: str, item_ids: list[str]) -> None:
    """Persist a drag-and-drop order: ``item_ids[i]`` gets ``order_index = i``."""
    await _owned_trip(session, trip_id, user_id)
    items = await _owned_items(session, user_id, item_ids)
    for index, item_id in enumerate(item_ids):
        item = items[item_id]
        if item.trip_id != trip_id:
            raise ValidationError(f"Item {item_id} belongs to another trip")
        item.order_index = index
    await commit(session, "reorder trip items")


async def delete_trip_item(session: AsyncSession, user_id: str, item_id: str) -> None:
    await _owned_items(session, user_id, [item_id])
    await session.execute(delete(models.TripItem).where(models.TripItem.id == item_id))
    await commit(session, "delete trip item")
