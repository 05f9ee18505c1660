"""Listings administration, the public heritage read model and radius search."""
from __future__ import annotations

import logging
import math
import re
import time
from typing import Any
from urllib.parse import urlencode

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from heritage import models
from heritage.config import settings
from heritage.images import variant_public_url
from heritage.storage import StorageClient

from . import bibliography
from .records import NotFoundError, ValidationError, commit, pick, utcnow

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
DEFAULT_RADIUS_KM = 25.0
NEARBY_KEYS = {"site": "center", "lat": "clat", "lng": "clng", "radius": "rkm"}

LISTING_FIELDS = (
    "title",
    "slug",
    "tagline",
    "heritage_type",
    "location_free",
    "latitude",
    "longitude",
    "province_id",
    "cover_photo_url",
    "architectural_style",
    "construction_date",
    "history_layout_html",
    "architecture_layout_html",
    "climate_layout_html",
    "custom_sections_json",
    "is_published",
)

_SLUG_SPACES = re.compile(r"[\s_]+")
_SLUG_STRIP = re.compile(r"[^a-z0-9-]")
_SLUG_DASHES = re.compile(r"-+")


def listing_slugify(value: str) -> str:
    s = _SLUG_SPACES.sub("-", value.lower().strip())
    s = _SLUG_STRIP.sub("", s)
    return _SLUG_DASHES.sub("-", s).strip("-")


def _stamp(digits: int) -> str:
    return str(int(time.time() * 1000))[-digits:]


def site_to_dict(site: models.Site) -> dict[str, Any]:
    return {
        "id": site.id,
        "slug": site.slug,
        "title": site.title,
        "tagline": site.tagline,
        "heritage_type": site.heritage_type,
        "location_free": site.location_free,
        "latitude": site.latitude,
        "longitude": site.longitude,
        "province_id": site.province_id,
        "cover_photo_url": site.cover_photo_url,
        "architectural_style": site.architectural_style,
        "construction_date": site.construction_date,
        "history_layout_html": site.history_layout_html,
        "architecture_layout_html": site.architecture_layout_html,
        "climate_layout_html": site.climate_layout_html,
        "custom_sections_json": site.custom_sections_json,
        "avg_rating": site.avg_rating,
        "review_count": site.review_count,
        "is_published": site.is_published,
        "deleted_at": site.deleted_at,
        "updated_at": site.updated_at,
    }


async def _get_site(session: AsyncSession, site_id: str) -> models.Site:
    site = await session.get(models.Site, site_id)
    if site is None:
        raise NotFoundError("Listing not found")
    return site


async def create_listing(session: AsyncSession) -> models.Site:
    base = "Untitled Heritage"
    site = models.Site(title=base, slug=f"{listing_slugify(base)}-{_stamp(5)}", is_published=False)
    session.add(site)
    await commit(session, "create listing")
    await session.refresh(site)
    logger.info(f"Created listing {site.id}")
    return site


async def duplicate_listing(session: AsyncSession, site_id: str) -> models.Site:
    """Unpublished copy of a listing, with its categories and regions."""
    orig = await _get_site(session, site_id)
    copy = models.Site(**{k: getattr(orig, k) for k in LISTING_FIELDS})
    copy.title = f"{orig.title or 'Copy'} (Copy)"
    copy.slug = listing_slugify(f"{orig.slug or 'copy'}-{_stamp(4)}")
    copy.is_published = False
    copy.deleted_at = None
    session.add(copy)
    await session.flush()

    cats = await session.execute(select(models.SiteCategory.category_id).where(models.SiteCategory.site_id == site_id))
    regs = await session.execute(select(models.SiteRegion.region_id).where(models.SiteRegion.site_id == site_id))
    session.add_all(models.SiteCategory(site_id=copy.id, category_id=c) for c in cats.scalars().all())
    session.add_all(models.SiteRegion(site_id=copy.id, region_id=r) for r in regs.scalars().all())
    await commit(session, "duplicate listing")
    await session.refresh(copy)
    logger.info(f"Duplicated listing {site_id} as {copy.id}")
    return copy


async def soft_delete_listing(session: AsyncSession, site_id: str) -> None:
    site = await _get_site(session, site_id)
    site.deleted_at = utcnow()
    await commit(session, "delete listing")


async def restore_listing(session: AsyncSession, site_id: str) -> None:
    site = await _get_site(session, site_id)
    site.deleted_at = None
    await commit(session, "restore listing")


async def update_listing(session: AsyncSession, site_id: str, patch: dict[str, Any]) -> models.Site:
    site = await _get_site(session, site_id)
    changes = pick(patch, LISTING_FIELDS)
    if "slug" in changes:
        changes["slug"] = listing_slugify(changes["slug"] or "")
        if not changes["slug"]:
            raise ValidationError("Slug cannot be empty")
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("Title cannot be empty")
    for key, value in changes.items():
        setattr(site, key, value)
    site.updated_at = utcnow()
    await commit(session, "update listing")
    await session.refresh(site)
    return site


async def set_taxonomies(
    session: AsyncSession,
    site_id: str,
    category_ids: list[int],
    region_ids: list[int],
) -> None:
    await _get_site(session, site_id)
    await session.execute(delete(models.SiteCategory).where(models.SiteCategory.site_id == site_id))
    await session.execute(delete(models.SiteRegion).where(models.SiteRegion.site_id == site_id))
    session.add_all(models.SiteCategory(site_id=site_id, category_id=c) for c in dict.fromkeys(category_ids))
    session.add_all(models.SiteRegion(site_id=site_id, region_id=r) for r in dict.fromkeys(region_ids))
    await commit(session, "set listing taxonomies")


def map_urls(lat: float | None, lng: float | None) -> dict[str, str | None]:
    if lat is None or lng is None:
        return {"embed": None, "link": None}
    return {
        "embed": f"https://www.google.com/maps?q={lat},{lng}&z=12&output=embed",
        "link": f"https://www.google.com/maps?q={lat},{lng}",
    }


async def heritage_detail(session: AsyncSession, storage: StorageClient, slug: str) -> dict[str, Any]:
    """Everything the public heritage page renders for a published listing.

    Raises:
        NotFoundError: If no live published listing has this slug
    """
    result = await session.execute(
        select(models.Site).where(
            models.Site.slug == slug,
            models.Site.is_published.is_(True),
            models.Site.deleted_at.is_(None),
        )
    )
    site = result.scalar_one_or_none()
    if site is None:
        raise NotFoundError("Heritage site not found")

    province = await session.get(models.Province, site.province_id) if site.province_id else None
    cats = await session.execute(
        select(models.Category)
        .join(models.SiteCategory, models.SiteCategory.category_id == models.Category.id)
        .where(models.SiteCategory.site_id == site.id)
    )
    regs = await session.execute(
        select(models.Region)
        .join(models.SiteRegion, models.SiteRegion.region_id == models.Region.id)
        .where(models.SiteRegion.site_id == site.id)
    )
    imgs = await session.execute(
        select(models.SiteImage).where(models.SiteImage.site_id == site.id).order_by(models.SiteImage.sort_order)
    )

    bucket = settings.storage.site_images_bucket
    gallery = []
    for img in imgs.scalars().all():
        original = storage.public_url(bucket, img.storage_path)
        gallery.append(
            {
                "id": img.id,
                "storage_path": img.storage_path,
                "alt_text": img.alt_text,
                "caption": img.caption,
                "credit": img.credit,
                "is_cover": img.is_cover,
                "sort_order": img.sort_order,
                "width": img.width,
                "height": img.height,
                "public_url": variant_public_url(original, "md"),
                "hero_url": variant_public_url(original, "hero"),
                "thumb_url": variant_public_url(original, "thumb"),
            }
        )

    cover = None
    if site.cover_photo_url:
        cover = {
            "url": site.cover_photo_url,
            "hero_url": variant_public_url(site.cover_photo_url, "hero"),
            "thumb_url": variant_public_url(site.cover_photo_url, "thumb"),
        }

    return {
        "site": site_to_dict(site),
        "province_name": province.name if province else None,
        "categories": [{"id": c.id, "name": c.name, "icon_key": c.icon_key} for c in cats.scalars().all()],
        "regions": [{"id": r.id, "name": r.name, "icon_key": r.icon_key} for r in regs.scalars().all()],
        "gallery": gallery,
        "cover": cover,
        "bibliography": await bibliography.load_for_public(session, site.id),
        "style_id": await bibliography.citation_style(session),
        "maps": map_urls(site.latitude, site.longitude),
        "nearby_query": (
            build_nearby_query(site.id, site.latitude, site.longitude)
            if site.latitude is not None and site.longitude is not None
            else None
        ),
    }


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = p2 - p1
    dl = math.radians(lng2 - lng1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


async def sites_within_radius(
    session: AsyncSession,
    lat: float,
    lng: float,
    radius_km: float = DEFAULT_RADIUS_KM,
    name: str | None = None,
) -> list[dict[str, Any]]:
    """Published sites within ``radius_km`` of a point, nearest first."""
    if radius_km <= 0:
        raise ValidationError("Radius must be positive")
    stmt = select(models.Site).where(
        models.Site.is_published.is_(True),
        models.Site.deleted_at.is_(None),
        models.Site.latitude.is_not(None),
        models.Site.longitude.is_not(None),
    )
    if name:
        stmt = stmt.where(models.Site.title.icontains(name, autoescape=True))
    result = await session.execute(stmt)

    hits = []
    for site in result.scalars().all():
        distance = haversine_km(lat, lng, site.latitude, site.longitude)
        if distance <= radius_km:
            hits.append(
                {
                    "id": site.id,
                    "slug": site.slug,
                    "title": site.title,
                    "cover_photo_url": site.cover_photo_url,
                    "latitude": site.latitude,
                    "longitude": site.longitude,
                    "distance_km": round(distance, 3),
                }
            )
    hits.sort(key=lambda h: h["distance_km"])
    return hits


def build_nearby_query(site_id: str, lat: float, lng: float, radius_km: float | None = None) -> str:
    """Explore-page query string for a "places nearby" search."""
    return urlencode(
        {
            NEARBY_KEYS["site"]: site_id,
            NEARBY_KEYS["lat"]: lat,
            NEARBY_KEYS["lng"]: lng,
            NEARBY_KEYS["radius"]: radius_km if radius_km is not None else DEFAULT_RADIUS_KM,
        }
    )


def _float_or_none(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def read_nearby_params(params: dict[str, Any]) -> dict[str, Any]:
    return {
        "center_site_id": params.get(NEARBY_KEYS["site"]) or None,
        "center_lat": _float_or_none(params.get(NEARBY_KEYS["lat"])),
        "center_lng": _float_or_none(params.get(NEARBY_KEYS["lng"])),
        "radius_km": _float_or_none(params.get(NEARBY_KEYS["radius"])),
    }


def is_nearby_active(p: dict[str, Any]) -> bool:
    return bool(
        p.get("center_site_id")
        and p.get("center_lat") is not None
        and p.get("center_lng") is not None
        and (p.get("radius_km") or 0) > 0
    )
