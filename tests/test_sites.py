"""Tests for listings administration, the heritage read model and radius search."""

from __future__ import annotations

from urllib.parse import parse_qs

import pytest
from sqlalchemy import select

from heritage import models
from heritage.pipelines import bibliography, sites
from heritage.pipelines.records import NotFoundError, ValidationError

from .conftest import FakeStorage


def test_listing_slugify() -> None:
    assert sites.listing_slugify("  Thien Mu Pagoda_Hue ") == "thien-mu-pagoda-hue"
    assert sites.listing_slugify("Ba Na -- Hills!") == "ba-na-hills"


def test_haversine_known_distance() -> None:
    # Hue to Da Nang is roughly 80 km as the crow flies
    assert 75 < sites.haversine_km(16.4637, 107.5909, 16.0544, 108.2022) < 85
    assert sites.haversine_km(10.0, 106.0, 10.0, 106.0) == 0.0


def test_nearby_query_round_trip() -> None:
    query = sites.build_nearby_query("site-1", 16.46, 107.59)
    parsed = {k: v[0] for k, v in parse_qs(query).items()}

    params = sites.read_nearby_params(parsed)

    assert params == {"center_site_id": "site-1", "center_lat": 16.46, "center_lng": 107.59, "radius_km": 25.0}
    assert sites.is_nearby_active(params) is True
    assert sites.is_nearby_active(sites.read_nearby_params({"clat": "x"})) is False


def test_map_urls() -> None:
    assert sites.map_urls(None, 1.0) == {"embed": None, "link": None}
    assert sites.map_urls(1.5, 2.5)["link"] == "https://www.google.com/maps?q=1.5,2.5"


@pytest.mark.asyncio
async def test_create_and_duplicate_listing(session) -> None:
    region = models.Region(name="Central")
    category = models.Category(name="Pagoda")
    session.add_all([region, category])
    await session.commit()

    original = await sites.create_listing(session)
    assert original.title == "Untitled Heritage"
    assert original.slug.startswith("untitled-heritage-")
    assert original.is_published is False

    await sites.update_listing(session, original.id, {"title": "Thien Mu", "is_published": True, "avg_rating": 5})
    await sites.set_taxonomies(session, original.id, [category.id, category.id], [region.id])

    copy = await sites.duplicate_listing(session, original.id)

    assert copy.id != original.id
    assert copy.title == "Thien Mu (Copy)"
    assert copy.is_published is False
    assert copy.avg_rating is None
    cats = await session.execute(select(models.SiteCategory.category_id).where(models.SiteCategory.site_id == copy.id))
    regs = await session.execute(select(models.SiteRegion.region_id).where(models.SiteRegion.site_id == copy.id))
    assert cats.scalars().all() == [category.id]
    assert regs.scalars().all() == [region.id]


@pytest.mark.asyncio
async def test_update_listing_validates(session, site) -> None:
    with pytest.raises(ValidationError):
        await sites.update_listing(session, site.id, {"slug": "!!!"})
    with pytest.raises(NotFoundError):
        await sites.update_listing(session, "missing", {"title": "x"})

    updated = await sites.update_listing(session, site.id, {"slug": "Hue Citadel 2"})
    assert updated.slug == "hue-citadel-2"


@pytest.mark.asyncio
async def test_soft_delete_hides_from_public_page(session, site, fake_storage: FakeStorage) -> None:
    await sites.soft_delete_listing(session, site.id)
    with pytest.raises(NotFoundError):
        await sites.heritage_detail(session, fake_storage, site.slug)

    await sites.restore_listing(session, site.id)
    detail = await sites.heritage_detail(session, fake_storage, site.slug)
    assert detail["site"]["id"] == site.id


@pytest.mark.asyncio
async def test_heritage_detail_read_model(session, site, fake_storage: FakeStorage) -> None:
    province = models.Province(name="Thua Thien Hue", slug="tth")
    category = models.Category(name="Citadel", icon_key="castle")
    session.add_all([province, category])
    await session.flush()
    site.province_id = province.id
    site.cover_photo_url = "https://cdn.test/cover.jpg"
    session.add(models.SiteCategory(site_id=site.id, category_id=category.id))
    session.add(models.SiteImage(site_id=site.id, storage_path="gallery/1/b.jpg", sort_order=2))
    session.add(models.SiteImage(site_id=site.id, storage_path="gallery/1/a.jpg", sort_order=1, is_cover=True))
    await session.commit()
    src = await bibliography.create_source(session, {"title": "Hue Guide", "type": "book"})
    await bibliography.attach(session, site.id, src.id)

    detail = await sites.heritage_detail(session, fake_storage, "hue-citadel")

    assert detail["province_name"] == "Thua Thien Hue"
    assert detail["categories"] == [{"id": category.id, "name": "Citadel", "icon_key": "castle"}]
    assert [g["storage_path"] for g in detail["gallery"]] == ["gallery/1/a.jpg", "gallery/1/b.jpg"]
    assert detail["gallery"][0]["thumb_url"].endswith("/site-images/gallery/1/a_thumb.jpg")
    assert detail["gallery"][0]["public_url"].endswith("/site-images/gallery/1/a_md.jpg")
    assert detail["cover"]["hero_url"] == "https://cdn.test/cover_hero.jpg"
    assert [b["csl"]["title"] for b in detail["bibliography"]] == ["Hue Guide"]
    assert detail["style_id"] == "apa"
    assert detail["maps"]["link"] == f"https://www.google.com/maps?q={site.latitude},{site.longitude}"
    assert parse_qs(detail["nearby_query"])["center"] == [site.id]


@pytest.mark.asyncio
async def test_unpublished_listing_is_not_public(session, fake_storage: FakeStorage) -> None:
    session.add(models.Site(slug="draft", title="Draft", is_published=False))
    await session.commit()

    with pytest.raises(NotFoundError):
        await sites.heritage_detail(session, fake_storage, "draft")


@pytest.mark.asyncio
async def test_sites_within_radius(session, site) -> None:
    session.add_all(
        [
            models.Site(slug="thien-mu", title="Thien Mu Pagoda", is_published=True, latitude=16.4531, longitude=107.5449),
            models.Site(slug="hoi-an", title="Hoi An", is_published=True, latitude=15.8801, longitude=108.3380),
            models.Site(slug="no-coords", title="Somewhere", is_published=True),
            models.Site(slug="hidden", title="Hidden", is_published=False, latitude=16.47, longitude=107.58),
        ]
    )
    await session.commit()

    hits = await sites.sites_within_radius(session, 16.4698, 107.5786, 10)
    assert [h["slug"] for h in hits] == ["hue-citadel", "thien-mu"]
    assert hits[0]["distance_km"] == 0.0

    named = await sites.sites_within_radius(session, 16.4698, 107.5786, 200, name="hoi")
    assert [h["slug"] for h in named] == ["hoi-an"]

    with pytest.raises(ValidationError):
        await sites.sites_within_radius(session, 16.0, 107.0, 0)
