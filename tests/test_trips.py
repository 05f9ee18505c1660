"""Tests for the trip builder."""

from __future__ import annotations

import pytest

from heritage import models
from heritage.pipelines import trips
from heritage.pipelines.records import NotFoundError, OwnershipError, ValidationError

from .conftest import OTHER_USER_ID, USER_ID


@pytest.mark.parametrize(
    "name, slug",
    [("Hue & Hoi An!", "hue-and-hoi-an"), ("  Central   Coast  ", "central-coast"), ("!!!", "trip"), (None, "trip")],
)
def test_slugify(name, slug) -> None:
    assert trips.slugify(name) == slug


@pytest.mark.asyncio
async def test_create_trip_makes_slugs_unique_per_user(session) -> None:
    first = await trips.create_trip(session, USER_ID, "Hue Weekend")
    second = await trips.create_trip(session, USER_ID, "Hue weekend")
    third = await trips.create_trip(session, USER_ID, "hue-weekend")
    other = await trips.create_trip(session, OTHER_USER_ID, "Hue Weekend")

    assert [first.slug, second.slug, third.slug] == ["hue-weekend", "hue-weekend-2", "hue-weekend-3"]
    assert other.slug == "hue-weekend"


@pytest.mark.asyncio
async def test_create_trip_requires_name(session) -> None:
    with pytest.raises(ValidationError):
        await trips.create_trip(session, USER_ID, "   ")


@pytest.mark.asyncio
async def test_add_site_appends_after_last_item(session, site) -> None:
    trip = await trips.create_trip(session, USER_ID, "Loop")

    a = await trips.add_site_to_trip(session, USER_ID, trip.id, site.id)
    b = await trips.add_site_to_trip(session, USER_ID, trip.id, site.id)
    c = await trips.add_site_to_trip(session, USER_ID, trip.id, site.id, order_index=10)
    d = await trips.add_site_to_trip(session, USER_ID, trip.id, site.id)

    assert [a.order_index, b.order_index, c.order_index, d.order_index] == [0, 1, 10, 11]


@pytest.mark.asyncio
async def test_add_site_to_someone_elses_trip(session, site) -> None:
    trip = await trips.create_trip(session, OTHER_USER_ID, "Theirs")

    with pytest.raises(OwnershipError):
        await trips.add_site_to_trip(session, USER_ID, trip.id, site.id)


@pytest.mark.asyncio
async def test_trip_urls(session) -> None:
    session.add(models.Profile(id=USER_ID, username="lan"))
    await session.commit()
    trip = await trips.create_trip(session, USER_ID, "Mekong Delta")

    assert await trips.get_trip_url_by_id(session, trip.id) == "/lan/trip/mekong-delta"
    found = await trips.get_trip_by_username_slug(session, "lan", "mekong-delta")
    assert found.id == trip.id
    with pytest.raises(NotFoundError):
        await trips.get_trip_by_username_slug(session, "lan", "nope")
    with pytest.raises(NotFoundError):
        await trips.get_trip_by_username_slug(session, "nobody", "mekong-delta")


@pytest.mark.asyncio
async def test_trip_url_without_profile_is_none(session) -> None:
    trip = await trips.create_trip(session, USER_ID, "Solo")
    assert await trips.get_trip_url_by_id(session, trip.id) is None


@pytest.mark.asyncio
async def test_get_trip_with_items_joins_site_details(session, site) -> None:
    province = models.Province(name="Thua Thien Hue", slug="thua-thien-hue")
    session.add(province)
    await session.flush()
    site.province_id = province.id
    cats = [models.Category(name=n) for n in ("Temples", "Citadels", "Architecture")]
    session.add_all(cats)
    await session.flush()
    session.add_all(models.SiteCategory(site_id=site.id, category_id=c.id) for c in cats)
    await session.commit()

    trip = await trips.create_trip(session, USER_ID, "Imperial")
    second = models.Site(slug="tomb", title="Tomb of Tu Duc", is_published=True)
    session.add(second)
    await session.commit()
    await trips.add_site_to_trip(session, USER_ID, trip.id, second.id, order_index=1)
    await trips.add_site_to_trip(session, USER_ID, trip.id, site.id, order_index=0)

    data = await trips.get_trip_with_items(session, trip.id)

    assert data["trip"]["name"] == "Imperial"
    first, last = data["items"]
    assert first["site"]["title"] == "Hue Citadel"
    assert first["province_name"] == "Thua Thien Hue"
    assert first["experience"] == ["Architecture", "Citadels"]
    assert last["site"]["title"] == "Tomb of Tu Duc"
    assert last["province_name"] is None
    assert last["experience"] == []


@pytest.mark.asyncio
async def test_batch_update_and_reorder(session, site) -> None:
    trip = await trips.create_trip(session, USER_ID, "Batch")
    items = [await trips.add_site_to_trip(session, USER_ID, trip.id, site.id) for _ in range(3)]

    count = await trips.update_trip_items_batch(
        session,
        USER_ID,
        [
            {"id": items[0].id, "notes": "sunrise", "date_in": "2025-01-02"},
            {"id": items[1].id},
            {"id": items[2].id, "unknown": 1},
        ],
    )
    assert count == 1

    await trips.reorder_trip_items(session, USER_ID, trip.id, [items[2].id, items[0].id, items[1].id])
    data = await trips.get_trip_with_items(session, trip.id)

    assert [i["id"] for i in data["items"]] == [items[2].id, items[0].id, items[1].id]
    assert data["items"][1]["notes"] == "sunrise"
    assert data["items"][1]["date_in"] == "2025-01-02"


@pytest.mark.asyncio
async def test_item_writes_check_ownership(session, site) -> None:
    theirs = await trips.create_trip(session, OTHER_USER_ID, "Theirs")
    item = await trips.add_site_to_trip(session, OTHER_USER_ID, theirs.id, site.id)

    with pytest.raises(OwnershipError):
        await trips.update_trip_items_batch(session, USER_ID, [{"id": item.id, "notes": "x"}])
    with pytest.raises(OwnershipError):
        await trips.delete_trip_item(session, USER_ID, item.id)
    with pytest.raises(NotFoundError):
        await trips.delete_trip_item(session, USER_ID, "missing")

    await trips.delete_trip_item(session, OTHER_USER_ID, item.id)
    data = await trips.get_trip_with_items(session, theirs.id)
    assert data["items"] == []


@pytest.mark.asyncio
async def test_reorder_rejects_items_from_another_trip(session, site) -> None:
    a = await trips.create_trip(session, USER_ID, "A")
    b = await trips.create_trip(session, USER_ID, "B")
    item_b = await trips.add_site_to_trip(session, USER_ID, b.id, site.id)

    with pytest.raises(ValidationError):
        await trips.reorder_trip_items(session, USER_ID, a.id, [item_b.id])
