"""Tests for saved images and photo collections."""

from __future__ import annotations

import httpx
import pytest

from heritage import models
from heritage.pipelines import collections
from heritage.pipelines.collections import ImageRef
from heritage.pipelines.records import OwnershipError, ValidationError

from .conftest import OTHER_USER_ID, USER_ID

GALLERY_IMAGE = ImageRef(site_image_id="img-1", storage_path="sites/hue/gate.jpg", site_id="site-1", alt_text="Ngo Mon gate")
EXTERNAL_IMAGE = ImageRef(image_url="https://images.example.com/thien-mu.jpg", caption="Thien Mu")


def test_collect_key_joins_known_identity_fields() -> None:
    assert collections.make_collect_key(GALLERY_IMAGE) == "id:img-1|sp:sites/hue/gate.jpg"
    assert collections.make_collect_key(EXTERNAL_IMAGE) == "url:https://images.example.com/thien-mu.jpg"
    with pytest.raises(ValidationError):
        collections.make_collect_key(ImageRef(caption="nothing to identify"))


@pytest.mark.asyncio
async def test_ensure_collected_is_idempotent_across_identity_fields(session) -> None:
    first = await collections.ensure_collected(session, USER_ID, GALLERY_IMAGE)
    by_path = await collections.ensure_collected(session, USER_ID, ImageRef(storage_path="sites/hue/gate.jpg"))
    theirs = await collections.ensure_collected(session, OTHER_USER_ID, GALLERY_IMAGE)

    assert by_path.id == first.id
    assert theirs.id != first.id
    assert await collections.is_collected(session, USER_ID, ImageRef(site_image_id="img-1"))


@pytest.mark.asyncio
async def test_toggle_collected(session) -> None:
    assert await collections.toggle_collected(session, USER_ID, EXTERNAL_IMAGE) == "added"
    assert await collections.is_collected(session, USER_ID, EXTERNAL_IMAGE)
    assert await collections.toggle_collected(session, USER_ID, EXTERNAL_IMAGE) == "removed"
    assert not await collections.is_collected(session, USER_ID, EXTERNAL_IMAGE)


@pytest.mark.asyncio
async def test_list_collected_resolves_public_urls(session, fake_storage) -> None:
    await collections.ensure_collected(session, USER_ID, GALLERY_IMAGE)
    await collections.ensure_collected(session, USER_ID, EXTERNAL_IMAGE)

    listed = await collections.list_collected(session, fake_storage, USER_ID)

    urls = {row["collect_key"]: row["public_url"] for row in listed}
    assert urls == {
        "id:img-1|sp:sites/hue/gate.jpg": "https://backend.test/storage/v1/object/public/site-images/sites/hue/gate.jpg",
        "url:https://images.example.com/thien-mu.jpg": "https://images.example.com/thien-mu.jpg",
    }
    assert await collections.list_collected(session, fake_storage, OTHER_USER_ID) == []


@pytest.mark.asyncio
async def test_add_to_collection_saves_the_image_once(session, fake_storage) -> None:
    album = await collections.create_photo_collection(session, USER_ID, "Hue")

    first = await collections.add_to_collection(session, USER_ID, album.id, GALLERY_IMAGE)
    again = await collections.add_to_collection(session, USER_ID, album.id, GALLERY_IMAGE)

    assert first.id == again.id
    assert await collections.collections_containing(session, USER_ID, GALLERY_IMAGE) == [album.id]
    listed = await collections.list_photo_collections(session, fake_storage, USER_ID)
    assert [(c["name"], c["item_count"], c["cover_url"]) for c in listed] == [("Hue", 1, None)]


@pytest.mark.asyncio
async def test_remove_from_collection_keeps_the_image_saved(session) -> None:
    album = await collections.create_photo_collection(session, USER_ID, "Pagodas")
    await collections.add_to_collection(session, USER_ID, album.id, EXTERNAL_IMAGE)

    await collections.remove_from_collection(session, USER_ID, album.id, EXTERNAL_IMAGE)

    assert await collections.collections_containing(session, USER_ID, EXTERNAL_IMAGE) == []
    assert await collections.is_collected(session, USER_ID, EXTERNAL_IMAGE)


@pytest.mark.asyncio
async def test_unsaving_an_image_empties_collections_and_clears_cover(session, fake_storage) -> None:
    album = await collections.create_photo_collection(session, USER_ID, "Gates")
    item = await collections.add_to_collection(session, USER_ID, album.id, GALLERY_IMAGE)
    await collections.set_collection_cover(session, USER_ID, album.id, item.collected_id)

    assert await collections.toggle_collected(session, USER_ID, GALLERY_IMAGE) == "removed"

    await session.refresh(album)
    assert album.cover_collected_id is None
    assert await collections.list_collection_items(session, fake_storage, USER_ID, album.id) == []


@pytest.mark.asyncio
async def test_collection_items_follow_explicit_order(session, fake_storage) -> None:
    album = await collections.create_photo_collection(session, USER_ID, "Route")
    a = await collections.add_to_collection(session, USER_ID, album.id, GALLERY_IMAGE)
    b = await collections.add_to_collection(session, USER_ID, album.id, EXTERNAL_IMAGE)

    await collections.reorder_collection_items(session, USER_ID, album.id, [b.id, a.id])

    items = await collections.list_collection_items(session, fake_storage, USER_ID, album.id)
    assert [(i["id"], i["sort_order"]) for i in items] == [(b.id, 0), (a.id, 1)]
    assert items[1]["public_url"].endswith("/site-images/sites/hue/gate.jpg")


@pytest.mark.asyncio
async def test_reorder_rejects_items_from_another_collection(session) -> None:
    album = await collections.create_photo_collection(session, USER_ID, "One")
    other = await collections.create_photo_collection(session, USER_ID, "Two")
    stray = await collections.add_to_collection(session, USER_ID, other.id, EXTERNAL_IMAGE)

    with pytest.raises(ValidationError):
        await collections.reorder_collection_items(session, USER_ID, album.id, [stray.id])


@pytest.mark.asyncio
async def test_cover_must_be_a_member(session, fake_storage) -> None:
    album = await collections.create_photo_collection(session, USER_ID, "Covers")
    outside = await collections.ensure_collected(session, USER_ID, EXTERNAL_IMAGE)

    with pytest.raises(ValidationError):
        await collections.set_collection_cover(session, USER_ID, album.id, outside.id)

    item = await collections.add_to_collection(session, USER_ID, album.id, GALLERY_IMAGE)
    await collections.set_collection_cover(session, USER_ID, album.id, item.collected_id)
    listed = await collections.list_photo_collections(session, fake_storage, USER_ID)
    assert listed[0]["cover_url"].endswith("/site-images/sites/hue/gate.jpg")


@pytest.mark.asyncio
async def test_collections_belong_to_their_owner(session) -> None:
    album = await collections.create_photo_collection(session, OTHER_USER_ID, "Private")

    with pytest.raises(OwnershipError):
        await collections.add_to_collection(session, USER_ID, album.id, EXTERNAL_IMAGE)
    with pytest.raises(OwnershipError):
        await collections.delete_photo_collection(session, USER_ID, album.id)


@pytest.mark.asyncio
async def test_delete_photo_collection_keeps_saved_images(session) -> None:
    album = await collections.create_photo_collection(session, USER_ID, "Temporary")
    await collections.add_to_collection(session, USER_ID, album.id, EXTERNAL_IMAGE)

    await collections.delete_photo_collection(session, USER_ID, album.id)

    assert await session.get(models.PhotoCollection, album.id) is None
    assert await collections.is_collected(session, USER_ID, EXTERNAL_IMAGE)


@pytest.mark.asyncio
async def test_collection_routes(api_client: httpx.AsyncClient) -> None:
    image = {"storage_path": "sites/hue/gate.jpg", "alt_text": "Ngo Mon gate"}

    toggled = await api_client.post("/api/collected-images/toggle", json=image)
    assert toggled.json() == {"result": "added"}
    saved = (await api_client.get("/api/collected-images")).json()
    assert saved[0]["public_url"].endswith("/site-images/sites/hue/gate.jpg")

    album = (await api_client.post("/api/photo-collections", json={"name": "Hue"})).json()
    added = await api_client.post(f"/api/photo-collections/{album['id']}/items", json=image)
    assert added.status_code == 201
    status = (await api_client.post("/api/collected-images/status", json=image)).json()
    assert status == {"collected": True, "collection_ids": [album["id"]]}

    empty = await api_client.post("/api/collected-images/toggle", json={"caption": "no identity"})
    assert empty.status_code == 400
    assert (await api_client.delete(f"/api/photo-collections/{album['id']}")).json() == {"ok": True}
