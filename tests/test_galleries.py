from __future__ import annotations

import pytest

from database import Gallery, User
from errors import InvalidID, NotFound
from galleries import GalleryService, TitleRequired


@pytest.mark.asyncio
async def test_create_and_list(galleries: GalleryService, alice: User) -> None:
    created = await galleries.create(Gallery(user_id=alice.id, title="  Holiday  "))
    assert created.id > 0
    assert created.title == "Holiday"
    assert [g.id for g in await galleries.by_user_id(alice.id)] == [created.id]


@pytest.mark.asyncio
async def test_title_is_required(galleries: GalleryService, alice: User) -> None:
    with pytest.raises(TitleRequired):
        await galleries.create(Gallery(user_id=alice.id, title="   "))


@pytest.mark.asyncio
async def test_invalid_ids(galleries: GalleryService) -> None:
    with pytest.raises(InvalidID):
        await galleries.by_id(0)
    with pytest.raises(InvalidID):
        await galleries.delete(-3)


@pytest.mark.asyncio
async def test_owned_by_hides_other_users_galleries(
    galleries: GalleryService, users, alice: User
) -> None:
    bob = await users.create(User(email="bob@example.com", password="password123"))
    gallery = await galleries.create(Gallery(user_id=alice.id, title="Private"))

    assert (await galleries.owned_by(gallery.id, alice.id)).id == gallery.id
    with pytest.raises(NotFound):
        await galleries.owned_by(gallery.id, bob.id)


@pytest.mark.asyncio
async def test_update_and_delete(galleries: GalleryService, alice: User) -> None:
    gallery = await galleries.create(Gallery(user_id=alice.id, title="Old"))
    gallery.title = "New"
    await galleries.update(gallery)
    assert (await galleries.by_id(gallery.id)).title == "New"

    await galleries.delete(gallery.id)
    with pytest.raises(NotFound):
        await galleries.by_id(gallery.id)


@pytest.mark.asyncio
async def test_bool_is_not_an_id(galleries: GalleryService, alice: User) -> None:
    await galleries.create(Gallery(user_id=alice.id, title="First"))
    with pytest.raises(InvalidID):
        await galleries.by_id(True)  # type: ignore[arg-type]
    with pytest.raises(InvalidID):
        await galleries.by_user_id(True)  # type: ignore[arg-type]
