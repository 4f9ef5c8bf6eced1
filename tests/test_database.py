from __future__ import annotations

import pytest

from database import Database, Gallery, PwReset, User
from errors import ErrorKind, NotFound, PersistenceError


def _user(email: str, remember_hash: str) -> User:
    return User(name="Test", email=email, password_hash="hashed", remember_hash=remember_hash)


@pytest.mark.asyncio
async def test_user_lifecycle(db: Database) -> None:
    user = await db.insert_user(_user("Alice@Example.com", "hash-1"))
    assert user.id > 0
    assert user.email == "alice@example.com"
    assert user.meta.created_at == user.meta.updated_at

    by_email = await db.find_user("email", "ALICE@example.com")
    by_id = await db.find_user("id", user.id)
    by_hash = await db.find_user("remember_hash", "hash-1")
    assert by_email.id == by_id.id == by_hash.id == user.id

    by_id.name = "Alice"
    by_id.remember_hash = "hash-2"
    await db.save_user(by_id)
    reloaded = await db.find_user("id", user.id)
    assert reloaded.name == "Alice"
    assert reloaded.remember_hash == "hash-2"

    await db.delete_user(user.id)
    with pytest.raises(NotFound) as excinfo:
        await db.find_user("id", user.id)
    assert excinfo.value.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_ids_are_not_reused(db: Database) -> None:
    first = await db.insert_user(_user("one@example.com", "hash-1"))
    await db.delete_user(first.id)
    second = await db.insert_user(_user("two@example.com", "hash-2"))
    assert second.id > first.id


@pytest.mark.asyncio
async def test_find_user_only_allows_known_fields(db: Database) -> None:
    with pytest.raises(ValueError):
        await db.find_user("password_hash", "hashed")


@pytest.mark.asyncio
async def test_unique_columns_raise_conflicts(db: Database) -> None:
    await db.insert_user(_user("alice@example.com", "hash-1"))
    with pytest.raises(PersistenceError) as dup_email:
        await db.insert_user(_user("alice@example.com", "hash-2"))
    with pytest.raises(PersistenceError) as dup_token:
        await db.insert_user(_user("bob@example.com", "hash-1"))
    assert dup_email.value.kind is ErrorKind.CONFLICT
    assert dup_token.value.kind is ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_save_missing_user_is_not_found(db: Database) -> None:
    ghost = _user("ghost@example.com", "hash-9")
    ghost.meta.id = 999
    with pytest.raises(NotFound):
        await db.save_user(ghost)


@pytest.mark.asyncio
async def test_gallery_lifecycle(db: Database) -> None:
    owner = await db.insert_user(_user("owner@example.com", "hash-1"))
    first = await db.insert_gallery(Gallery(user_id=owner.id, title="Holiday"))
    second = await db.insert_gallery(Gallery(user_id=owner.id, title="Birthday"))

    listed = await db.galleries_for_user(owner.id)
    assert [g.title for g in listed] == ["Holiday", "Birthday"]

    first.title = "Summer holiday"
    await db.save_gallery(first)
    assert (await db.find_gallery(first.id)).title == "Summer holiday"

    await db.delete_gallery(second.id)
    with pytest.raises(NotFound):
        await db.find_gallery(second.id)


@pytest.mark.asyncio
async def test_deleting_user_cascades_to_galleries(db: Database) -> None:
    owner = await db.insert_user(_user("owner@example.com", "hash-1"))
    gallery = await db.insert_gallery(Gallery(user_id=owner.id, title="Holiday"))
    await db.delete_user(owner.id)
    with pytest.raises(NotFound):
        await db.find_gallery(gallery.id)


@pytest.mark.asyncio
async def test_gallery_needs_existing_owner(db: Database) -> None:
    with pytest.raises(PersistenceError) as excinfo:
        await db.insert_gallery(Gallery(user_id=12345, title="Orphan"))
    assert excinfo.value.kind is ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_pw_reset_lifecycle(db: Database) -> None:
    user = await db.insert_user(_user("a@example.com", "hash-1"))
    reset = await db.insert_pw_reset(PwReset(user_id=user.id, token_hash="reset-hash"))
    assert reset.id > 0
    assert reset.created_at

    found = await db.find_pw_reset("reset-hash")
    assert (found.id, found.user_id, found.created_at) == (reset.id, user.id, reset.created_at)

    with pytest.raises(PersistenceError) as excinfo:
        await db.insert_pw_reset(PwReset(user_id=user.id, token_hash="reset-hash"))
    assert excinfo.value.kind is ErrorKind.CONFLICT

    await db.delete_pw_reset(reset.id)
    with pytest.raises(NotFound):
        await db.find_pw_reset("reset-hash")


@pytest.mark.asyncio
async def test_deleting_user_cascades_to_pw_resets(db: Database) -> None:
    user = await db.insert_user(_user("a@example.com", "hash-1"))
    await db.insert_pw_reset(PwReset(user_id=user.id, token_hash="reset-hash"))
    await db.delete_user(user.id)
    with pytest.raises(NotFound):
        await db.find_pw_reset("reset-hash")
