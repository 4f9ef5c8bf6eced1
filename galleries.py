from __future__ import annotations

import logging

from database import Database, Gallery
from errors import InvalidID, NotFound

logger = logging.getLogger(__name__)


class TitleRequired(ValueError):
    """Raised when a gallery would be saved without a title."""


def _check_id(value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidID()


def _clean_title(title: str) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise TitleRequired("Title is required.")
    return cleaned


class GalleryService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def by_id(self, gallery_id: int) -> Gallery:
        _check_id(gallery_id)
        return await self.db.find_gallery(gallery_id)

    async def by_user_id(self, user_id: int) -> list[Gallery]:
        _check_id(user_id)
        return await self.db.galleries_for_user(user_id)

    async def owned_by(self, gallery_id: int, user_id: int) -> Gallery:
        """Return the gallery only if ``user_id`` owns it; otherwise it does not exist."""
        gallery = await self.by_id(gallery_id)
        if gallery.user_id != user_id:
            raise NotFound(f"no gallery with id {gallery_id}")
        return gallery

    async def create(self, gallery: Gallery) -> Gallery:
        _check_id(gallery.user_id)
        gallery.title = _clean_title(gallery.title)
        await self.db.insert_gallery(gallery)
        logger.info("gallery created gallery_id=%s user_id=%s", gallery.id, gallery.user_id)
        return gallery

    async def update(self, gallery: Gallery) -> Gallery:
        _check_id(gallery.id)
        gallery.title = _clean_title(gallery.title)
        return await self.db.save_gallery(gallery)

    async def delete(self, gallery_id: int) -> None:
        _check_id(gallery_id)
        await self.db.delete_gallery(gallery_id)
        logger.info("gallery deleted gallery_id=%s", gallery_id)
