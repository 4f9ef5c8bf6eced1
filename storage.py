from __future__ import annotations

import asyncio
import logging
import mimetypes
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Protocol
from urllib.parse import quote

from b2sdk.v2 import B2Api, InMemoryAccountInfo
from b2sdk.v2.exception import FileNotPresent

from config import Settings
from errors import NotFound

logger = logging.getLogger(__name__)

SIGNED_URL_SECONDS = 300


@dataclass
class Image:
    gallery_id: int
    filename: str
    url: str


def safe_filename(filename: str) -> str:
    """Reduce an uploaded name to its final path component."""
    name = PurePosixPath((filename or "").replace("\\", "/")).name.strip()
    if not name or name in {".", ".."}:
        raise ValueError("Uploaded file needs a name.")
    return name


def gallery_prefix(gallery_id: int) -> str:
    return f"galleries/{gallery_id}"


class ImageStore(Protocol):
    async def save(self, gallery_id: int, filename: str, data: bytes) -> Image: ...

    async def by_gallery_id(self, gallery_id: int) -> list[Image]: ...

    async def delete(self, gallery_id: int, filename: str) -> None: ...

    async def delete_all(self, gallery_id: int) -> None: ...


class LocalImageStore:
    """Keeps images on disk under ``<root>/galleries/<id>/`` and serves them statically."""

    def __init__(self, root: Path, *, url_prefix: str = "/images") -> None:
        self.root = root
        self.url_prefix = url_prefix.rstrip("/")

    def _dir(self, gallery_id: int) -> Path:
        return self.root / gallery_prefix(gallery_id)

    def _image(self, gallery_id: int, filename: str) -> Image:
        url = f"{self.url_prefix}/{gallery_prefix(gallery_id)}/{quote(filename)}"
        return Image(gallery_id=gallery_id, filename=filename, url=url)

    async def save(self, gallery_id: int, filename: str, data: bytes) -> Image:
        name = safe_filename(filename)
        directory = self._dir(gallery_id)
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread((directory / name).write_bytes, data)
        logger.info("image stored gallery_id=%s filename=%s bytes=%s", gallery_id, name, len(data))
        return self._image(gallery_id, name)

    def _list_names(self, gallery_id: int) -> list[str]:
        directory = self._dir(gallery_id)
        if not directory.is_dir():
            return []
        return sorted(entry.name for entry in directory.iterdir() if entry.is_file())

    async def by_gallery_id(self, gallery_id: int) -> list[Image]:
        names = await asyncio.to_thread(self._list_names, gallery_id)
        return [self._image(gallery_id, name) for name in names]

    async def delete(self, gallery_id: int, filename: str) -> None:
        path = self._dir(gallery_id) / safe_filename(filename)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as exc:
            raise NotFound(f"no image {filename!r} in gallery {gallery_id}") from exc
        logger.info("image deleted gallery_id=%s filename=%s", gallery_id, path.name)

    def _remove_dir(self, gallery_id: int) -> None:
        directory = self._dir(gallery_id)
        if directory.is_dir():
            shutil.rmtree(directory)

    async def delete_all(self, gallery_id: int) -> None:
        await asyncio.to_thread(self._remove_dir, gallery_id)


class B2ImageStore:
    """Stores images in a Backblaze B2 bucket and hands out short-lived signed URLs."""

    def __init__(self, bucket: Any, *, valid_seconds: int = SIGNED_URL_SECONDS) -> None:
        self.bucket = bucket
        self.valid_seconds = valid_seconds

    def _key(self, gallery_id: int, filename: str) -> str:
        return f"{gallery_prefix(gallery_id)}/{filename}"

    def _signed_urls(self, gallery_id: int, filenames: list[str]) -> list[Image]:
        prefix = gallery_prefix(gallery_id)
        auth_token = self.bucket.get_download_authorization(
            prefix, valid_duration_in_seconds=self.valid_seconds
        )
        download_base = self.bucket.get_download_url("")
        return [
            Image(
                gallery_id=gallery_id,
                filename=name,
                url=f"{download_base}{quote(self._key(gallery_id, name))}?Authorization={auth_token}",
            )
            for name in filenames
        ]

    async def save(self, gallery_id: int, filename: str, data: bytes) -> Image:
        name = safe_filename(filename)
        content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        await asyncio.to_thread(
            self.bucket.upload_bytes,
            data,
            self._key(gallery_id, name),
            content_type=content_type,
        )
        logger.info("image uploaded to b2 gallery_id=%s filename=%s bytes=%s", gallery_id, name, len(data))
        images = await asyncio.to_thread(self._signed_urls, gallery_id, [name])
        return images[0]

    def _list_names(self, gallery_id: int) -> list[str]:
        prefix = gallery_prefix(gallery_id) + "/"
        names = []
        for file_version, _ in self.bucket.ls(prefix, recursive=True):
            names.append(file_version.file_name[len(prefix):])
        return sorted(name for name in names if name)

    async def by_gallery_id(self, gallery_id: int) -> list[Image]:
        names = await asyncio.to_thread(self._list_names, gallery_id)
        if not names:
            return []
        return await asyncio.to_thread(self._signed_urls, gallery_id, names)

    def _delete_key(self, key: str) -> None:
        try:
            file_version = self.bucket.get_file_info_by_name(key)
        except FileNotPresent as exc:
            raise NotFound(f"no image stored at {key}") from exc
        self.bucket.delete_file_version(file_version.id_, file_version.file_name)

    async def delete(self, gallery_id: int, filename: str) -> None:
        key = self._key(gallery_id, safe_filename(filename))
        await asyncio.to_thread(self._delete_key, key)
        logger.info("image deleted from b2 key=%s", key)

    async def delete_all(self, gallery_id: int) -> None:
        for name in await asyncio.to_thread(self._list_names, gallery_id):
            await asyncio.to_thread(self._delete_key, self._key(gallery_id, name))


def build_image_store(settings: Settings) -> ImageStore:
    """Use B2 when credentials are configured, the local image directory otherwise."""
    if settings.b2 is None:
        settings.image_dir.mkdir(parents=True, exist_ok=True)
        return LocalImageStore(settings.image_dir)
    info = InMemoryAccountInfo()
    b2_api = B2Api(info)
    b2_api.authorize_account("production", settings.b2.key_id, settings.b2.app_key)
    bucket = b2_api.get_bucket_by_name(settings.b2.bucket_name)
    logger.info("image storage using b2 bucket=%s", settings.b2.bucket_name)
    return B2ImageStore(bucket)
