from __future__ import annotations

from types import SimpleNamespace
from typing import Dict, List

import pytest
from b2sdk.v2.exception import FileNotPresent

from errors import NotFound
from storage import B2ImageStore, LocalImageStore, safe_filename


def test_safe_filename_strips_directories() -> None:
    assert safe_filename("../../etc/passwd") == "passwd"
    assert safe_filename("C:\\photos\\cat.jpg") == "cat.jpg"
    for bad in ("", "..", "photos/.."):
        with pytest.raises(ValueError):
            safe_filename(bad)


@pytest.mark.asyncio
async def test_local_store_round_trip(image_store: LocalImageStore) -> None:
    saved = await image_store.save(7, "beach day.jpg", b"jpeg-bytes")
    assert saved.url == "/images/galleries/7/beach%20day.jpg"
    assert (image_store.root / "galleries" / "7" / "beach day.jpg").read_bytes() == b"jpeg-bytes"

    await image_store.save(7, "another.png", b"png-bytes")
    listed = await image_store.by_gallery_id(7)
    assert [image.filename for image in listed] == ["another.png", "beach day.jpg"]
    assert await image_store.by_gallery_id(8) == []

    await image_store.delete(7, "another.png")
    assert [image.filename for image in await image_store.by_gallery_id(7)] == ["beach day.jpg"]
    with pytest.raises(NotFound):
        await image_store.delete(7, "another.png")

    await image_store.delete_all(7)
    assert await image_store.by_gallery_id(7) == []


class FakeBucket:
    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.deleted: List[str] = []

    def upload_bytes(self, data: bytes, file_name: str, content_type: str = "") -> None:
        self.files[file_name] = data

    def ls(self, prefix: str, recursive: bool = False):
        for name in sorted(self.files):
            if name.startswith(prefix):
                yield SimpleNamespace(file_name=name), None

    def get_download_authorization(self, prefix: str, valid_duration_in_seconds: int) -> str:
        return f"auth-{prefix}-{valid_duration_in_seconds}"

    def get_download_url(self, file_name: str) -> str:
        return "https://f000.example.com/file/bucket/" + file_name

    def get_file_info_by_name(self, file_name: str):
        if file_name not in self.files:
            raise FileNotPresent()
        return SimpleNamespace(id_=f"id-{file_name}", file_name=file_name)

    def delete_file_version(self, file_id: str, file_name: str) -> None:
        self.deleted.append(file_name)
        del self.files[file_name]


@pytest.mark.asyncio
async def test_b2_store_uses_signed_urls() -> None:
    bucket = FakeBucket()
    store = B2ImageStore(bucket, valid_seconds=60)

    saved = await store.save(3, "cat.jpg", b"meow")
    assert bucket.files == {"galleries/3/cat.jpg": b"meow"}
    assert saved.url == (
        "https://f000.example.com/file/bucket/galleries/3/cat.jpg?Authorization=auth-galleries/3-60"
    )

    await store.save(3, "dog.jpg", b"woof")
    await store.save(30, "other.jpg", b"x")
    assert [image.filename for image in await store.by_gallery_id(3)] == ["cat.jpg", "dog.jpg"]

    await store.delete(3, "cat.jpg")
    assert bucket.deleted == ["galleries/3/cat.jpg"]
    with pytest.raises(NotFound):
        await store.delete(3, "cat.jpg")

    await store.delete_all(3)
    assert list(bucket.files) == ["galleries/30/other.jpg"]


@pytest.mark.asyncio
async def test_local_store_runs_disk_io_off_the_event_loop(
    image_store: LocalImageStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    import asyncio

    import storage

    offloaded: List[str] = []
    real_to_thread = asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(getattr(func, "__name__", repr(func)))
        return await real_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(storage.asyncio, "to_thread", recording_to_thread)

    await image_store.save(3, "cat.jpg", b"meow")
    await image_store.by_gallery_id(3)
    await image_store.delete(3, "cat.jpg")
    await image_store.delete_all(3)

    assert offloaded == ["mkdir", "write_bytes", "_list_names", "unlink", "_remove_dir"]
