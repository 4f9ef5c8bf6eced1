from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio

from auth import UserService
from config import Settings
from database import Database, User
from galleries import GalleryService
from storage import LocalImageStore


class FakeRequest:
    """Just enough of a Robyn request for the filters and controllers."""

    __test__ = False

    def __init__(
        self,
        method: str = "GET",
        path: str = "/",
        *,
        cookies: Optional[Dict[str, str]] = None,
        form: Optional[Dict[str, str]] = None,
        path_params: Optional[Dict[str, str]] = None,
        files: Optional[Dict[str, bytes]] = None,
        headers: Optional[Dict[str, str]] = None,
        query: Optional[Dict[str, str]] = None,
        body: bytes = b"",
    ) -> None:
        self.method = method
        self.url = SimpleNamespace(path=path)
        self.headers: Dict[str, str] = dict(headers or {})
        if cookies:
            self.headers["cookie"] = "; ".join(f"{k}={v}" for k, v in cookies.items())
        self.form_data = dict(form or {})
        self.path_params = dict(path_params or {})
        self.files = dict(files or {})
        self.query_params: Dict[str, str] = dict(query or {})
        self.body = body


class RecordingResponse:
    __test__ = False

    def __init__(self) -> None:
        self.status_code = 200
        self.cookies: Dict[str, Dict[str, Any]] = {}

    def set_cookie(self, key: str, value: str, **kwargs: Any) -> None:
        self.cookies[key] = {"value": value, **kwargs}


def body_of(response: Any) -> str:
    description = response.description
    if isinstance(description, (bytes, bytearray)):
        return bytes(description).decode("utf-8")
    return str(description)


def location_of(response: Any) -> Optional[str]:
    return response.headers.get("location")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        pepper="test-pepper",
        hmac_key="test-hmac-key",
        db_path=tmp_path / "gallery.db",
        image_dir=tmp_path / "images",
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> Database:
    database = Database(settings.db_path)
    await database.initialize()
    return database


@pytest.fixture
def users(db: Database, settings: Settings) -> UserService:
    return UserService(db, settings)


@pytest.fixture
def galleries(db: Database) -> GalleryService:
    return GalleryService(db)


@pytest.fixture
def image_store(settings: Settings) -> LocalImageStore:
    return LocalImageStore(settings.image_dir)


@pytest_asyncio.fixture
async def alice(users: UserService) -> User:
    return await users.create(User(name="Alice", email="alice@example.com", password="password123"))
