from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_DB_PATH = BASE_DIR / "data" / "gallery.db"
DEFAULT_IMAGE_DIR = BASE_DIR / "images"

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(RuntimeError):
    """Raised when a required setting is missing at startup."""


@dataclass(frozen=True)
class B2Settings:
    key_id: str
    app_key: str
    bucket_name: str


@dataclass(frozen=True)
class Settings:
    pepper: str
    hmac_key: str
    db_path: Path = DEFAULT_DB_PATH
    image_dir: Path = DEFAULT_IMAGE_DIR
    secure_cookies: bool = False
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8080
    base_url: str = "http://127.0.0.1:8080"
    b2: Optional[B2Settings] = None


def _required(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise ConfigError(f"{name} must be set before the server starts")
    return value


def _b2_settings(env: Mapping[str, str]) -> Optional[B2Settings]:
    """Only enable B2 uploads when the full credential triple is present."""
    key_id = env.get("KEY_ID")
    app_key = env.get("APP_KEY")
    bucket_name = env.get("BUCKET_NAME")
    if key_id and app_key and bucket_name:
        return B2Settings(key_id=key_id, app_key=app_key, bucket_name=bucket_name)
    return None


def load_settings(
    env: Mapping[str, str] | None = None, *, dotenv: bool = True
) -> Settings:
    """Build the process settings from the environment (and a .env file)."""
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ
    host = env.get("ROBYN_HOST") or "127.0.0.1"
    port = int(env.get("ROBYN_PORT") or 8080)
    return Settings(
        pepper=_required(env, "GALLERY_PEPPER"),
        hmac_key=_required(env, "GALLERY_HMAC_KEY"),
        db_path=Path(env.get("GALLERY_DB_PATH") or DEFAULT_DB_PATH),
        image_dir=Path(env.get("GALLERY_IMAGE_DIR") or DEFAULT_IMAGE_DIR),
        secure_cookies=(env.get("GALLERY_SECURE_COOKIES") or "").lower() in _TRUTHY,
        log_level=env.get("GALLERY_LOG_LEVEL") or "INFO",
        host=host,
        port=port,
        base_url=env.get("GALLERY_BASE_URL") or f"http://{host}:{port}",
        b2=_b2_settings(env),
    )
