from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Sequence

import aiosqlite

from config import DEFAULT_DB_PATH
from errors import ErrorKind, NotFound, PersistenceError

# Only equality lookups on these columns are ever issued against users.
USER_LOOKUP_FIELDS = frozenset({"id", "email", "remember_hash"})

_USER_COLUMNS = "id, name, email, password_hash, remember_hash, created_at, updated_at"
_GALLERY_COLUMNS = "id, user_id, title, created_at, updated_at"
_PW_RESET_COLUMNS = "id, user_id, token_hash, created_at"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    """Emails are stored and compared stripped and lowercased."""
    return (email or "").strip().lower()


@dataclass
class RecordMeta:
    id: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class User:
    email: str
    name: str = ""
    password: str = field(default="", repr=False)
    password_hash: str = field(default="", repr=False)
    remember: str = field(default="", repr=False)
    remember_hash: str = field(default="", repr=False)
    meta: RecordMeta = field(default_factory=RecordMeta)

    @property
    def id(self) -> int:
        return self.meta.id


@dataclass
class Gallery:
    user_id: int
    title: str
    meta: RecordMeta = field(default_factory=RecordMeta)

    @property
    def id(self) -> int:
        return self.meta.id


def _user_from_row(row: aiosqlite.Row) -> User:
    return User(
        name=row["name"],
        email=row["email"],
        password_hash=row["password_hash"],
        remember_hash=row["remember_hash"],
        meta=RecordMeta(
            id=int(row["id"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        ),
    )


@dataclass
class PwReset:
    """A pending password reset; only the token's lookup hash is stored."""

    user_id: int
    token_hash: str
    id: int = 0
    created_at: str = ""


def _gallery_from_row(row: aiosqlite.Row) -> Gallery:
    return Gallery(
        user_id=int(row["user_id"]),
        title=row["title"],
        meta=RecordMeta(
            id=int(row["id"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        ),
    )


class Database:
    """Lightweight wrapper around aiosqlite for users and galleries."""

    def __init__(self, db_path: Path = DEFAULT_DB_PATH) -> None:
        self.db_path = db_path

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection with foreign-key support and translate driver errors."""
        try:
            async with aiosqlite.connect(self.db_path) as conn:
                conn.row_factory = aiosqlite.Row
                await conn.execute("PRAGMA foreign_keys = ON;")
                yield conn
        except aiosqlite.IntegrityError as exc:
            raise PersistenceError(str(exc), kind=ErrorKind.CONFLICT) from exc
        except aiosqlite.Error as exc:
            raise PersistenceError(str(exc)) from exc

    async def initialize(self) -> None:
        """Create directories and ensure the tables exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connection() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL DEFAULT '',
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    remember_hash TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS galleries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_galleries_user_id ON galleries(user_id)"
            )
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pw_resets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    token_hash TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                )
                """
            )
            await conn.commit()

    async def fetch_one(
        self, query: str, params: Sequence[Any]
    ) -> Optional[aiosqlite.Row]:
        """Execute a single-row SELECT statement with given parameters."""
        async with self._connection() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
            await cursor.close()
            return row

    async def fetch_all(self, query: str, params: Sequence[Any]) -> list[aiosqlite.Row]:
        async with self._connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return list(rows)

    async def _execute(self, query: str, params: Sequence[Any]) -> aiosqlite.Cursor:
        async with self._connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor

    # Users

    async def find_user(self, field_name: str, value: Any) -> User:
        """Return the user whose ``field_name`` equals ``value`` or raise NotFound."""
        if field_name not in USER_LOOKUP_FIELDS:
            raise ValueError(f"users cannot be looked up by {field_name!r}")
        if field_name == "email":
            value = normalize_email(value)
        row = await self.fetch_one(
            f"SELECT {_USER_COLUMNS} FROM users WHERE {field_name} = ?",
            (value,),
        )
        if row is None:
            raise NotFound(f"no user with {field_name} matching")
        return _user_from_row(row)

    async def insert_user(self, user: User) -> User:
        """Insert a new user and fill in its record metadata."""
        now = _now_iso()
        user.email = normalize_email(user.email)
        cursor = await self._execute(
            """
            INSERT INTO users (name, email, password_hash, remember_hash, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user.name, user.email, user.password_hash, user.remember_hash, now, now),
        )
        if cursor.lastrowid is None:
            raise PersistenceError("Failed to read the inserted user ID.")
        user.meta = RecordMeta(id=int(cursor.lastrowid), created_at=now, updated_at=now)
        return user

    async def save_user(self, user: User) -> User:
        """Write every persisted field of an existing user."""
        now = _now_iso()
        user.email = normalize_email(user.email)
        cursor = await self._execute(
            """
            UPDATE users
            SET name = ?, email = ?, password_hash = ?, remember_hash = ?, updated_at = ?
            WHERE id = ?
            """,
            (user.name, user.email, user.password_hash, user.remember_hash, now, user.id),
        )
        if cursor.rowcount == 0:
            raise NotFound(f"no user with id {user.id}")
        user.meta.updated_at = now
        return user

    async def delete_user(self, user_id: int) -> None:
        await self._execute("DELETE FROM users WHERE id = ?", (user_id,))

    # Galleries

    async def insert_gallery(self, gallery: Gallery) -> Gallery:
        now = _now_iso()
        cursor = await self._execute(
            "INSERT INTO galleries (user_id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (gallery.user_id, gallery.title, now, now),
        )
        if cursor.lastrowid is None:
            raise PersistenceError("Failed to read the inserted gallery ID.")
        gallery.meta = RecordMeta(id=int(cursor.lastrowid), created_at=now, updated_at=now)
        return gallery

    async def find_gallery(self, gallery_id: int) -> Gallery:
        row = await self.fetch_one(
            f"SELECT {_GALLERY_COLUMNS} FROM galleries WHERE id = ?",
            (gallery_id,),
        )
        if row is None:
            raise NotFound(f"no gallery with id {gallery_id}")
        return _gallery_from_row(row)

    async def galleries_for_user(self, user_id: int) -> list[Gallery]:
        """List a user's galleries, oldest first."""
        rows = await self.fetch_all(
            f"SELECT {_GALLERY_COLUMNS} FROM galleries WHERE user_id = ? ORDER BY id ASC",
            (user_id,),
        )
        return [_gallery_from_row(row) for row in rows]

    async def save_gallery(self, gallery: Gallery) -> Gallery:
        now = _now_iso()
        cursor = await self._execute(
            "UPDATE galleries SET title = ?, updated_at = ? WHERE id = ?",
            (gallery.title, now, gallery.id),
        )
        if cursor.rowcount == 0:
            raise NotFound(f"no gallery with id {gallery.id}")
        gallery.meta.updated_at = now
        return gallery

    async def delete_gallery(self, gallery_id: int) -> None:
        await self._execute("DELETE FROM galleries WHERE id = ?", (gallery_id,))

    # Password resets

    async def insert_pw_reset(self, reset: PwReset) -> PwReset:
        created_at = _now_iso()
        cursor = await self._execute(
            "INSERT INTO pw_resets (user_id, token_hash, created_at) VALUES (?, ?, ?)",
            (reset.user_id, reset.token_hash, created_at),
        )
        if cursor.lastrowid is None:
            raise PersistenceError("Failed to read the inserted password reset ID.")
        reset.id = int(cursor.lastrowid)
        reset.created_at = created_at
        return reset

    async def find_pw_reset(self, token_hash: str) -> PwReset:
        row = await self.fetch_one(
            f"SELECT {_PW_RESET_COLUMNS} FROM pw_resets WHERE token_hash = ?",
            (token_hash,),
        )
        if row is None:
            raise NotFound("no password reset matching")
        return PwReset(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            token_hash=row["token_hash"],
            created_at=row["created_at"],
        )

    async def delete_pw_reset(self, reset_id: int) -> None:
        await self._execute("DELETE FROM pw_resets WHERE id = ?", (reset_id,))
