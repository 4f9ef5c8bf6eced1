from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_ID = "invalid_id"
    INVALID_CREDENTIALS = "invalid_credentials"
    HASHING = "hashing"
    ENTROPY = "entropy"
    CONFLICT = "conflict"
    PERSISTENCE = "persistence"


class GalleryError(Exception):
    """Base class for every failure raised by the gallery services."""

    kind: ErrorKind = ErrorKind.PERSISTENCE

    def __init__(self, message: str = "", *, kind: ErrorKind | None = None) -> None:
        if kind is not None:
            self.kind = kind
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return self.kind.value.replace("_", " ")


class NotFound(GalleryError):
    kind = ErrorKind.NOT_FOUND

    def default_message(self) -> str:
        return "resource not found"


class InvalidID(GalleryError):
    kind = ErrorKind.INVALID_ID

    def default_message(self) -> str:
        return "invalid ID"


class InvalidCredentials(GalleryError):
    kind = ErrorKind.INVALID_CREDENTIALS

    def default_message(self) -> str:
        return "incorrect password provided"


class HashingError(GalleryError):
    kind = ErrorKind.HASHING


class EntropySourceError(GalleryError):
    kind = ErrorKind.ENTROPY

    def default_message(self) -> str:
        return "secure random source unavailable"


class PersistenceError(GalleryError):
    """Opaque failure reported by the storage layer (kind CONFLICT or PERSISTENCE)."""

    kind = ErrorKind.PERSISTENCE
