from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from passlib.context import CryptContext

from config import Settings
from database import Database, PwReset, User, normalize_email
from errors import (
    EntropySourceError,
    HashingError,
    InvalidCredentials,
    InvalidID,
    NotFound,
)

logger = logging.getLogger(__name__)

REMEMBER_COOKIE_NAME = "remember_token"
CSRF_COOKIE_NAME = "gallery_csrf"
REMEMBER_TOKEN_BYTES = 32
REMEMBER_MAX_AGE = 60 * 60 * 24 * 365  # 1 year
RESET_TOKEN_TTL = timedelta(hours=12)
BCRYPT_MAX_BYTES = 72

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def generate_token(nbytes: int = REMEMBER_TOKEN_BYTES) -> str:
    """Return a URL-safe token drawn from the operating system CSPRNG."""
    if nbytes < REMEMBER_TOKEN_BYTES:
        raise ValueError(f"tokens need at least {REMEMBER_TOKEN_BYTES} bytes of entropy")
    try:
        return secrets.token_urlsafe(nbytes)
    except (OSError, NotImplementedError) as exc:
        raise EntropySourceError() from exc


def is_valid_id(value: object) -> bool:
    """Record ids are positive ints; bool is an int subclass and never an id."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class HMAC:
    """Keyed SHA-256 digest used to turn remember tokens into lookup hashes."""

    def __init__(self, key: str) -> None:
        if not key:
            raise ValueError("HMAC key must not be empty")
        self._key = key.encode("utf-8")

    def hash(self, value: str) -> str:
        digest = hmac.new(self._key, value.encode("utf-8"), hashlib.sha256).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii")


class RememberTokenIssuer:
    """Mints remember tokens and resolves presented tokens back to users."""

    def __init__(self, db: Database, hmac_key: str) -> None:
        self.db = db
        self._hmac = HMAC(hmac_key)

    def generate_token(self) -> str:
        return generate_token()

    def derive_lookup_hash(self, token: str) -> str:
        """Deterministic: the same token always maps to the same stored hash."""
        return self._hmac.hash(token)

    def issue(self, user: User) -> User:
        """Give ``user`` a plaintext token (unless it has one) and its lookup hash."""
        if not user.remember:
            user.remember = self.generate_token()
        user.remember_hash = self.derive_lookup_hash(user.remember)
        return user

    async def resolve(self, token: str) -> User:
        if not token:
            raise NotFound("empty remember token")
        return await self.db.find_user("remember_hash", self.derive_lookup_hash(token))

    async def rotate(self, user: User) -> User:
        """Replace the user's token so that previously issued cookies stop resolving."""
        user.remember = ""
        self.issue(user)
        return await self.db.save_user(user)


class PasswordCredentialManager:
    """Hashes and checks peppered bcrypt passwords."""

    def __init__(self, db: Database, pepper: str, tokens: RememberTokenIssuer) -> None:
        if not pepper:
            raise ValueError("pepper must not be empty")
        self.db = db
        self._pepper = pepper
        self.tokens = tokens

    def _peppered(self, plain: str) -> str:
        return plain + self._pepper

    def _fits(self, plain: str) -> bool:
        return len(self._peppered(plain).encode("utf-8")) <= BCRYPT_MAX_BYTES

    def hash_password(self, plain: str) -> str:
        if not plain:
            raise HashingError("password must not be empty")
        if not self._fits(plain):
            raise HashingError("password is too long")
        try:
            return pwd_context.hash(self._peppered(plain))
        except (ValueError, TypeError) as exc:
            raise HashingError(str(exc)) from exc

    def verify_password(self, plain: str, hashed: str) -> bool:
        """Compare a plaintext password against the stored hash."""
        if not plain or not self._fits(plain):
            return False
        try:
            return pwd_context.verify(self._peppered(plain), hashed)
        except (ValueError, TypeError) as exc:
            raise HashingError(str(exc)) from exc

    async def create(self, user: User) -> User:
        """Hash the password, mint a remember token and insert the user."""
        user.password_hash = self.hash_password(user.password)
        user.password = ""
        self.tokens.issue(user)
        await self.db.insert_user(user)
        logger.info("user created user_id=%s", user.id)
        return user

    async def authenticate(self, email: str, password: str) -> User:
        user = await self.db.find_user("email", normalize_email(email))
        if not self.verify_password(password, user.password_hash):
            raise InvalidCredentials()
        return user

    async def change_password(self, user: User, new_password: str) -> User:
        user.password_hash = self.hash_password(new_password)
        user.password = ""
        await self.db.save_user(user)
        logger.info("password changed user_id=%s", user.id)
        return user


class UserService:
    """Entry point the web layer uses for every account operation."""

    def __init__(self, db: Database, settings: Settings) -> None:
        self.db = db
        self.tokens = RememberTokenIssuer(db, settings.hmac_key)
        self.passwords = PasswordCredentialManager(db, settings.pepper, self.tokens)

    async def by_id(self, user_id: int) -> User:
        return await self.db.find_user("id", user_id)

    async def by_email(self, email: str) -> User:
        return await self.db.find_user("email", email)

    async def by_remember(self, token: str) -> User:
        return await self.tokens.resolve(token)

    async def create(self, user: User) -> User:
        return await self.passwords.create(user)

    async def authenticate(self, email: str, password: str) -> User:
        return await self.passwords.authenticate(email, password)

    async def update(self, user: User) -> User:
        if user.remember:
            user.remember_hash = self.tokens.derive_lookup_hash(user.remember)
        return await self.db.save_user(user)

    async def delete(self, user_id: int) -> None:
        if not is_valid_id(user_id):
            raise InvalidID()
        await self.db.delete_user(user_id)
        logger.info("user deleted user_id=%s", user_id)

    async def sign_in(self, user: User) -> str:
        """Make sure the user holds a plaintext token, persist its hash and return it."""
        if not user.remember:
            self.tokens.issue(user)
            await self.update(user)
        return user.remember

    async def sign_out(self, user: User) -> None:
        await self.tokens.rotate(user)

    async def initiate_reset(self, email: str) -> str:
        """Record a single-use reset for ``email`` and return the plaintext token."""
        user = await self.db.find_user("email", email)
        token = generate_token()
        reset = PwReset(user_id=user.id, token_hash=self.tokens.derive_lookup_hash(token))
        await self.db.insert_pw_reset(reset)
        logger.info("password reset started user_id=%s", user.id)
        return token

    async def complete_reset(self, token: str, new_password: str) -> User:
        """Consume a reset token and set the new password.

        Unknown, already used and expired tokens all raise NotFound. The reset
        row is only removed once the new password has been stored, so a
        rejected password leaves the token usable.
        """
        if not token:
            raise NotFound("empty reset token")
        reset = await self.db.find_pw_reset(self.tokens.derive_lookup_hash(token))
        created = datetime.fromisoformat(reset.created_at)
        if datetime.now(timezone.utc) - created > RESET_TOKEN_TTL:
            await self.db.delete_pw_reset(reset.id)
            raise NotFound("password reset expired")
        user = await self.db.find_user("id", reset.user_id)
        await self.passwords.change_password(user, new_password)
        await self.db.delete_pw_reset(reset.id)
        logger.info("password reset completed user_id=%s", user.id)
        return user


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def verify_csrf_token(cookie_value: Optional[str], form_value: Optional[str]) -> bool:
    """Double-submit check: the form must echo the cookie exactly."""
    if not cookie_value or not form_value:
        return False
    return hmac.compare_digest(cookie_value, form_value)


def cookie_settings(*, secure: bool = False, max_age: int = REMEMBER_MAX_AGE) -> Dict[str, Any]:
    """Standard cookie arguments that make credential cookies httponly and samesite=lax."""
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": secure,
        "max_age": max_age,
        "path": "/",
    }


def cookie_clear_settings(*, secure: bool = False) -> Dict[str, Any]:
    """Special cookie instructions required to immediately forget a credential."""
    return {
        "max_age": 0,
        "expires": "Thu, 01 Jan 1970 00:00:00 GMT",
        "path": "/",
        "secure": secure,
        "httponly": True,
        "samesite": "lax",
    }
