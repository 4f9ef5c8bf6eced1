"""Request filters that resolve the caller's identity and guard protected pages.

Each filter implements ``process(ctx, call_next)`` and a :class:`Pipeline`
composes an explicit, ordered list of them around a handler. A fresh
:class:`RequestContext` is created for every request; nothing is kept between
requests apart from what the database stores.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Sequence
from urllib.parse import parse_qs

from robyn import Response

from auth import (
    CSRF_COOKIE_NAME,
    REMEMBER_COOKIE_NAME,
    UserService,
    cookie_clear_settings,
    cookie_settings,
    generate_csrf_token,
    verify_csrf_token,
)
from database import User
from errors import GalleryError, NotFound

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
CSRF_MAX_AGE = 60 * 60 * 24  # 1 day
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def get_cookie_value(request: Any, name: str) -> Optional[str]:
    """Extract a single cookie value from the request headers."""
    cookie_header = request.headers.get("cookie")
    if not cookie_header:
        return None
    for chunk in cookie_header.split(";"):
        key, sep, value = chunk.strip().partition("=")
        if not sep:
            continue
        if key.strip() == name:
            return value
    return None


def _raw_body_bytes(request: Any) -> bytes:
    raw_body = getattr(request, "body", None)
    if isinstance(raw_body, (bytes, bytearray)):
        return bytes(raw_body)
    if isinstance(raw_body, list):
        return bytes(raw_body)
    if isinstance(raw_body, str):
        return raw_body.encode("utf-8")
    return b""


def form_data(request: Any) -> Dict[str, str]:
    """Return form fields, including urlencoded fallback parsing for Robyn 0.77."""
    native = getattr(request, "form_data", None) or {}
    if native:
        return {str(k): str(v) for k, v in native.items()}
    content_type = (request.headers.get("content-type") or "").lower()
    if "application/x-www-form-urlencoded" not in content_type:
        return {}
    parsed = parse_qs(
        _raw_body_bytes(request).decode("utf-8", errors="replace"),
        keep_blank_values=True,
    )
    return {key: values[0] if values else "" for key, values in parsed.items()}


def redirect(location: str) -> Response:
    """Send a 303 redirect to the user agent."""
    return Response(
        status_code=303,
        headers={"location": location},
        description="",
    )


def html_response(body: str, *, status: int = 200) -> Response:
    """Wrap an HTML body inside a minimal Robyn response."""
    return Response(
        status_code=status,
        headers={"content-type": "text/html; charset=utf-8"},
        description=body,
    )


@dataclass
class RequestContext:
    """Per-request state shared by the filters and the final handler."""

    request: Any
    user: Optional[User] = None
    csrf_token: Optional[str] = None
    set_csrf: bool = False
    remember_token: Optional[str] = None
    clear_remember: bool = False
    _form: Optional[Dict[str, str]] = field(default=None, repr=False)

    @property
    def form(self) -> Dict[str, str]:
        if self._form is None:
            self._form = form_data(self.request)
        return self._form

    @property
    def method(self) -> str:
        return str(getattr(self.request, "method", "GET") or "GET").upper()

    @property
    def path(self) -> str:
        url = getattr(self.request, "url", None)
        return getattr(url, "path", "") or ""

    def path_param(self, name: str) -> str:
        return str(self.request.path_params[name])

    def query_param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        params = getattr(self.request, "query_params", None)
        if params is None:
            return default
        return params.get(name, default)

    def sign_in(self, token: str) -> None:
        """Ask the cookie filter to hand ``token`` to the browser."""
        self.remember_token = token
        self.clear_remember = False

    def sign_out(self) -> None:
        self.user = None
        self.remember_token = None
        self.clear_remember = True


Handler = Callable[[RequestContext], Awaitable[Response]]


class Filter(Protocol):
    async def process(self, ctx: RequestContext, call_next: Handler) -> Response: ...


class Pipeline:
    """An ordered list of filters; the first filter sees the request first."""

    def __init__(self, filters: Sequence[Filter] = ()) -> None:
        self.filters = tuple(filters)

    def then(self, *filters: Filter) -> "Pipeline":
        return Pipeline(self.filters + filters)

    async def run(self, request: Any, handler: Handler) -> Response:
        return await self._dispatch(handler, 0, RequestContext(request=request))

    async def _dispatch(self, handler: Handler, index: int, ctx: RequestContext) -> Response:
        if index >= len(self.filters):
            return await handler(ctx)
        call_next = partial(self._dispatch, handler, index + 1)
        return await self.filters[index].process(ctx, call_next)


class CookieFilter:
    """Writes the cookie changes that later stages recorded on the context."""

    def __init__(self, *, secure: bool = False) -> None:
        self.secure = secure

    async def process(self, ctx: RequestContext, call_next: Handler) -> Response:
        response = await call_next(ctx)
        if ctx.remember_token:
            response.set_cookie(
                REMEMBER_COOKIE_NAME,
                ctx.remember_token,
                **cookie_settings(secure=self.secure),
            )
        elif ctx.clear_remember:
            response.set_cookie(
                REMEMBER_COOKIE_NAME, "", **cookie_clear_settings(secure=self.secure)
            )
        if ctx.set_csrf and ctx.csrf_token:
            response.set_cookie(
                CSRF_COOKIE_NAME,
                ctx.csrf_token,
                **cookie_settings(secure=self.secure, max_age=CSRF_MAX_AGE),
            )
        return response


class CsrfFilter:
    """Double-submit CSRF protection for every state-changing request."""

    async def process(self, ctx: RequestContext, call_next: Handler) -> Response:
        cookie_token = get_cookie_value(ctx.request, CSRF_COOKIE_NAME)
        if ctx.method not in SAFE_METHODS:
            if not verify_csrf_token(cookie_token, ctx.form.get("csrf_token")):
                logger.warning("csrf rejected method=%s path=%s", ctx.method, ctx.path)
                return html_response("CSRF validation failed. Please try again.", status=400)
        if cookie_token:
            ctx.csrf_token = cookie_token
        else:
            ctx.csrf_token = generate_csrf_token()
            ctx.set_csrf = True
        return await call_next(ctx)


class IdentityFilter:
    """Attach the user behind the remember cookie, if any. Never blocks a request."""

    def __init__(self, users: UserService) -> None:
        self.users = users

    async def process(self, ctx: RequestContext, call_next: Handler) -> Response:
        token = get_cookie_value(ctx.request, REMEMBER_COOKIE_NAME)
        if token:
            try:
                ctx.user = await self.users.by_remember(token)
            except NotFound:
                ctx.clear_remember = True
            except GalleryError:
                logger.exception("identity lookup failed path=%s", ctx.path)
        return await call_next(ctx)


class RequireIdentityFilter:
    """Send anonymous requests to the login page instead of the wrapped handler."""

    def __init__(self, login_path: str = LOGIN_PATH) -> None:
        self.login_path = login_path

    async def process(self, ctx: RequestContext, call_next: Handler) -> Response:
        if ctx.user is None:
            return redirect(self.login_path)
        return await call_next(ctx)
