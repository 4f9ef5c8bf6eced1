from __future__ import annotations

import logging
from typing import Any, Dict
from urllib.parse import unquote

from robyn import Response

from auth import UserService
from database import Gallery, User
from errors import (
    EntropySourceError,
    ErrorKind,
    HashingError,
    InvalidCredentials,
    InvalidID,
    NotFound,
    PersistenceError,
)
from galleries import GalleryService, TitleRequired
from mail import Emailer
from middleware import RequestContext, redirect
from storage import ImageStore
from views import not_found, render

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


class Static:
    async def home(self, ctx: RequestContext) -> Response:
        return render(ctx, "home.html")

    async def contact(self, ctx: RequestContext) -> Response:
        return render(ctx, "contact.html")


class Users:
    """Sign up, log in, log out and reset forgotten passwords."""

    def __init__(self, users: UserService, emailer: Emailer) -> None:
        self.users = users
        self.emailer = emailer

    async def new(self, ctx: RequestContext) -> Response:
        if ctx.user:
            return redirect("/galleries")
        return render(ctx, "signup.html", values={})

    async def create(self, ctx: RequestContext) -> Response:
        """Process the signup form, then sign the new user in."""
        form = ctx.form
        name = (form.get("name") or "").strip()
        email = (form.get("email") or "").strip()
        password = form.get("password") or ""
        values = {"name": name, "email": email}
        errors = []
        if not email:
            errors.append("Email is required.")
        if len(password) < MIN_PASSWORD_LENGTH:
            errors.append(f"Passwords must be at least {MIN_PASSWORD_LENGTH} characters.")
        if errors:
            return render(ctx, "signup.html", status=400, values=values, errors=errors)
        user = User(name=name, email=email, password=password)
        try:
            await self.users.create(user)
        except HashingError:
            logger.warning("signup rejected reason=hashing")
            return render(
                ctx, "signup.html", status=400, values=values,
                errors=["That password cannot be used. Try a shorter one."],
            )
        except PersistenceError as exc:
            if exc.kind is ErrorKind.CONFLICT:
                return render(
                    ctx, "signup.html", status=400, values=values,
                    errors=["That email address is already registered."],
                )
            logger.exception("signup failed")
            return render(
                ctx, "signup.html", status=500, values=values,
                errors=["Something went wrong. Please try again."],
            )
        ctx.sign_in(user.remember)
        return redirect("/galleries")

    async def show(self, ctx: RequestContext) -> Response:
        if ctx.user:
            return redirect("/galleries")
        return render(ctx, "login.html")

    async def login(self, ctx: RequestContext) -> Response:
        """Check the credentials and hand out a remember token cookie."""
        email = (ctx.form.get("email") or "").strip()
        password = ctx.form.get("password") or ""
        try:
            user = await self.users.authenticate(email, password)
        except (NotFound, InvalidCredentials) as exc:
            logger.info("login rejected reason=%s", exc.kind.value)
            return render(
                ctx, "login.html", status=401, email=email,
                errors=["Invalid email or password."],
            )
        except (HashingError, PersistenceError):
            logger.exception("login failed")
            return render(
                ctx, "login.html", status=500, email=email,
                errors=["Something went wrong. Please try again."],
            )
        token = await self.users.sign_in(user)
        ctx.sign_in(token)
        logger.info("login succeeded user_id=%s", user.id)
        return redirect("/galleries")

    async def logout(self, ctx: RequestContext) -> Response:
        """Rotate the remember token so the old cookie no longer resolves."""
        user = ctx.user
        if user is not None:
            await self.users.sign_out(user)
            logger.info("logout user_id=%s", user.id)
        ctx.sign_out()
        return redirect("/")

    async def forgot(self, ctx: RequestContext) -> Response:
        return render(ctx, "forgot.html", email=ctx.query_param("email", "") or "")

    async def initiate_reset(self, ctx: RequestContext) -> Response:
        """Mail a reset link. Unknown addresses get the same answer as known ones."""
        email = (ctx.form.get("email") or "").strip()
        if not email:
            return render(ctx, "forgot.html", status=400, errors=["Email is required."])
        try:
            token = await self.users.initiate_reset(email)
        except NotFound:
            logger.info("password reset requested for unknown email")
        except (EntropySourceError, PersistenceError):
            logger.exception("password reset failed")
            return render(
                ctx, "forgot.html", status=500, email=email,
                errors=["Something went wrong. Please try again."],
            )
        else:
            await self.emailer.reset_password(email, token)
        return render(
            ctx, "forgot.html", email=email,
            messages=["If that address has an account, a reset link is on its way."],
        )

    async def reset(self, ctx: RequestContext) -> Response:
        return render(ctx, "reset.html", token=ctx.query_param("token", "") or "")

    async def complete_reset(self, ctx: RequestContext) -> Response:
        """Set the new password from a reset link and sign the user in."""
        token = ctx.form.get("token") or ""
        password = ctx.form.get("password") or ""
        if len(password) < MIN_PASSWORD_LENGTH:
            return render(
                ctx, "reset.html", status=400, token=token,
                errors=[f"Passwords must be at least {MIN_PASSWORD_LENGTH} characters."],
            )
        try:
            user = await self.users.complete_reset(token, password)
        except NotFound:
            logger.info("password reset rejected reason=not_found")
            return render(
                ctx, "reset.html", status=400, token=token,
                errors=["That reset link is invalid or has expired."],
            )
        except HashingError:
            logger.warning("password reset rejected reason=hashing")
            return render(
                ctx, "reset.html", status=400, token=token,
                errors=["That password cannot be used. Try a shorter one."],
            )
        remember = await self.users.sign_in(user)
        ctx.sign_in(remember)
        logger.info("password reset signed in user_id=%s", user.id)
        return redirect("/galleries")


class Galleries:
    def __init__(self, galleries: GalleryService, images: ImageStore) -> None:
        self.galleries = galleries
        self.images = images

    @staticmethod
    def _gallery_id(ctx: RequestContext) -> int:
        raw = ctx.path_param("id")
        if not raw.isdigit():
            raise InvalidID()
        return int(raw)

    async def _owned(self, ctx: RequestContext) -> Gallery:
        return await self.galleries.owned_by(self._gallery_id(ctx), ctx.user.id)

    async def _edit_page(self, ctx: RequestContext, gallery: Gallery, *, status: int = 200, **extra: Any) -> Response:
        images = await self.images.by_gallery_id(gallery.id)
        return render(ctx, "galleries/edit.html", status=status, gallery=gallery, images=images, **extra)

    async def index(self, ctx: RequestContext) -> Response:
        galleries = await self.galleries.by_user_id(ctx.user.id)
        return render(ctx, "galleries/index.html", galleries=galleries)

    async def new(self, ctx: RequestContext) -> Response:
        return render(ctx, "galleries/new.html")

    async def create(self, ctx: RequestContext) -> Response:
        title = ctx.form.get("title") or ""
        gallery = Gallery(user_id=ctx.user.id, title=title)
        try:
            await self.galleries.create(gallery)
        except TitleRequired as exc:
            return render(ctx, "galleries/new.html", status=400, title=title, errors=[str(exc)])
        return redirect(f"/galleries/{gallery.id}/edit")

    async def show(self, ctx: RequestContext) -> Response:
        """Public view of a gallery and its images."""
        try:
            gallery = await self.galleries.by_id(self._gallery_id(ctx))
        except (InvalidID, NotFound):
            return not_found(ctx, "That gallery")
        images = await self.images.by_gallery_id(gallery.id)
        return render(ctx, "galleries/show.html", gallery=gallery, images=images)

    async def edit(self, ctx: RequestContext) -> Response:
        try:
            gallery = await self._owned(ctx)
        except (InvalidID, NotFound):
            return not_found(ctx, "That gallery")
        return await self._edit_page(ctx, gallery)

    async def update(self, ctx: RequestContext) -> Response:
        try:
            gallery = await self._owned(ctx)
        except (InvalidID, NotFound):
            return not_found(ctx, "That gallery")
        gallery.title = ctx.form.get("title") or ""
        try:
            await self.galleries.update(gallery)
        except TitleRequired as exc:
            return await self._edit_page(ctx, gallery, status=400, errors=[str(exc)])
        return await self._edit_page(ctx, gallery, messages=["Gallery successfully updated!"])

    async def delete(self, ctx: RequestContext) -> Response:
        try:
            gallery = await self._owned(ctx)
        except (InvalidID, NotFound):
            return not_found(ctx, "That gallery")
        await self.images.delete_all(gallery.id)
        await self.galleries.delete(gallery.id)
        return redirect("/galleries")

    async def image_upload(self, ctx: RequestContext) -> Response:
        try:
            gallery = await self._owned(ctx)
        except (InvalidID, NotFound):
            return not_found(ctx, "That gallery")
        files: Dict[str, Any] = getattr(ctx.request, "files", None) or {}
        if not files:
            return await self._edit_page(ctx, gallery, status=400, errors=["Choose at least one image to upload."])
        for filename, data in files.items():
            if isinstance(data, list):
                data = bytes(data)
            try:
                await self.images.save(gallery.id, filename, data)
            except ValueError as exc:
                return await self._edit_page(ctx, gallery, status=400, errors=[str(exc)])
        return redirect(f"/galleries/{gallery.id}/edit")

    async def image_delete(self, ctx: RequestContext) -> Response:
        try:
            gallery = await self._owned(ctx)
        except (InvalidID, NotFound):
            return not_found(ctx, "That gallery")
        filename = unquote(ctx.path_param("filename"))
        try:
            await self.images.delete(gallery.id, filename)
        except (NotFound, ValueError):
            return not_found(ctx, "That image")
        return redirect(f"/galleries/{gallery.id}/edit")
