from __future__ import annotations

import logging
from typing import Tuple

from robyn import Request, Response, Robyn

from auth import UserService
from config import load_settings
from controllers import Galleries, Static, Users
from database import Database
from galleries import GalleryService
from mail import LoggingEmailer
from middleware import (
    CookieFilter,
    CsrfFilter,
    Handler,
    IdentityFilter,
    Pipeline,
    RequireIdentityFilter,
)
from storage import build_image_store

settings = load_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = Robyn(__file__)

# Singletons used by every request
db = Database(settings.db_path)
users = UserService(db, settings)
galleries = GalleryService(db)
images = build_image_store(settings)
emailer = LoggingEmailer(settings.base_url)

public = Pipeline(
    [
        CookieFilter(secure=settings.secure_cookies),
        CsrfFilter(),
        IdentityFilter(users),
    ]
)
protected = public.then(RequireIdentityFilter())

static_c = Static()
users_c = Users(users, emailer)
galleries_c = Galleries(galleries, images)

ROUTES: Tuple[Tuple[str, str, Pipeline, Handler], ...] = (
    ("GET", "/", public, static_c.home),
    ("GET", "/contact", public, static_c.contact),
    ("GET", "/signup", public, users_c.new),
    ("POST", "/signup", public, users_c.create),
    ("GET", "/login", public, users_c.show),
    ("POST", "/login", public, users_c.login),
    ("POST", "/logout", protected, users_c.logout),
    ("GET", "/forgot", public, users_c.forgot),
    ("POST", "/forgot", public, users_c.initiate_reset),
    ("GET", "/reset", public, users_c.reset),
    ("POST", "/reset", public, users_c.complete_reset),
    ("GET", "/galleries", protected, galleries_c.index),
    ("POST", "/galleries", protected, galleries_c.create),
    ("GET", "/galleries/new", protected, galleries_c.new),
    ("GET", "/galleries/:id", public, galleries_c.show),
    ("GET", "/galleries/:id/edit", protected, galleries_c.edit),
    ("POST", "/galleries/:id/update", protected, galleries_c.update),
    ("POST", "/galleries/:id/delete", protected, galleries_c.delete),
    ("POST", "/galleries/:id/images", protected, galleries_c.image_upload),
    ("POST", "/galleries/:id/images/:filename/delete", protected, galleries_c.image_delete),
)


def _endpoint(pipeline: Pipeline, handler: Handler):
    """Adapt a context handler into a Robyn route function."""

    async def endpoint(request: Request) -> Response:
        return await pipeline.run(request, handler)

    owner = type(getattr(handler, "__self__", None)).__name__.lower()
    endpoint.__name__ = f"{owner}_{handler.__name__}"
    return endpoint


for method, path, pipeline, handler in ROUTES:
    getattr(app, method.lower())(path)(_endpoint(pipeline, handler))

if settings.b2 is None:
    app.serve_directory(route="/images", directory_path=str(settings.image_dir))


async def _ensure_database() -> None:
    """Prepare the sqlite file before handling the first request."""
    await db.initialize()
    logger.info("database ready path=%s", settings.db_path)


app.startup_handler(_ensure_database)


if __name__ == "__main__":
    app.start(host=settings.host, port=settings.port)
