from __future__ import annotations

from pathlib import Path
from typing import Any

from robyn import Response
from robyn.templating import JinjaTemplate

from middleware import RequestContext, html_response

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

jinja_template = JinjaTemplate(str(TEMPLATE_DIR))
jinja_template.env.trim_blocks = True


def _body(response: Response) -> str:
    description = response.description
    if isinstance(description, (bytes, bytearray)):
        return bytes(description).decode("utf-8")
    return str(description)


def render_page(ctx: RequestContext, template: str, **values: Any) -> str:
    """Render a template with the signed-in user and CSRF token always available."""
    values.setdefault("errors", [])
    values.setdefault("messages", [])
    template_response = jinja_template.render_template(
        template,
        user=ctx.user,
        csrf_token=ctx.csrf_token or "",
        **values,
    )
    return _body(template_response)


def render(ctx: RequestContext, template: str, *, status: int = 200, **values: Any) -> Response:
    return html_response(render_page(ctx, template, **values), status=status)


def not_found(ctx: RequestContext, what: str = "That page") -> Response:
    return render(ctx, "not_found.html", status=404, what=what)
