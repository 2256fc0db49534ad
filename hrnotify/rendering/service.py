"""Template rendering for queued emails and in-app notifications.

The template is selected by kind and rendered with the entry's payload. A kind
without templates, or a payload missing a variable the template uses, is a
RenderError: retrying would fail the same way.
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime
from typing import NamedTuple, Protocol

from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError, TemplateNotFound

from ..errors import RenderError
from .templates import EMAIL_TEMPLATES, LAYOUT_HTML

logger = logging.getLogger(__name__)

_PART_NAMES = {
    "subject": "subject.txt",
    "body": "body.html",
    "inapp_title": "inapp_title.txt",
    "inapp_message": "inapp_message.txt",
}


class RenderedEmail(NamedTuple):
    subject: str
    body: str


class TemplateRenderer(Protocol):
    def render(self, kind: str, payload: Mapping) -> RenderedEmail: ...
    def render_inapp(self, kind: str, payload: Mapping) -> tuple[str, str]: ...


def format_date(value, fmt: str = "%d %b %Y") -> str:
    """Jinja filter: ISO strings, dates and datetimes to a display date."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    if isinstance(value, datetime | date):
        return value.strftime(fmt)
    return str(value)


def _one_line(text: str) -> str:
    return " ".join(text.split())


class JinjaRenderer:
    """Renders the per-kind templates with StrictUndefined."""

    def __init__(self, templates: Mapping[str, Mapping[str, str]] | None = None, layout: str = LAYOUT_HTML) -> None:
        templates = EMAIL_TEMPLATES if templates is None else templates
        sources = {"layout.html": layout}
        for kind, parts in templates.items():
            for part, source in parts.items():
                if part in _PART_NAMES:
                    sources[f"{kind}/{_PART_NAMES[part]}"] = source
        self._kinds = frozenset(templates)
        self._env = Environment(
            loader=DictLoader(sources),
            undefined=StrictUndefined,
            autoescape=lambda name: bool(name) and name.endswith(".html"),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["date"] = format_date

    @property
    def kinds(self) -> frozenset[str]:
        return self._kinds

    def _render_part(self, kind: str, part: str, payload: Mapping) -> str:
        if kind not in self._kinds:
            raise RenderError(f"no template for kind {kind!r}")
        name = f"{kind}/{_PART_NAMES[part]}"
        try:
            return self._env.get_template(name).render(dict(payload or {}))
        except TemplateNotFound:
            raise RenderError(f"template {name!r} is missing") from None
        except TemplateError as e:
            raise RenderError(f"cannot render {name!r}: {e}") from e

    def render(self, kind: str, payload: Mapping) -> RenderedEmail:
        subject = _one_line(self._render_part(kind, "subject", payload))
        body = self._render_part(kind, "body", payload)
        logger.debug("Rendered %s email (%d chars)", kind, len(body))
        return RenderedEmail(subject=subject, body=body)

    def render_inapp(self, kind: str, payload: Mapping) -> tuple[str, str]:
        title = _one_line(self._render_part(kind, "inapp_title", payload))
        message = _one_line(self._render_part(kind, "inapp_message", payload))
        return title, message
