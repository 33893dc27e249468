from __future__ import annotations

import logging
from typing import Callable, Optional

from markdown_it import MarkdownIt
from mdit_py_plugins.footnote import footnote_plugin
from mdit_py_plugins.tasklists import tasklists_plugin

from .errors import RenderError


Renderer = Callable[[str], str]

logger = logging.getLogger(__name__)


def _create_markdown_renderer() -> MarkdownIt:
    md = MarkdownIt("commonmark", {"html": True, "breaks": True})
    md.enable("strikethrough")
    md.enable("table")
    md.use(tasklists_plugin)
    md.use(footnote_plugin)
    return md


_markdowner = _create_markdown_renderer()


def markdown_to_html(source: Optional[str]) -> str:
    if not source:
        return ""
    return _markdowner.render(source)


def render(source: Optional[str], renderer: Renderer = markdown_to_html) -> str:
    """Render post markdown, surfacing any renderer failure as RenderError."""
    if source is None:
        return ""
    try:
        return renderer(source)
    except Exception as exc:
        logger.exception("Markdown rendering failed")
        raise RenderError(f"Could not render markdown: {exc}") from exc
