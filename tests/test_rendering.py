from __future__ import annotations

import pytest

from quill.errors import RenderError
from quill.rendering import markdown_to_html, render


def test_empty_markdown_renders_empty() -> None:
    assert render(None) == ""
    assert render("") == ""


def test_commonmark_with_extensions() -> None:
    html = markdown_to_html("~~gone~~ and snake_case_word\n\n- [x] done\n- [ ] open")

    assert "<s>gone</s>" in html
    assert "snake_case_word" in html
    assert 'type="checkbox"' in html


def test_footnotes_and_tables() -> None:
    html = markdown_to_html("Claim[^1]\n\n[^1]: Source\n\n| a | b |\n|---|---|\n| 1 | 2 |")

    assert "footnote" in html
    assert "<table>" in html


def test_renderer_failure_is_wrapped() -> None:
    def broken(source: str) -> str:
        raise KeyError("boom")

    with pytest.raises(RenderError) as excinfo:
        render("text", broken)
    assert isinstance(excinfo.value.__cause__, KeyError)
