"""Unit tests for HTML content extraction."""

from __future__ import annotations

import logging

import pytest

from rag_ingest.ingestion.content import (
    clean_text,
    extract_content,
    extract_content_auto,
    extract_title,
    extract_with_selector,
)

PAGE = """
<html>
  <head><title> Getting   Started </title><script>var x = 1;</script></head>
  <body>
    <header>Site header</header>
    <nav class="nav">Home | Docs</nav>
    <main>
      <h1>Install</h1>
      <p>Run the   installer.</p>
      <div class="sidebar">Related links</div>
    </main>
    <div id="custom"><p>Custom block</p><footer>Footer inside</footer></div>
    <footer>Copyright</footer>
  </body>
</html>
"""


class TestCleanText:
    def test_collapses_whitespace(self) -> None:
        assert clean_text("  a \n\n  b\t c  ") == "a b c"


class TestSelectors:
    def test_selector_returns_node_text_without_boilerplate(self) -> None:
        assert extract_with_selector(PAGE, "#custom") == "Custom block"

    def test_missing_selector_returns_empty(self) -> None:
        assert extract_with_selector(PAGE, ".does-not-exist") == ""

    def test_first_non_empty_selector_wins(self) -> None:
        assert extract_content(PAGE, [".does-not-exist", "#custom"]) == "Custom block"

    def test_missing_selector_falls_back_to_auto(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            result = extract_content(PAGE, ".does-not-exist")
        assert result == extract_content_auto(PAGE)
        assert "auto-detect" in caplog.text

    def test_silent_fallback_does_not_warn(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            extract_content(PAGE, ".does-not-exist", silent=True)
        assert caplog.text == ""


class TestAutoDetect:
    def test_prefers_main_and_strips_boilerplate(self) -> None:
        text = extract_content_auto(PAGE)
        assert text == "Install Run the installer."
        assert "Related links" not in text
        assert "Site header" not in text

    def test_falls_back_to_body(self) -> None:
        html = "<html><body><div>Plain body text</div><footer>f</footer></body></html>"
        assert extract_content_auto(html) == "Plain body text"

    def test_empty_container_is_skipped(self) -> None:
        html = "<body><article>   </article><div class='content'>Real content</div></body>"
        assert extract_content_auto(html) == "Real content"

    def test_no_selector_means_auto(self) -> None:
        assert extract_content(PAGE) == extract_content_auto(PAGE)


class TestTitle:
    def test_title_tag(self) -> None:
        assert extract_title(PAGE) == "Getting Started"

    def test_h1_fallback(self) -> None:
        assert extract_title("<body><h1>Heading</h1></body>") == "Heading"

    def test_nothing(self) -> None:
        assert extract_title("<body><p>x</p></body>") == ""
