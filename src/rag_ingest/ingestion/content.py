"""HTML → plain-text extraction with explicit selectors and an auto-detect fallback."""

from __future__ import annotations

import logging
import re
from typing import Sequence

from bs4 import BeautifulSoup
from bs4.element import Tag

logger = logging.getLogger(__name__)

REMOVE_SELECTORS: tuple[str, ...] = (
    "script",
    "style",
    "noscript",
    "iframe",
    "nav",
    "footer",
    "header",
    ".nav",
    ".navigation",
    ".menu",
    ".sidebar",
    ".footer",
    ".header",
    ".ads",
    ".advertisement",
    ".cookie-banner",
    ".popup",
    "[role='navigation']",
    "[role='banner']",
    "[role='contentinfo']",
)

CONTENT_SELECTORS: tuple[str, ...] = (
    "article",
    "main",
    "[role='main']",
    ".content",
    "#content",
    ".post-content",
    ".article-content",
    ".documentation",
    ".docs-content",
    ".markdown-body",
    ".prose",
)


def clean_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and drop blank lines."""
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\n\s*\n", "\n", text)
    return text.strip()


def _strip_boilerplate(node: BeautifulSoup | Tag) -> None:
    for selector in REMOVE_SELECTORS:
        for element in node.select(selector):
            element.decompose()


def _text_of(node: BeautifulSoup | Tag) -> str:
    return clean_text(node.get_text(separator=" "))


def extract_with_selector(html: str, selector: str) -> str:
    """Return cleaned text of the first node matching *selector*, or ``""``."""
    soup = BeautifulSoup(html, "html.parser")
    selected = soup.select_one(selector)
    if selected is None:
        return ""
    _strip_boilerplate(selected)
    return _text_of(selected)


def extract_content_auto(html: str) -> str:
    """Strip boilerplate, then probe common content containers.

    Returns the first non-empty container, else the whole cleaned body.
    """
    soup = BeautifulSoup(html, "html.parser")
    _strip_boilerplate(soup)

    for selector in CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = _text_of(element)
        if text:
            return text

    body = soup.body
    return _text_of(body if body is not None else soup)


def extract_content(
    html: str,
    selector: str | Sequence[str] | None = None,
    *,
    silent: bool = False,
) -> str:
    """Extract readable text from *html*.

    Parameters
    ----------
    html:
        Raw page markup.
    selector:
        One CSS selector or a list tried in order.  A selector whose node
        is missing or empty falls through to the next one, and finally to
        :func:`extract_content_auto`.
    silent:
        Suppress the fallback warning (used for bulk sitemap crawls).
    """
    if not selector:
        return extract_content_auto(html)

    selectors = [selector] if isinstance(selector, str) else list(selector)
    for sel in selectors:
        content = extract_with_selector(html, sel)
        if content:
            return content

    if not silent:
        logger.warning("Selectors [%s] returned empty, using auto-detect", ", ".join(selectors))
    return extract_content_auto(html)


def extract_title(html: str) -> str:
    """Best-effort title: ``<title>``, else the first ``<h1>``."""
    soup = BeautifulSoup(html, "html.parser")
    if soup.title is not None and soup.title.get_text(strip=True):
        return clean_text(soup.title.get_text())
    h1 = soup.find("h1")
    return clean_text(h1.get_text()) if h1 is not None else ""
