"""Unit tests for include / exclude path globs."""

from __future__ import annotations

import pytest

from rag_ingest.ingestion.globs import filter_urls, glob_match, normalize_pattern, url_path


# ──────────────────────────────────────────────────────────────────────
# Normalisation
# ──────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("pattern", "expected"),
    [
        ("/docs/*", "/docs/**"),
        ("/docs/**", "/docs/**"),
        ("/docs", "/docs/**"),
        ("/docs/", "/docs/**"),
        ("docs", "/docs/**"),
        ("/api/*/reference", "/api/*/reference"),
        ("*.html", "*.html"),
    ],
)
def test_normalize_pattern(pattern: str, expected: str) -> None:
    assert normalize_pattern(pattern) == expected


# ──────────────────────────────────────────────────────────────────────
# Matching
# ──────────────────────────────────────────────────────────────────────


class TestGlobMatch:
    def test_double_star_spans_segments(self) -> None:
        assert glob_match("/docs/a/b/c", "/docs/**")

    def test_trailing_double_star_matches_bare_prefix(self) -> None:
        assert glob_match("/docs", "/docs/**")
        assert glob_match("/docs/", "/docs/**")

    def test_prefix_is_segment_aware(self) -> None:
        assert not glob_match("/docs-old/page", "/docs/**")

    def test_single_star_stays_in_one_segment(self) -> None:
        assert glob_match("/api/v1/reference", "/api/*/reference")
        assert not glob_match("/api/v1/x/reference", "/api/*/reference")

    def test_leading_double_star(self) -> None:
        assert glob_match("/en/guides/setup", "**/guides/*")
        assert glob_match("/guides/setup", "**/guides/*")

    def test_question_mark(self) -> None:
        assert glob_match("/v1/x", "/v?/x")
        assert not glob_match("/v10/x", "/v?/x")

    def test_pattern_without_slash_matches_basename(self) -> None:
        assert glob_match("/blog/2024/post.html", "*.html")
        assert not glob_match("/blog/2024/post.md", "*.html")

    def test_regex_characters_are_literal(self) -> None:
        assert glob_match("/a+b/c", "/a+b/**")
        assert not glob_match("/aab/c", "/a+b/**")


# ──────────────────────────────────────────────────────────────────────
# filter_urls
# ──────────────────────────────────────────────────────────────────────


URLS = [
    "https://example.com/docs/intro",
    "https://example.com/docs/api/orders",
    "https://example.com/blog/news",
    "https://example.com/docs/legacy/old",
    "https://example.com/",
]


class TestFilterUrls:
    def test_no_patterns_keeps_everything(self) -> None:
        assert filter_urls(URLS) == URLS

    def test_include_only(self) -> None:
        assert filter_urls(URLS, include=["/docs/*"]) == URLS[:2] + [URLS[3]]

    def test_include_and_exclude(self) -> None:
        assert filter_urls(URLS, include=["/docs"], exclude=["/docs/legacy"]) == URLS[:2]

    def test_exclude_only(self) -> None:
        assert filter_urls(URLS, exclude=["/blog/*"]) == [URLS[0], URLS[1], URLS[3], URLS[4]]

    def test_matches_path_not_host_or_query(self) -> None:
        urls = ["https://docs.example.com/guide?x=/docs/a"]
        assert filter_urls(urls, include=["/docs/*"]) == []

    def test_key_function(self) -> None:
        items = [{"loc": URLS[0]}, {"loc": URLS[2]}]
        assert filter_urls(items, include=["/blog"], key=lambda i: i["loc"]) == [items[1]]

    def test_unparseable_url_is_dropped(self) -> None:
        assert filter_urls(["http://[::1", URLS[0]]) == [URLS[0]]


def test_url_path_defaults_to_root() -> None:
    assert url_path("https://example.com") == "/"
