"""Unit tests for settings and per-source configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from rag_ingest.config import (
    ManualSourceConfig,
    OpenApiSourceConfig,
    Settings,
    SitemapSourceConfig,
    UrlListSourceConfig,
    load_source_config,
)
from rag_ingest.errors import ConfigError


def _write(path: Path, payload: object) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings(_env_file=None)
        assert s.chroma_port == 8000
        assert s.concurrency == 5
        assert s.shard_size == 50
        assert s.parallel_shards == 3
        assert s.upsert_batch_size == 20

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CHROMA_HOST", "chroma.internal")
        monkeypatch.setenv("EMBEDDING_BACKEND", "ollama")
        s = Settings(_env_file=None)
        assert s.chroma_host == "chroma.internal"
        assert s.embedding_backend == "ollama"

    def test_derived_paths(self, tmp_path: Path) -> None:
        s = Settings(_env_file=None, data_dir=tmp_path)
        assert s.config_path("urls") == tmp_path / "urls.json"
        assert s.cache_path("sitemap") == tmp_path / ".sitemap-cache.json"
        assert s.shard_dir == tmp_path / ".sitemap-temp"
        assert set(s.cache_paths) == {"sitemap", "urls", "openapi"}


class TestLoadSourceConfig:
    def test_sitemap_list(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "sitemap-config.json",
            [
                {
                    "url": "https://example.com/sitemap.xml",
                    "name": "Example",
                    "include": ["/docs/*"],
                    "selector": ["article", "main"],
                    "rateLimitMs": 500,
                }
            ],
        )
        config = load_source_config("sitemap", path)
        assert isinstance(config, SitemapSourceConfig)
        entry = config.entries[0]
        assert entry.rate_limit_ms == 500
        assert entry.selector == ["article", "main"]
        assert entry.exclude == []
        assert entry.concurrency is None

    def test_url_list(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "urls.json", [{"url": "https://a", "name": "A", "selector": ".doc"}])
        config = load_source_config("urls", path)
        assert isinstance(config, UrlListSourceConfig)
        assert config.entries[0].selector == ".doc"

    def test_openapi_object(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "openapi-config.json",
            {
                "githubRepo": "acme/openapi-schemas",
                "branch": "master",
                "filePrefix": "Acme - ",
                "docsBaseUrl": "https://developers.acme.com/api",
            },
        )
        config = load_source_config("openapi", path)
        assert isinstance(config, OpenApiSourceConfig)
        assert config.listing_url == "https://api.github.com/repos/acme/openapi-schemas/contents?ref=master"
        assert config.raw_url_base == "https://raw.githubusercontent.com/acme/openapi-schemas/master"

    def test_manual_list(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "manual-docs.json", [{"topic": "Refunds", "text": "Within 30 days."}])
        config = load_source_config("manual", path)
        assert isinstance(config, ManualSourceConfig)
        assert config.docs[0].url is None

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Missing"):
            load_source_config("urls", tmp_path / "urls.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "urls.json"
        path.write_text("[{", encoding="utf-8")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_source_config("urls", path)

    def test_wrong_shape(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "urls.json", {"url": "https://a"})
        with pytest.raises(ConfigError, match="JSON list"):
            load_source_config("urls", path)

    def test_validation_error(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "urls.json", [{"url": "https://a"}])
        with pytest.raises(ConfigError, match="failed validation"):
            load_source_config("urls", path)

    def test_negative_rate_limit_rejected(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "s.json", [{"url": "https://a", "name": "A", "rateLimitMs": -1}])
        with pytest.raises(ConfigError):
            load_source_config("sitemap", path)

    def test_unknown_kind(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Unknown source kind"):
            load_source_config("rss", tmp_path / "x.json")

    @pytest.mark.parametrize(
        ("kind", "selector"),
        [("urls", "div["), ("sitemap", ["main", "article >"])],
    )
    def test_malformed_selector_rejected(self, tmp_path: Path, kind: str, selector) -> None:
        path = _write(tmp_path / f"{kind}.json", [{"url": "https://a", "name": "A", "selector": selector}])
        with pytest.raises(ConfigError, match="invalid CSS selector"):
            load_source_config(kind, path)

    def test_selector_list_with_valid_entries(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "urls.json", [{"url": "https://a", "name": "A", "selector": ["main, article", ".doc p"]}])
        assert load_source_config("urls", path).entries[0].selector == ["main, article", ".doc p"]
