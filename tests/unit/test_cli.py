"""Unit tests for the command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from rag_ingest import cli
from rag_ingest.config import settings
from rag_ingest.errors import FetchError
from rag_ingest.index.models import ChunkDocument
from rag_ingest.sources.manual import ManualIngester
from rag_ingest.sources.sitemap import SitemapIngester

MANUAL = [{"topic": "Refunds", "text": "Refunds are issued within 30 days of purchase."}]


@pytest.fixture()
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    monkeypatch.setattr(settings, "rate_limit_ms", 0)
    return tmp_path


@pytest.fixture()
def index(fake_index):
    with patch("rag_ingest.cli._index_client", return_value=fake_index):
        yield fake_index


def _write(path: Path, payload: object) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


# ── Ingest commands ─────────────────────────────────────────────────────


class TestIngestCommands:
    def test_manual(self, data_dir: Path, index) -> None:
        _write(data_dir / "manual-docs.json", MANUAL)
        assert cli.main(["manual"]) == 0
        assert set(index.docs) == {"manual_refunds_0"}

    def test_missing_config_exits_one(self, data_dir: Path, index) -> None:
        assert cli.main(["urls"]) == 1

    def test_invalid_config_exits_one(self, data_dir: Path, index) -> None:
        _write(data_dir / "urls.json", [{"url": "https://example.com"}])
        assert cli.main(["urls"]) == 1

    def test_corrupt_cache_exits_one(self, data_dir: Path, index) -> None:
        _write(data_dir / "urls.json", [{"url": "https://example.com", "name": "Example"}])
        (data_dir / ".urls-cache.json").write_text("{truncated", encoding="utf-8")
        assert cli.main(["urls"]) == 1
        assert index.upsert_calls == []

    def test_unreachable_sitemap_exits_one(self, data_dir: Path, index) -> None:
        _write(data_dir / "sitemap-config.json", [{"url": "https://example.com/sitemap.xml", "name": "Docs"}])
        with patch(
            "rag_ingest.sources.sitemap.fetch_url",
            side_effect=FetchError("https://example.com/sitemap.xml", RuntimeError("503")),
        ):
            assert cli.main(["sitemap"]) == 1

    def test_item_failures_still_exit_zero(self, data_dir: Path, index) -> None:
        _write(data_dir / "urls.json", [{"url": "https://example.com/a", "name": "A"}])
        with patch(
            "rag_ingest.ingestion.fetcher.fetch_url",
            side_effect=FetchError("https://example.com/a", RuntimeError("404")),
        ):
            assert cli.main(["urls"]) == 0

    def test_flags_reach_run_options(self, data_dir: Path, index) -> None:
        _write(data_dir / "sitemap-config.json", [{"url": "https://example.com/sitemap.xml", "name": "Docs"}])
        with patch.object(SitemapIngester, "run", autospec=True) as run:
            run.return_value = cli.IngestSummary()
            code = cli.main(
                ["sitemap", "--force", "--dry-run", "--filter", "docs", "--concurrency", "2", "--process-only"]
            )

        assert code == 0
        options = run.call_args.args[0].options
        assert (options.force, options.dry_run, options.filter, options.concurrency, options.process_only) == (
            True,
            True,
            "docs",
            2,
            True,
        )

    @pytest.mark.parametrize("value", ["0", "-2", "many"])
    def test_concurrency_must_be_positive(self, value: str, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["urls", "--concurrency", value])
        assert exc_info.value.code == 2
        assert "--concurrency" in capsys.readouterr().err

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main([]) == 1
        assert "usage: rag-ingest" in capsys.readouterr().out


class TestUnreachableIndex:
    @pytest.fixture(autouse=True)
    def chroma_down(self, data_dir: Path):
        chroma_store = pytest.importorskip("rag_ingest.index.chroma_store")
        _write(data_dir / "manual-docs.json", MANUAL)
        with patch.object(
            chroma_store.chromadb, "HttpClient", side_effect=ValueError("Could not connect to a Chroma server")
        ) as http_client:
            yield http_client

    def test_dry_run_never_connects(self, chroma_down) -> None:
        assert cli.main(["manual", "--dry-run"]) == 0
        assert cli.main(["sync", "--dry-run"]) == 0
        chroma_down.assert_not_called()

    def test_real_run_exits_one(self, chroma_down) -> None:
        assert cli.main(["manual"]) == 1
        assert cli.main(["sync"]) == 1


class TestSync:
    def test_skips_sources_without_config(self, data_dir: Path, index) -> None:
        _write(data_dir / "manual-docs.json", MANUAL)
        summary = cli.IngestSummary(processed=1)
        with patch.object(ManualIngester, "run", autospec=True, return_value=summary) as run:
            assert cli.main(["sync"]) == 0
        run.assert_called_once()

    def test_runs_in_order(self, data_dir: Path, index) -> None:
        for kind in ("manual", "urls", "openapi", "sitemap"):
            settings.config_path(kind).write_text("{}", encoding="utf-8")
        built: list[str] = []

        def _fake_build(kind, _index, _options):
            built.append(kind)
            return ManualIngester(index, [])

        with patch("rag_ingest.cli.build_ingester", side_effect=_fake_build):
            assert cli.main(["sync", "--dry-run"]) == 0
        assert built == ["manual", "urls", "openapi", "sitemap"]


# ── inspect / reset ─────────────────────────────────────────────────────


class TestInspect:
    def test_empty_collection(self, index, capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main(["inspect"]) == 0
        assert 'Collection "test-collection": 0 document(s)' in capsys.readouterr().out

    def test_peek(self, index, capsys: pytest.CaptureFixture[str]) -> None:
        index.upsert([ChunkDocument(id="url_x_chunk_0", text="Returns within 30 days", source="Returns")])
        assert cli.main(["inspect", "--limit", "5"]) == 0
        out = capsys.readouterr().out
        assert "url_x_chunk_0  [Returns]" in out

    def test_query(self, index, capsys: pytest.CaptureFixture[str]) -> None:
        index.upsert([ChunkDocument(id="a", text="Returns within 30 days", source="Returns", url="https://r")])
        assert cli.main(["inspect", "30 days"]) == 0
        out = capsys.readouterr().out
        assert 'Searching for: "30 days"' in out
        assert "https://r" in out

    def test_unreachable_index(self, index) -> None:
        with patch.object(type(index), "health_check", return_value=False):
            assert cli.main(["inspect"]) == 1


class TestReset:
    def test_removes_collection_caches_and_shards(self, data_dir: Path, index) -> None:
        index.upsert([ChunkDocument(id="a", text="t")])
        for path in settings.cache_paths.values():
            path.write_text("{}", encoding="utf-8")
        (settings.shard_dir / "docs").mkdir(parents=True)
        (settings.shard_dir / "docs" / "batch-0000.jsonl").write_text("{}\n", encoding="utf-8")

        assert cli.main(["reset"]) == 0

        assert index.docs == {}
        assert not any(path.exists() for path in settings.cache_paths.values())
        assert not settings.shard_dir.exists()

    def test_reset_on_clean_state(self, data_dir: Path, index) -> None:
        assert cli.main(["reset"]) == 0
