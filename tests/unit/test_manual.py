"""Unit tests for the manual-docs ingester."""

from __future__ import annotations

from rag_ingest.config import ManualDoc
from rag_ingest.sources.base import RunOptions
from rag_ingest.sources.manual import ManualIngester, manual_doc_id, to_chunk

DOCS = [
    ManualDoc(topic="Refund Policy", text="Refunds are issued within 30 days.", url="https://example.com/refunds"),
    ManualDoc(topic="Support  hours", text="Support is available 9 to 5 on weekdays."),
]


def test_manual_doc_id_slugifies_whitespace() -> None:
    assert manual_doc_id("Refund Policy", 0) == "manual_refund_policy_0"
    assert manual_doc_id("Support  hours", 1) == "manual_support_hours_1"


def test_to_chunk_layout() -> None:
    chunk = to_chunk(DOCS[0], 0)
    assert chunk.text == "Refund Policy: Refunds are issued within 30 days."
    assert chunk.source == "Manual doc: Refund Policy"
    assert chunk.url == "https://example.com/refunds"
    assert to_chunk(DOCS[1], 1).url == ""


class TestManualIngester:
    def test_one_chunk_per_doc(self, fake_index) -> None:
        summary = ManualIngester(fake_index, DOCS).run()

        assert summary.processed == 2
        assert summary.chunks_added == 2
        assert set(fake_index.docs) == {"manual_refund_policy_0", "manual_support_hours_1"}

    def test_rerun_upserts_same_ids(self, fake_index) -> None:
        ManualIngester(fake_index, DOCS).run()
        summary = ManualIngester(fake_index, DOCS).run()

        assert summary.processed == 2
        assert summary.cached == 0
        assert len(fake_index.docs) == 2

    def test_filter_on_topic(self, fake_index) -> None:
        summary = ManualIngester(fake_index, DOCS, RunOptions(filter="refund")).run()
        assert summary.processed == 1

    def test_dry_run(self, fake_index) -> None:
        summary = ManualIngester(fake_index, DOCS, RunOptions(dry_run=True)).run()
        assert summary.processed == 0
        assert fake_index.docs == {}

    def test_empty_list(self, fake_index) -> None:
        summary = ManualIngester(fake_index, []).run()
        assert summary.processed == 0
        assert summary.total_in_index == 0
