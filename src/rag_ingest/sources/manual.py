"""Manual ingester: hand-written notes from ``manual-docs.json``.

Each note becomes exactly one chunk.  Notes are few and cheap, so there is
no cache: every run upserts all of them again under the same IDs.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from rag_ingest.config import ManualDoc
from rag_ingest.index.base import IndexClient
from rag_ingest.index.models import ChunkDocument
from rag_ingest.sources.base import DiscoveredItem, ItemOutcome, RunOptions, SourceAdapter

logger = logging.getLogger(__name__)


def manual_doc_id(topic: str, index: int) -> str:
    slug = re.sub(r"\s+", "_", topic.lower())
    return f"manual_{slug}_{index}"


def to_chunk(doc: ManualDoc, index: int) -> ChunkDocument:
    return ChunkDocument(
        id=manual_doc_id(doc.topic, index),
        text=f"{doc.topic}: {doc.text}",
        source=f"Manual doc: {doc.topic}",
        url=doc.url or "",
    )


class ManualIngester(SourceAdapter):
    kind = "manual"
    title = "Manual docs ingestion"

    def __init__(
        self,
        index: IndexClient,
        docs: Sequence[ManualDoc],
        options: RunOptions | None = None,
        *,
        upsert_batch_size: int | None = None,
    ) -> None:
        super().__init__(index, None, options, upsert_batch_size=upsert_batch_size)
        self.docs = list(docs)

    def discover(self) -> list[DiscoveredItem]:
        if not self.docs:
            logger.info("No manual documents found")
        return [
            DiscoveredItem(location=doc.topic, meta=(index, doc))
            for index, doc in enumerate(self.docs)
        ]

    def should_skip(self, item: DiscoveredItem) -> bool:
        return False

    def process(self, item: DiscoveredItem) -> ItemOutcome:
        index, doc = item.meta
        return ItemOutcome(item, "processed", docs=[to_chunk(doc, index)])

    def process_all(self, items: Sequence[DiscoveredItem]) -> list[ItemOutcome]:
        # Local data only; no pool needed.
        return [self.process(item) for item in items]
