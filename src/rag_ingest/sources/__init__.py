"""
Sources — one ingester per kind of documentation source.

Public surface
--------------
- :class:`SourceAdapter` — base class holding the shared run template.
- :class:`SitemapIngester` — XML sitemaps, resumable batch path.
- :class:`UrlListIngester` — fixed list of pages.
- :class:`OpenApiIngester` — OpenAPI JSON specs in a GitHub repository.
- :class:`ManualIngester` — hand-written notes.
"""

from rag_ingest.sources.base import (
    DiscoveredItem,
    IngestSummary,
    ItemOutcome,
    RunOptions,
    SourceAdapter,
)
from rag_ingest.sources.manual import ManualIngester
from rag_ingest.sources.openapi import OpenApiIngester
from rag_ingest.sources.sitemap import SitemapIngester
from rag_ingest.sources.urls import UrlListIngester

__all__ = [
    "DiscoveredItem",
    "IngestSummary",
    "ItemOutcome",
    "ManualIngester",
    "OpenApiIngester",
    "RunOptions",
    "SitemapIngester",
    "SourceAdapter",
    "UrlListIngester",
]
