"""
rag_ingest — documentation ingestion for retrieval-augmented generation.

Discovers documents from sitemaps, URL lists, OpenAPI repositories and
hand-written notes, chunks them deterministically and upserts the chunks
into a vector index, skipping anything that has not changed since the
last run.
"""

__version__ = "0.1.0"
