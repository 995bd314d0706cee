"""
Ingestion — fetching, extraction, chunking, caching and batch indexing.

These building blocks are source-agnostic; :mod:`rag_ingest.sources`
composes them into the per-source ingesters.
"""
