"""Embedding backends — single place to swap providers.

Supports two modes:

1. **HuggingFace** (default) — a local sentence-transformer loaded through
   ``langchain_huggingface``.
2. **Ollama** — the ``/api/embeddings`` endpoint of a running Ollama
   server (set ``EMBEDDING_BACKEND=ollama``).

Both expose the LangChain embedding protocol (``embed_query`` /
``embed_documents``) so the index client does not care which is used.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

from rag_ingest.config import settings
from rag_ingest.errors import IndexClientError

logger = logging.getLogger(__name__)


class Embeddings(Protocol):
    def embed_query(self, text: str) -> list[float]: ...

    def embed_documents(self, texts: list[str]) -> list[list[float]]: ...


class OllamaEmbeddings:
    """Minimal client for Ollama's ``/api/embeddings`` endpoint (one prompt per call)."""

    def __init__(self, *, base_url: str, model: str, timeout_seconds: float = 60.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout_seconds = timeout_seconds

    def embed_query(self, text: str) -> list[float]:
        try:
            response = requests.post(
                f"{self._base_url}/api/embeddings",
                json={"model": self._model, "prompt": text},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise IndexClientError(f"Ollama embedding failed: {exc}") from exc

        embedding = response.json().get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise IndexClientError("Invalid embeddings payload: missing embedding vector")
        return [float(value) for value in embedding]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(text) for text in texts]


def get_embedding_function(backend: str | None = None, model: str | None = None) -> Any:
    """Return the configured embedding function.

    The HuggingFace import is deferred so that Ollama users (and tests)
    never load sentence-transformers.
    """
    backend = backend or settings.embedding_backend
    if backend == "ollama":
        model = model or settings.ollama_embed_model
        logger.info("Using Ollama embeddings: %s @ %s", model, settings.ollama_host)
        return OllamaEmbeddings(
            base_url=settings.ollama_host,
            model=model,
            timeout_seconds=settings.request_timeout * 2,
        )
    if backend == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(model_name=model or settings.embedding_model)
    raise ValueError(f"Unsupported embedding backend: {backend!r}")
