"""Chroma implementation of the index-client abstraction."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import chromadb

from rag_ingest.config import settings
from rag_ingest.errors import IndexClientError
from rag_ingest.index.base import IndexClient
from rag_ingest.index.embedder import get_embedding_function
from rag_ingest.index.models import ChunkDocument, CollectionStats, QueryResult

logger = logging.getLogger(__name__)

COLLECTION_DESCRIPTION = "Documentation embeddings for RAG"


def _distance_to_score(distance: float | None) -> float:
    """Chroma returns L2 distances; convert to a 0-1 similarity score."""
    if distance is None:
        return 0.0
    return 1.0 / (1.0 + distance)


class ChromaIndexClient(IndexClient):
    """Chroma-backed index with client-side embeddings.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    embedder:
        Object exposing ``embed_query`` / ``embed_documents``; defaults to
        :func:`~rag_ingest.index.embedder.get_embedding_function`.
    client:
        Pre-built Chroma client (mainly for tests).  Without one, the HTTP
        client is created on first use, so a dry run never connects.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        embedder: Any | None = None,
        client: Any | None = None,
    ) -> None:
        super().__init__(collection_name)
        self.host = host
        self.port = port
        self._client = client
        self._embedder = embedder
        self._collection: Any | None = None

    # -- internals ------------------------------------------------------------

    @property
    def embedder(self) -> Any:
        if self._embedder is None:
            self._embedder = get_embedding_function()
        return self._embedder

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = chromadb.HttpClient(host=self.host, port=self.port)
            except Exception as exc:
                raise IndexClientError(
                    f"Cannot connect to Chroma at {self.host}:{self.port}: {exc}"
                ) from exc
        return self._client

    def _get_collection(self) -> Any:
        if self._collection is None:
            self._collection = self._get_client().get_or_create_collection(
                name=self.collection_name,
                metadata={"description": COLLECTION_DESCRIPTION},
                embedding_function=None,
            )
        return self._collection

    # -- IndexClient overrides ------------------------------------------------

    def embed(self, text: str) -> list[float]:
        try:
            return list(self.embedder.embed_query(text))
        except IndexClientError:
            raise
        except Exception as exc:
            raise IndexClientError(f"Embedding failed: {exc}") from exc

    def upsert(self, docs: Sequence[ChunkDocument]) -> int:
        if not docs:
            return 0
        texts = [d.text for d in docs]
        try:
            embeddings = self.embedder.embed_documents(texts)
            self._get_collection().upsert(
                ids=[d.id for d in docs],
                documents=texts,
                embeddings=embeddings,
                metadatas=[d.metadata() for d in docs],
            )
        except IndexClientError:
            raise
        except Exception as exc:
            raise IndexClientError(f"Chroma upsert failed: {exc}") from exc
        return len(docs)

    def query(self, text: str, top_k: int = 8) -> list[QueryResult]:
        try:
            embedding = self.embed(text)
            results = self._get_collection().query(
                query_embeddings=[embedding],
                n_results=top_k,
                include=["documents", "metadatas", "distances"],
            )
        except Exception:
            logger.warning("Chroma query failed", exc_info=True)
            return []

        docs = (results.get("documents") or [[]])[0] or []
        metas = (results.get("metadatas") or [[]])[0] or []
        distances = (results.get("distances") or [[]])[0] or []

        hits: list[QueryResult] = []
        for i, content in enumerate(docs):
            meta = (metas[i] if i < len(metas) else None) or {}
            dist = distances[i] if i < len(distances) else None
            hits.append(
                QueryResult(
                    text=content or "",
                    source=meta.get("source"),
                    url=meta.get("url"),
                    score=_distance_to_score(dist),
                )
            )
        return hits

    def stats(self) -> CollectionStats:
        return CollectionStats(count=self._get_collection().count(), name=self.collection_name)

    def health_check(self) -> bool:
        try:
            self._get_client().heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    def peek(self, limit: int = 10) -> list[ChunkDocument]:
        sample = self._get_collection().peek(limit=limit)
        ids = sample.get("ids") or []
        documents = sample.get("documents") or []
        metadatas = sample.get("metadatas") or []
        return [
            ChunkDocument(
                id=doc_id,
                text=(documents[i] if i < len(documents) else None) or "",
                source=((metadatas[i] if i < len(metadatas) else None) or {}).get("source", ""),
                url=((metadatas[i] if i < len(metadatas) else None) or {}).get("url", ""),
            )
            for i, doc_id in enumerate(ids)
        ]

    def reset(self) -> bool:
        """Delete the collection; return ``False`` if it did not exist."""
        try:
            self._get_client().delete_collection(name=self.collection_name)
        except Exception as exc:
            message = str(exc).lower()
            if "does not exist" in message or "not found" in message:
                return False
            raise IndexClientError(f"Could not delete collection: {exc}") from exc
        finally:
            self._collection = None
        return True


def get_index_client() -> ChromaIndexClient:
    """Build the default index client from the global settings."""
    return ChromaIndexClient(
        settings.chroma_collection,
        host=settings.chroma_host,
        port=settings.chroma_port,
    )
