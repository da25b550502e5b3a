"""Similarity retrieval with a score threshold and top-k limit."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from langchain_core.documents import Document

from genai_chat_gateway.errors import FilterExpressionError, RetrievalError
from genai_chat_gateway.rag.vector_store import VectorStoreManager, document_key

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RetrievalConfig:
    """Fixed retrieval parameters; only the filter expression varies per request."""

    similarity_threshold: float = 0.3
    top_k: int = 3


@dataclass(slots=True)
class RetrievedChunk:
    """A retrieved document with the similarity score it was found with."""

    document: Document
    score: float
    query: str = ""

    @property
    def key(self) -> str:
        return document_key(self.document)


@dataclass(slots=True)
class RetrievalResult:
    """Retrieved chunks sorted by descending score."""

    chunks: list[RetrievedChunk] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.chunks)

    def __iter__(self) -> Iterator[RetrievedChunk]:
        return iter(self.chunks)

    @property
    def documents(self) -> list[Document]:
        return [chunk.document for chunk in self.chunks]

    @property
    def scores(self) -> list[float]:
        return [chunk.score for chunk in self.chunks]


def rank_chunks(chunks: Iterable[RetrievedChunk], config: RetrievalConfig) -> list[RetrievedChunk]:
    """Deduplicate by chunk id (keeping the best score), then threshold, sort and truncate.

    ``sorted`` is stable, so equal scores keep the order the index returned them in.
    """
    best: dict[str, RetrievedChunk] = {}
    for chunk in chunks:
        existing = best.get(chunk.key)
        if existing is None or chunk.score > existing.score:
            best[chunk.key] = chunk
    kept = [chunk for chunk in best.values() if chunk.score >= config.similarity_threshold]
    ranked = sorted(kept, key=lambda chunk: chunk.score, reverse=True)
    return ranked[: config.top_k]


def merge_results(results: Sequence[RetrievalResult], config: RetrievalConfig) -> RetrievalResult:
    """Merge per-query results into one ranked result."""
    return RetrievalResult(rank_chunks((chunk for result in results for chunk in result), config))


class DocumentRetriever:
    """Runs one similarity search and applies the configured threshold and top-k."""

    def __init__(self, vector_store: VectorStoreManager, config: RetrievalConfig | None = None) -> None:
        self._vector_store = vector_store
        self._config = config or RetrievalConfig()

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    def retrieve(self, query: str, filter_expression: str | None = None) -> RetrievalResult:
        try:
            hits = self._vector_store.similarity_search(
                query,
                top_k=self._config.top_k,
                filter_expression=filter_expression,
            )
        except FilterExpressionError:
            raise
        except Exception as exc:
            message = f"Similarity search failed for query {query!r}: {exc}"
            raise RetrievalError(message) from exc
        chunks = rank_chunks((RetrievedChunk(document, float(score), query) for document, score in hits), self._config)
        LOGGER.debug("Retrieved %s of %s hits for %r", len(chunks), len(hits), query)
        return RetrievalResult(chunks)


class DocumentPostProcessor(Protocol):
    def process(self, query: str, chunks: list[RetrievedChunk]) -> list[RetrievedChunk]: ...


class LoggingDocumentPostProcessor:
    """Logs every retrieved chunk and passes the list through unchanged."""

    def __init__(self, preview_chars: int = 120) -> None:
        self._preview_chars = preview_chars

    def process(self, query: str, chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
        LOGGER.info("Search results for %r: %s documents", query, len(chunks))
        for index, chunk in enumerate(chunks, start=1):
            preview = chunk.document.page_content[: self._preview_chars].replace("\n", " ")
            LOGGER.info("  [%s] score=%.3f source=%s %s", index, chunk.score, chunk.document.metadata.get("source"), preview)
        return chunks
