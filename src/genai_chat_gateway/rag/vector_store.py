"""Vector index access for ingestion writes and similarity search."""

from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import chromadb
from chromadb.config import Settings
from langchain_chroma import Chroma
from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_core.vectorstores import InMemoryVectorStore
from langchain_core.vectorstores import VectorStore as VectorStoreBase

from genai_chat_gateway.errors import IndexWriteError
from genai_chat_gateway.rag.filters import parse_filter_expression, to_chroma_where, to_predicate

LOGGER = logging.getLogger(__name__)

BackendLiteral = Literal["in_memory", "chroma"]

_METADATA_SCALARS = (str, int, float, bool)


@dataclass(slots=True, frozen=True)
class VectorStoreConfig:
    """Selects and configures the vector index backend."""

    backend: BackendLiteral = "in_memory"
    collection_name: str = "chat_gateway"
    persist_directory: Path = Path("data/chroma")
    reset_on_start: bool = False
    write_batch_size: int = 64


def _sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Keep only scalar metadata values; lists are flattened to comma separated strings."""
    cleaned: dict[str, Any] = {}
    for key, value in metadata.items():
        if isinstance(value, _METADATA_SCALARS):
            cleaned[key] = value
        elif isinstance(value, (list, tuple)):
            cleaned[key] = ", ".join(str(item) for item in value)
        elif value is not None:
            cleaned[key] = str(value)
    return cleaned


def document_key(document: Document) -> str:
    """Stable identity of an indexed chunk."""
    chunk_id = document.metadata.get("chunk_id")
    if chunk_id:
        return str(chunk_id)
    if document.id:
        return str(document.id)
    return f"{document.metadata.get('source', 'inline')}:{hash(document.page_content)}"


class VectorStoreManager:
    """Facade over a LangChain vector store for writes, deletes and scored search."""

    def __init__(self, embeddings: Embeddings, config: VectorStoreConfig | None = None) -> None:
        self._embeddings = embeddings
        self._config = config or VectorStoreConfig()
        self._store: VectorStoreBase | None = None
        self._client: Any = None
        if self._config.reset_on_start:
            self.reset()

    @property
    def config(self) -> VectorStoreConfig:
        return self._config

    @property
    def collection_name(self) -> str:
        return self._config.collection_name

    def write(self, documents: Iterable[Document]) -> list[str]:
        """Add documents in batches and return their ids.

        A failing batch rolls back every id written by this call before
        ``IndexWriteError`` is raised, so a failed write leaves no partial state.
        """
        store = self._ensure_store()
        doc_list = list(documents)
        if not doc_list:
            return []
        written: list[str] = []
        batch_size = max(1, self._config.write_batch_size)
        LOGGER.info("Writing %s documents to vector store '%s'", len(doc_list), self._config.collection_name)
        try:
            for start in range(0, len(doc_list), batch_size):
                batch = [self._prepare(doc) for doc in doc_list[start : start + batch_size]]
                ids = [document_key(doc) for doc in batch]
                store.add_documents(batch, ids=ids)
                written.extend(ids)
        except Exception as exc:
            self._rollback(written)
            message = f"Failed to write {len(doc_list)} documents to '{self._config.collection_name}': {exc}"
            raise IndexWriteError(message) from exc
        return written

    def _rollback(self, ids: list[str]) -> None:
        if not ids:
            return
        LOGGER.warning("Rolling back %s documents from vector store '%s'", len(ids), self._config.collection_name)
        try:
            self.delete_documents(ids)
        except Exception:
            LOGGER.exception("Rollback of %s documents failed; the index may hold a partial batch", len(ids))

    def delete_documents(self, document_ids: Sequence[str]) -> None:
        if not document_ids:
            return
        store = self._ensure_store()
        LOGGER.info("Deleting %s documents from vector store '%s'", len(document_ids), self._config.collection_name)
        store.delete(ids=list(document_ids))

    def similarity_search(
        self,
        query: str,
        *,
        top_k: int,
        filter_expression: str | None = None,
    ) -> list[tuple[Document, float]]:
        """Return up to ``top_k`` ``(document, similarity)`` pairs for ``query``, best first."""
        store = self._ensure_store()
        if isinstance(store, InMemoryVectorStore):
            predicate = None
            if filter_expression:
                matches = to_predicate(parse_filter_expression(filter_expression))

                def predicate(document: Document) -> bool:
                    return matches(document.metadata)

            return store.similarity_search_with_score(query, k=top_k, filter=predicate)
        where = to_chroma_where(parse_filter_expression(filter_expression)) if filter_expression else None
        return store.similarity_search_with_relevance_scores(query, k=top_k, filter=where)

    def reset(self) -> None:
        """Drop all indexed documents."""
        if self._config.backend == "in_memory":
            self._store = None
            LOGGER.info("In-memory vector store cleared")
            return
        store = self._store
        if store is not None:
            delete_collection = getattr(store, "delete_collection", None)
            if callable(delete_collection):
                delete_collection()
        self._store = None
        self._client = None
        persist_dir = self._config.persist_directory
        if persist_dir.exists():
            shutil.rmtree(persist_dir)
        LOGGER.info("Vector store '%s' reset at %s", self._config.collection_name, persist_dir)

    def check_health(self) -> tuple[bool, str | None]:
        """Return ``(healthy, error_message)`` for the configured backend."""
        try:
            self._ensure_store()
            if self._client is not None:
                self._client.heartbeat()
        except Exception as exc:  # health checks report instead of raising
            return False, f"Vector store health check failed: {str(exc)[:200]}"
        return True, None

    @staticmethod
    def _prepare(document: Document) -> Document:
        metadata = _sanitize_metadata(dict(document.metadata))
        metadata.setdefault("chunk_id", document.id or uuid.uuid4().hex)
        return Document(id=str(metadata["chunk_id"]), page_content=document.page_content, metadata=metadata)

    def _ensure_store(self) -> VectorStoreBase:
        if self._store is not None:
            return self._store
        if self._config.backend == "in_memory":
            LOGGER.debug("Initializing in-memory vector store '%s'", self._config.collection_name)
            self._store = InMemoryVectorStore(embedding=self._embeddings)
            return self._store
        if self._config.backend != "chroma":
            message = f"Unsupported vector store backend: {self._config.backend}"
            raise ValueError(message)

        self._config.persist_directory.mkdir(parents=True, exist_ok=True)
        LOGGER.debug(
            "Initializing Chroma vector store(collection=%s, persist_dir=%s)",
            self._config.collection_name,
            self._config.persist_directory,
        )
        self._client = chromadb.PersistentClient(
            path=str(self._config.persist_directory),
            settings=Settings(anonymized_telemetry=False, allow_reset=True),
        )
        self._store = Chroma(
            client=self._client,
            collection_name=self._config.collection_name,
            embedding_function=self._embeddings,
            collection_metadata={"hnsw:space": "cosine"},
        )
        return self._store
