"""Ingestion sinks that receive the fully chunked and enriched batch."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml
from langchain_core.documents import Document

from genai_chat_gateway.rag.vector_store import VectorStoreManager

LOGGER = logging.getLogger(__name__)


class DocumentWriter(Protocol):
    name: str

    def write(self, documents: Sequence[Document]) -> None: ...


def document_to_record(document: Document) -> dict[str, Any]:
    return {
        "id": document.metadata.get("chunk_id", document.id),
        "text": document.page_content,
        "metadata": document.metadata,
    }


class JsonLogDocumentWriter:
    """Debug sink that logs the whole batch as pretty-printed JSON."""

    name = "json-log"

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def write(self, documents: Sequence[Document]) -> None:
        payload = json.dumps([document_to_record(doc) for doc in documents], indent=2, ensure_ascii=False, default=str)
        self._logger.info("Ingested batch (%s documents):\n%s", len(documents), payload)


@dataclass(slots=True)
class ProcessedDocument:
    """Summary of one source document persisted by :class:`ProcessedDocumentWriter`."""

    document_id: str
    chunk_count: int
    metadata: dict[str, Any] = field(default_factory=dict)
    artifact_paths: list[Path] = field(default_factory=list)


class ProcessedDocumentWriter:
    """Persist chunks under ``<processed_dir>/<document_id>/`` as ``chunks.jsonl`` plus ``manifest.yaml``."""

    name = "processed-artifacts"

    def __init__(self, processed_dir: Path, manifest_keys: Sequence[str] = ("source", "file_name", "content_type")) -> None:
        self._processed_dir = processed_dir
        self._manifest_keys = tuple(manifest_keys)

    @property
    def processed_dir(self) -> Path:
        return self._processed_dir

    def write(self, documents: Sequence[Document]) -> None:
        grouped: dict[str, list[Document]] = defaultdict(list)
        for document in documents:
            grouped[str(document.metadata.get("document_id", "inline"))].append(document)
        for document_id, chunks in grouped.items():
            paths = self._persist(document_id, chunks)
            LOGGER.info("Persisted %s chunks for document %s to %s", len(chunks), document_id, paths)

    def _persist(self, document_id: str, documents: Sequence[Document]) -> list[Path]:
        artifact_dir = self._processed_dir / document_id
        artifact_dir.mkdir(parents=True, exist_ok=True)

        output_path = artifact_dir / "chunks.jsonl"
        with output_path.open("w", encoding="utf-8") as file:
            for document in documents:
                file.write(json.dumps(document_to_record(document), ensure_ascii=False, default=str))
                file.write("\n")

        manifest_path = artifact_dir / "manifest.yaml"
        first = documents[0].metadata if documents else {}
        manifest = {
            "document_id": document_id,
            "chunk_count": len(documents),
            "metadata": {key: first[key] for key in self._manifest_keys if key in first},
        }
        with manifest_path.open("w", encoding="utf-8") as manifest_file:
            yaml.safe_dump(manifest, manifest_file)
        return [output_path, manifest_path]

    def list_documents(self) -> list[ProcessedDocument]:
        results: list[ProcessedDocument] = []
        for manifest_path in self._processed_dir.glob("*/manifest.yaml"):
            with manifest_path.open("r", encoding="utf-8") as manifest_file:
                payload = yaml.safe_load(manifest_file) or {}
            chunks_path = manifest_path.parent / "chunks.jsonl"
            results.append(
                ProcessedDocument(
                    document_id=payload.get("document_id", manifest_path.parent.name),
                    chunk_count=payload.get("chunk_count", 0),
                    metadata=payload.get("metadata", {}),
                    artifact_paths=[chunks_path, manifest_path] if chunks_path.exists() else [manifest_path],
                )
            )
        return sorted(results, key=lambda result: result.document_id)


def load_processed_document(document_dir: Path) -> list[Document]:
    """Load persisted chunks from disk back into Document objects."""
    chunks_path = document_dir / "chunks.jsonl"
    if not chunks_path.exists():
        raise FileNotFoundError(chunks_path)
    documents: list[Document] = []
    with chunks_path.open("r", encoding="utf-8") as file:
        for line in file:
            payload = json.loads(line)
            documents.append(Document(id=payload.get("id"), page_content=payload["text"], metadata=payload["metadata"]))
    return documents


class VectorIndexWriter:
    """Sink that writes the batch into the vector index."""

    name = "vector-index"

    def __init__(self, vector_store: VectorStoreManager) -> None:
        self._vector_store = vector_store
        self.written_ids: list[str] = []

    def write(self, documents: Sequence[Document]) -> None:
        self.written_ids = self._vector_store.write(documents)
