"""Batch ETL pipeline: extract, chunk, enrich, and write documents to every sink.

Each stage runs over the whole batch before the next one starts. Any stage
failure aborts the run; the vector index is always the last sink written, so
a failure anywhere earlier leaves it untouched and a failure inside the index
write is rolled back by :class:`~genai_chat_gateway.rag.vector_store.VectorStoreManager`.
Re-running the pipeline appends new chunks with fresh ids; deduplication is
left to the index.
"""

from __future__ import annotations

import glob
import hashlib
import json
import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from langchain_core.documents import Document
from langchain_text_splitters import TextSplitter

from genai_chat_gateway.errors import ExtractionError
from genai_chat_gateway.rag.enrichment import KeywordMetadataEnricher
from genai_chat_gateway.rag.splitter import Windowing
from genai_chat_gateway.rag.writers import DocumentWriter, VectorIndexWriter
from genai_chat_gateway.utils.time import utcnow_isoformat

LOGGER = logging.getLogger(__name__)


SUPPORTED_EXTENSIONS = {
    ".pdf",
    ".md",
    ".markdown",
    ".txt",
    ".json",
    ".yaml",
    ".yml",
    ".srt",
    ".vtt",
    ".ipynb",
    ".docx",
}


@dataclass(slots=True, frozen=True)
class IngestionConfig:
    """Settings for the startup ingestion run."""

    documents_location_pattern: str = "data/documents/**/*"
    chunk_size: int = 1000
    chunk_overlap: int = 200
    windowing: Windowing = "literal"
    keyword_count: int = 4
    enrich_keywords: bool = True
    init_on_startup: bool = False
    debug_log_sink: bool = False
    processed_dir: Path | None = None
    max_file_size_bytes: int = 10 * 1024 * 1024


@dataclass(slots=True)
class IngestionReport:
    """Counts produced by one pipeline run."""

    source_count: int
    document_count: int
    chunk_count: int
    chunk_ids: list[str] = field(default_factory=list)
    sinks: list[str] = field(default_factory=list)


def derive_document_id(source: str) -> str:
    file_name = Path(source).name
    digest = hashlib.sha256(source.encode("utf-8")).hexdigest()[:12]
    return f"{file_name}-{digest}"


def resolve_sources(pattern: str) -> list[Path]:
    """Expand a glob pattern (``**`` allowed) into the supported files it matches."""
    matches = [Path(match) for match in glob.glob(pattern, recursive=True)]
    return sorted(path for path in matches if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS)


class FileDocumentReader:
    """Reads one file into a single Document carrying its source metadata."""

    def __init__(self, max_file_size_bytes: int = 10 * 1024 * 1024) -> None:
        self._max_file_size_bytes = max_file_size_bytes

    def read(self, path: Path) -> list[Document]:
        self._validate_path(path)
        try:
            text = self._load_file(path)
        except (OSError, ValueError, UnicodeDecodeError, yaml.YAMLError) as exc:
            message = f"Failed to read {path}: {exc}"
            raise ExtractionError(message) from exc
        if not text.strip():
            LOGGER.warning("Skipping empty document %s", path)
            return []
        metadata = {
            "source": str(path),
            "file_name": path.name,
            "content_type": path.suffix.lower().lstrip("."),
            "document_id": derive_document_id(str(path)),
            "ingested_at": utcnow_isoformat(),
        }
        return [Document(page_content=text, metadata=metadata)]

    def _validate_path(self, path: Path) -> None:
        if not path.exists():
            message = f"Source document not found: {path}"
            raise ExtractionError(message)
        if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            allowed = ", ".join(sorted(SUPPORTED_EXTENSIONS))
            message = f"Unsupported file extension '{path.suffix}'. Supported extensions: {allowed}"
            raise ExtractionError(message)
        if self._max_file_size_bytes > 0 and path.stat().st_size > self._max_file_size_bytes:
            message = (
                f"{path.name} exceeds the configured ingestion limit of "
                f"{self._max_file_size_bytes / (1024 * 1024):.1f} MB"
            )
            raise ExtractionError(message)

    def _load_file(self, path: Path) -> str:
        loader_map = {
            ".pdf": self._load_pdf,
            ".md": self._load_text,
            ".markdown": self._load_text,
            ".txt": self._load_text,
            ".json": self._load_json,
            ".yaml": self._load_yaml,
            ".yml": self._load_yaml,
            ".srt": self._load_text,
            ".vtt": self._load_text,
            ".ipynb": self._load_notebook,
            ".docx": self._load_docx,
        }
        loader = loader_map[path.suffix.lower()]
        LOGGER.debug("Loading document %s using loader %s", path, loader.__name__)
        return loader(path)

    @staticmethod
    def _load_text(path: Path) -> str:
        return path.read_text(encoding="utf-8")

    @staticmethod
    def _load_pdf(path: Path) -> str:
        from pypdf import PdfReader

        reader = PdfReader(str(path))
        return "\n".join(page.extract_text() or "" for page in reader.pages)

    @staticmethod
    def _load_docx(path: Path) -> str:
        import docx  # type: ignore[import]

        document = docx.Document(str(path))
        return "\n".join(paragraph.text for paragraph in document.paragraphs)

    @staticmethod
    def _load_json(path: Path) -> str:
        with path.open("r", encoding="utf-8") as file:
            content = json.load(file)
        return json.dumps(content, indent=2, ensure_ascii=False)

    @staticmethod
    def _load_yaml(path: Path) -> str:
        with path.open("r", encoding="utf-8") as file:
            content = yaml.safe_load(file)
        return yaml.safe_dump(content, sort_keys=False, allow_unicode=True)

    @staticmethod
    def _load_notebook(path: Path) -> str:
        with path.open("r", encoding="utf-8") as file:
            notebook = json.load(file)
        buffers: list[str] = []
        for cell in notebook.get("cells", []):
            source = "".join(cell.get("source", []))
            if cell.get("cell_type") == "markdown":
                buffers.append(source)
            elif cell.get("cell_type") == "code":
                buffers.append(f"```python\n{source}\n```")
        return "\n\n".join(buffers)


class EtlPipeline:
    """Drives extract -> chunk -> enrich -> write over a batch of sources."""

    def __init__(
        self,
        reader: FileDocumentReader,
        splitter: TextSplitter,
        index_writer: VectorIndexWriter,
        *,
        enricher: KeywordMetadataEnricher | None = None,
        debug_writers: Sequence[DocumentWriter] = (),
    ) -> None:
        self._reader = reader
        self._splitter = splitter
        self._enricher = enricher
        self._index_writer = index_writer
        self._debug_writers = list(debug_writers)
        self._last_report: IngestionReport | None = None

    @property
    def last_report(self) -> IngestionReport | None:
        return self._last_report

    def run(self, sources: Iterable[Path | str]) -> IngestionReport:
        source_paths = [Path(source) for source in sources]
        LOGGER.info("Starting ingestion of %s sources", len(source_paths))
        try:
            documents = self.extract(source_paths)
            chunks = self.chunk(documents)
            if self._enricher is not None:
                chunks = self._enricher.enrich(chunks)
            sink_names = self.write(chunks)
        except Exception:
            LOGGER.exception("Ingestion run aborted; nothing was committed to the vector index")
            raise
        report = IngestionReport(
            source_count=len(source_paths),
            document_count=len(documents),
            chunk_count=len(chunks),
            chunk_ids=list(self._index_writer.written_ids),
            sinks=sink_names,
        )
        self._last_report = report
        LOGGER.info(
            "Ingestion finished: %s sources, %s documents, %s chunks",
            report.source_count,
            report.document_count,
            report.chunk_count,
        )
        return report

    def run_once(self, sources: Iterable[Path | str]) -> IngestionReport:
        """Run the pipeline unless this instance already completed a run."""
        if self._last_report is not None:
            LOGGER.info("Ingestion already ran for this process; skipping")
            return self._last_report
        return self.run(sources)

    def extract(self, sources: Sequence[Path]) -> list[Document]:
        documents: list[Document] = []
        for source in sources:
            documents.extend(self._reader.read(source))
        LOGGER.info("Extracted %s documents", len(documents))
        return documents

    def chunk(self, documents: Sequence[Document]) -> list[Document]:
        chunks: list[Document] = []
        for document in documents:
            pieces = self._splitter.split_documents([document])
            for index, piece in enumerate(pieces):
                piece.metadata["chunk_id"] = uuid.uuid4().hex
                piece.metadata["chunk_index"] = index
                piece.id = piece.metadata["chunk_id"]
            chunks.extend(pieces)
        LOGGER.info("Split %s documents into %s chunks", len(documents), len(chunks))
        return chunks

    def write(self, chunks: Sequence[Document]) -> list[str]:
        names: list[str] = []
        for writer in self._debug_writers:
            writer.write(chunks)
            names.append(writer.name)
        self._index_writer.write(chunks)
        names.append(self._index_writer.name)
        return names
