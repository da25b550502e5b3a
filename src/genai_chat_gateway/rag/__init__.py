"""Ingestion and retrieval-augmentation components for the chat gateway."""

from .augmentation import AugmentedQuery, ContextualQueryAugmenter
from .embeddings import EmbeddingConfig, EmbeddingFactory
from .enrichment import KeywordMetadataEnricher
from .filters import parse_filter_expression, to_chroma_where, to_predicate
from .ingestion import (
    EtlPipeline,
    FileDocumentReader,
    IngestionConfig,
    IngestionReport,
    resolve_sources,
)
from .orchestration import RetrievalAugmentationAdvisor, RetrievalOrchestrator, RetrievalRequest
from .query import MultiQueryExpander, TranslationQueryTransformer
from .retrieval import (
    DocumentRetriever,
    LoggingDocumentPostProcessor,
    RetrievalConfig,
    RetrievalResult,
    RetrievedChunk,
)
from .splitter import LengthTextSplitter
from .vector_store import VectorStoreConfig, VectorStoreManager
from .writers import JsonLogDocumentWriter, ProcessedDocumentWriter, VectorIndexWriter, load_processed_document

__all__ = [
    "AugmentedQuery",
    "ContextualQueryAugmenter",
    "DocumentRetriever",
    "EmbeddingConfig",
    "EmbeddingFactory",
    "EtlPipeline",
    "FileDocumentReader",
    "IngestionConfig",
    "IngestionReport",
    "JsonLogDocumentWriter",
    "KeywordMetadataEnricher",
    "LengthTextSplitter",
    "LoggingDocumentPostProcessor",
    "MultiQueryExpander",
    "ProcessedDocumentWriter",
    "RetrievalAugmentationAdvisor",
    "RetrievalConfig",
    "RetrievalOrchestrator",
    "RetrievalRequest",
    "RetrievalResult",
    "RetrievedChunk",
    "TranslationQueryTransformer",
    "VectorIndexWriter",
    "VectorStoreConfig",
    "VectorStoreManager",
    "load_processed_document",
    "parse_filter_expression",
    "resolve_sources",
    "to_chroma_where",
    "to_predicate",
]
