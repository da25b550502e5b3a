from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from langchain_core.documents import Document

from genai_chat_gateway.errors import FilterExpressionError, RetrievalError
from genai_chat_gateway.rag import DocumentRetriever, LoggingDocumentPostProcessor, RetrievalConfig, RetrievedChunk
from genai_chat_gateway.rag.retrieval import RetrievalResult, merge_results, rank_chunks


def chunk(chunk_id: str, score: float) -> RetrievedChunk:
    return RetrievedChunk(Document(page_content=f"text {chunk_id}", metadata={"chunk_id": chunk_id}), score)


def test_rank_chunks_thresholds_sorts_and_truncates() -> None:
    config = RetrievalConfig(similarity_threshold=0.3, top_k=3)
    chunks = [chunk("a", 0.2), chunk("b", 0.9), chunk("c", 0.5), chunk("d", 0.7), chunk("e", 0.3)]

    ranked = rank_chunks(chunks, config)

    assert [item.key for item in ranked] == ["b", "d", "c"]
    assert all(item.score >= 0.3 for item in ranked)


def test_rank_chunks_keeps_best_score_per_chunk() -> None:
    config = RetrievalConfig(similarity_threshold=0.0, top_k=5)

    ranked = rank_chunks([chunk("a", 0.4), chunk("b", 0.5), chunk("a", 0.8)], config)

    assert [(item.key, item.score) for item in ranked] == [("a", 0.8), ("b", 0.5)]


def test_rank_chunks_is_stable_for_equal_scores() -> None:
    config = RetrievalConfig(similarity_threshold=0.0, top_k=5)

    ranked = rank_chunks([chunk("x", 0.5), chunk("y", 0.5), chunk("z", 0.5)], config)

    assert [item.key for item in ranked] == ["x", "y", "z"]


def test_merge_results_across_queries() -> None:
    config = RetrievalConfig(similarity_threshold=0.3, top_k=2)
    first = RetrievalResult([chunk("a", 0.6), chunk("b", 0.4)])
    second = RetrievalResult([chunk("b", 0.9), chunk("c", 0.5)])

    merged = merge_results([first, second], config)

    assert [item.key for item in merged] == ["b", "a"]
    assert merged.scores == [0.9, 0.6]


def test_retriever_applies_config_and_passes_filter() -> None:
    store = MagicMock()
    store.similarity_search.return_value = [
        (Document(page_content="low", metadata={"chunk_id": "low"}), 0.1),
        (Document(page_content="high", metadata={"chunk_id": "high"}), 0.8),
    ]
    retriever = DocumentRetriever(store, RetrievalConfig(similarity_threshold=0.3, top_k=3))

    result = retriever.retrieve("question", "tag == 'faq'")

    store.similarity_search.assert_called_once_with("question", top_k=3, filter_expression="tag == 'faq'")
    assert [doc.page_content for doc in result.documents] == ["high"]
    assert result.chunks[0].query == "question"


def test_retriever_wraps_backend_failures() -> None:
    store = MagicMock()
    store.similarity_search.side_effect = ConnectionError("index down")
    retriever = DocumentRetriever(store)

    with pytest.raises(RetrievalError):
        retriever.retrieve("question")


def test_retriever_keeps_filter_errors() -> None:
    store = MagicMock()
    store.similarity_search.side_effect = FilterExpressionError("bad filter")
    retriever = DocumentRetriever(store)

    with pytest.raises(FilterExpressionError):
        retriever.retrieve("question", "tag ==")


def test_logging_post_processor_passes_chunks_through(caplog: pytest.LogCaptureFixture) -> None:
    chunks = [chunk("a", 0.9)]

    with caplog.at_level("INFO"):
        processed = LoggingDocumentPostProcessor().process("question", chunks)

    assert processed == chunks
    assert "Search results for 'question'" in caplog.text
