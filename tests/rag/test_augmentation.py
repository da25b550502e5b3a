from __future__ import annotations

import pytest
from langchain_core.documents import Document

from genai_chat_gateway.errors import AugmentationError
from genai_chat_gateway.rag import ContextualQueryAugmenter
from genai_chat_gateway.rag.augmentation import EMPTY_CONTEXT_PROMPT


def test_documents_are_folded_into_context_block() -> None:
    documents = [Document(page_content="Paris is the capital of France."), Document(page_content="It has {braces}.")]

    augmented = ContextualQueryAugmenter().augment("What is the capital?", documents)

    assert augmented.grounded
    assert augmented.documents == documents
    assert "Paris is the capital of France.\nIt has {braces}." in augmented.text
    assert augmented.text.rstrip().endswith("Query: What is the capital?\n\nAnswer:")


def test_empty_context_passes_query_through_when_allowed() -> None:
    augmented = ContextualQueryAugmenter(allow_empty_context=True).augment("hello", [])

    assert augmented.text == "hello"
    assert not augmented.grounded


def test_empty_context_refusal_prompt() -> None:
    augmented = ContextualQueryAugmenter(allow_empty_context=False).augment("hello", [])

    assert augmented.text == EMPTY_CONTEXT_PROMPT
    assert not augmented.grounded


def test_empty_context_can_raise() -> None:
    augmenter = ContextualQueryAugmenter(allow_empty_context=False, empty_context_policy="raise")

    with pytest.raises(AugmentationError):
        augmenter.augment("hello", [])


def test_template_requires_placeholders() -> None:
    with pytest.raises(ValueError):
        ContextualQueryAugmenter(template="no placeholders here")
