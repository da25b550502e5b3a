"""Fold retrieved documents into the prompt sent to the model."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from langchain_core.documents import Document

from genai_chat_gateway.errors import AugmentationError

LOGGER = logging.getLogger(__name__)

EmptyContextPolicy = Literal["refuse", "raise"]

CONTEXT_TEMPLATE = """Context information is below.

---------------------
{context}
---------------------

Given the context information and no prior knowledge, answer the query.

Follow these rules:

1. If the answer is not in the context, just say that you don't know.
2. Avoid statements like "Based on the context..." or "The provided information...".

Query: {query}

Answer:
"""

EMPTY_CONTEXT_PROMPT = """The user query is outside your knowledge base.
Politely inform the user that you can't answer it.
"""


@dataclass(slots=True)
class AugmentedQuery:
    """Final user prompt plus the documents it was grounded on.

    ``grounded`` is False when no documents were available, which marks
    degraded-grounding answers to callers.
    """

    text: str
    documents: list[Document] = field(default_factory=list)
    grounded: bool = True


class ContextualQueryAugmenter:
    """Inject document text into a context block around the user query.

    With ``allow_empty_context`` the query passes through unchanged when no
    documents were retrieved, so the model answers from its own knowledge.
    Otherwise ``empty_context_policy`` either swaps in a refusal prompt
    (``refuse``) or raises :class:`AugmentationError` (``raise``).
    """

    def __init__(
        self,
        *,
        allow_empty_context: bool = True,
        empty_context_policy: EmptyContextPolicy = "refuse",
        template: str = CONTEXT_TEMPLATE,
        empty_context_prompt: str = EMPTY_CONTEXT_PROMPT,
    ) -> None:
        if "{context}" not in template or "{query}" not in template:
            message = "Augmentation template must contain {context} and {query} placeholders"
            raise ValueError(message)
        self._allow_empty_context = allow_empty_context
        self._empty_context_policy = empty_context_policy
        self._template = template
        self._empty_context_prompt = empty_context_prompt

    def augment(self, query: str, documents: Sequence[Document]) -> AugmentedQuery:
        if not documents:
            if self._allow_empty_context:
                LOGGER.debug("No documents retrieved; answering %r without context", query)
                return AugmentedQuery(text=query, documents=[], grounded=False)
            if self._empty_context_policy == "raise":
                message = f"No documents were retrieved for query {query!r}"
                raise AugmentationError(message)
            LOGGER.debug("No documents retrieved; refusing %r", query)
            return AugmentedQuery(text=self._empty_context_prompt, documents=[], grounded=False)
        context = "\n".join(document.page_content for document in documents)
        return AugmentedQuery(
            text=self._template.format(context=context, query=query),
            documents=list(documents),
            grounded=True,
        )
