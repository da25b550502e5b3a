"""Model-driven metadata enrichment for document chunks."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from langchain_core.documents import BaseDocumentTransformer, Document

LOGGER = logging.getLogger(__name__)

KEYWORDS_METADATA_KEY = "keywords"

KEYWORDS_TEMPLATE = "{context_str}. Give {keyword_count} unique keywords for this document. Format as comma separated. Keywords:"


class TextGenerator(Protocol):
    def generate(self, prompt: str, **kwargs: Any) -> str: ...


def parse_keywords(raw: str, limit: int) -> list[str]:
    """Split a comma separated model answer into at most ``limit`` unique keywords."""
    keywords: list[str] = []
    seen: set[str] = set()
    for part in raw.replace("\n", ",").split(","):
        keyword = part.strip().strip(".").strip()
        if not keyword or keyword.lower() in seen:
            continue
        seen.add(keyword.lower())
        keywords.append(keyword)
        if len(keywords) >= limit:
            break
    return keywords


class KeywordMetadataEnricher(BaseDocumentTransformer):
    """Annotate each document with keywords extracted by a language model.

    One model call is made per document and the output order matches the
    input order. Model failures propagate so a broken enrichment step aborts
    the ingestion run instead of silently dropping documents.
    """

    def __init__(self, model: TextGenerator, keyword_count: int = 4) -> None:
        if keyword_count <= 0:
            message = f"keyword_count must be positive (got {keyword_count})"
            raise ValueError(message)
        self._model = model
        self._keyword_count = keyword_count

    @property
    def keyword_count(self) -> int:
        return self._keyword_count

    def enrich(self, documents: Sequence[Document]) -> list[Document]:
        enriched: list[Document] = []
        for document in documents:
            prompt = KEYWORDS_TEMPLATE.format(context_str=document.page_content, keyword_count=self._keyword_count)
            answer = self._model.generate(prompt)
            keywords = parse_keywords(answer, self._keyword_count)
            document.metadata[KEYWORDS_METADATA_KEY] = ", ".join(keywords)
            enriched.append(document)
        LOGGER.debug("Enriched %s documents with up to %s keywords each", len(enriched), self._keyword_count)
        return enriched

    def transform_documents(self, documents: Sequence[Document], **kwargs: Any) -> Sequence[Document]:
        return self.enrich(documents)
