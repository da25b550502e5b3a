"""Pre-retrieval query rewriting: multi-query expansion and translation."""

from __future__ import annotations

import logging

from genai_chat_gateway.rag.enrichment import TextGenerator

LOGGER = logging.getLogger(__name__)

EXPANSION_TEMPLATE = """You are an expert at information retrieval and search optimization.
Your task is to generate {number} different versions of the given query.

Each variant must cover different perspectives or aspects of the topic,
while maintaining the core intent of the original query. The goal is to
expand the search space and improve the chances of finding relevant information.

Do not explain your choices or add any other text.
Provide the query variants separated by newlines.

Original query: {query}

Query variants:
"""

TRANSLATION_TEMPLATE = """Given a user query, translate it to {target_language}.
If the query is already in {target_language}, return it unchanged.
If you don't know the language of the query, return it unchanged.
Do not add explanations nor any other text.

Original query: {query}

Translated query:
"""


class MultiQueryExpander:
    """Ask the model for ``number_of_queries`` paraphrases of a query.

    Any model failure, or an answer with the wrong number of variants,
    degrades to the original query alone.
    """

    def __init__(self, model: TextGenerator, number_of_queries: int = 3, *, include_original: bool = False) -> None:
        if number_of_queries <= 0:
            message = f"number_of_queries must be positive (got {number_of_queries})"
            raise ValueError(message)
        self._model = model
        self._number_of_queries = number_of_queries
        self._include_original = include_original

    def expand(self, query: str) -> list[str]:
        prompt = EXPANSION_TEMPLATE.format(number=self._number_of_queries, query=query)
        try:
            answer = self._model.generate(prompt)
        except Exception as exc:
            LOGGER.warning("Query expansion failed, using the original query: %s", exc)
            return [query]
        variants = [line.strip() for line in answer.splitlines() if line.strip()]
        if len(variants) != self._number_of_queries:
            LOGGER.warning(
                "Query expansion returned %s variants instead of %s, using the original query",
                len(variants),
                self._number_of_queries,
            )
            return [query]
        LOGGER.debug("Expanded query %r into %s", query, variants)
        if self._include_original:
            return [query, *variants]
        return variants


class TranslationQueryTransformer:
    """Rewrite a query into ``target_language``; blank answers or failures keep the original."""

    def __init__(self, model: TextGenerator, target_language: str = "korean") -> None:
        if not target_language.strip():
            message = "target_language must not be blank"
            raise ValueError(message)
        self._model = model
        self._target_language = target_language

    @property
    def target_language(self) -> str:
        return self._target_language

    def transform(self, query: str, target_language: str | None = None) -> str:
        prompt = TRANSLATION_TEMPLATE.format(target_language=target_language or self._target_language, query=query)
        try:
            translated = self._model.generate(prompt).strip()
        except Exception as exc:
            LOGGER.warning("Query translation failed, using the original query: %s", exc)
            return query
        if not translated:
            LOGGER.warning("Query translation returned nothing, using the original query")
            return query
        LOGGER.debug("Translated query %r to %r", query, translated)
        return translated
