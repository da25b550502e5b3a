"""Per-request retrieval pipeline and the advisor that plugs it into chat calls.

Stages run strictly in order::

    received -> expanded -> transformed -> retrieved -> post_processed -> augmented -> dispatched

Every stage is optional except retrieval and augmentation; a missing stage
passes its input through unchanged. Expansion and translation failures
degrade to the original query inside their components, while retrieval and
augmentation failures abort the request.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from langchain_core.messages import AIMessageChunk

from genai_chat_gateway.chat.advisors import CallNext, ChatRequest, ChatResponse, StreamNext
from genai_chat_gateway.rag.augmentation import AugmentedQuery, ContextualQueryAugmenter
from genai_chat_gateway.rag.query import MultiQueryExpander, TranslationQueryTransformer
from genai_chat_gateway.rag.retrieval import (
    DocumentPostProcessor,
    DocumentRetriever,
    RetrievalResult,
    merge_results,
)

LOGGER = logging.getLogger(__name__)


class RetrievalStage(str, Enum):
    RECEIVED = "received"
    EXPANDED = "expanded"
    TRANSFORMED = "transformed"
    RETRIEVED = "retrieved"
    POST_PROCESSED = "post_processed"
    AUGMENTED = "augmented"
    DISPATCHED = "dispatched"


@dataclass(slots=True, frozen=True)
class RetrievalRequest:
    query: str
    conversation_id: str
    filter_expression: str | None = None


@dataclass(slots=True)
class RetrievalTrace:
    """What each stage produced for one request."""

    request: RetrievalRequest
    stage: RetrievalStage = RetrievalStage.RECEIVED
    queries: list[str] = field(default_factory=list)
    result: RetrievalResult = field(default_factory=RetrievalResult)
    augmented: AugmentedQuery | None = None


class RetrievalOrchestrator:
    """Expand, translate, retrieve, post-process and augment one user query."""

    def __init__(
        self,
        retriever: DocumentRetriever,
        augmenter: ContextualQueryAugmenter,
        *,
        expander: MultiQueryExpander | None = None,
        transformer: TranslationQueryTransformer | None = None,
        post_processor: DocumentPostProcessor | None = None,
    ) -> None:
        self._retriever = retriever
        self._augmenter = augmenter
        self._expander = expander
        self._transformer = transformer
        self._post_processor = post_processor

    @property
    def retriever(self) -> DocumentRetriever:
        return self._retriever

    @property
    def post_processor(self) -> DocumentPostProcessor | None:
        return self._post_processor

    def run(self, request: RetrievalRequest) -> RetrievalTrace:
        trace = RetrievalTrace(request=request, queries=[request.query])

        if self._expander is not None:
            trace.queries = self._expander.expand(request.query)
        trace.stage = RetrievalStage.EXPANDED

        if self._transformer is not None:
            trace.queries = [self._transformer.transform(query) for query in trace.queries]
        trace.queries = list(dict.fromkeys(trace.queries))
        trace.stage = RetrievalStage.TRANSFORMED

        per_query = [self._retriever.retrieve(query, request.filter_expression) for query in trace.queries]
        trace.result = merge_results(per_query, self._retriever.config)
        trace.stage = RetrievalStage.RETRIEVED

        if self._post_processor is not None:
            trace.result = RetrievalResult(self._post_processor.process(request.query, list(trace.result.chunks)))
        trace.stage = RetrievalStage.POST_PROCESSED

        trace.augmented = self._augmenter.augment(request.query, trace.result.documents)
        trace.stage = RetrievalStage.AUGMENTED
        LOGGER.debug(
            "Retrieval for %s: %s queries, %s documents, grounded=%s",
            request.conversation_id,
            len(trace.queries),
            len(trace.result),
            trace.augmented.grounded,
        )
        return trace


class RetrievalAugmentationAdvisor:
    """Advisor that replaces the user message with its augmented prompt."""

    name = "retrieval-augmentation"

    def __init__(self, orchestrator: RetrievalOrchestrator, order: int = 200) -> None:
        self._orchestrator = orchestrator
        self.order = order

    def around_call(self, request: ChatRequest, next_call: CallNext) -> ChatResponse:
        trace, augmented_request = self._augment(request)
        response = next_call(augmented_request)
        trace.stage = RetrievalStage.DISPATCHED
        response.documents = trace.result.documents
        response.metadata.update(self._metadata(trace))
        return response

    def around_stream(self, request: ChatRequest, next_stream: StreamNext) -> Iterator[AIMessageChunk]:
        trace, augmented_request = self._augment(request)
        trace.stage = RetrievalStage.DISPATCHED
        yield from next_stream(augmented_request)

    def _augment(self, request: ChatRequest) -> tuple[RetrievalTrace, ChatRequest]:
        trace = self._orchestrator.run(
            RetrievalRequest(
                query=request.user_text,
                conversation_id=request.conversation_id,
                filter_expression=request.filter_expression,
            )
        )
        augmented = trace.augmented
        request.context["retrieval"] = trace
        return trace, request.with_user_text(augmented.text if augmented is not None else request.user_text)

    @staticmethod
    def _metadata(trace: RetrievalTrace) -> dict[str, object]:
        return {
            "queries": list(trace.queries),
            "scores": trace.result.scores,
            "grounded": trace.augmented.grounded if trace.augmented else False,
        }
