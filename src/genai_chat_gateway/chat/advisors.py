"""Ordered advisor chain wrapped around every model call.

An advisor is middleware with two hooks: ``around_call(request, next_call)``
for blocking calls and ``around_stream(request, next_stream)`` for streamed
calls. Each may rewrite the request, delegate to ``next``, and inspect or
rewrite what comes back. Advisors run in ascending ``order``; the last link
is a terminal step that talks to the model (or the tool loop).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from langchain_core.documents import Document
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage

from genai_chat_gateway.chat.conversation import ConversationTurn, MessageWindowMemory, message_text
from genai_chat_gateway.errors import GatewayError, ModelProviderError
from genai_chat_gateway.llm import describe_provider_error

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatRequest:
    """One inbound chat exchange as it flows through the advisor chain."""

    messages: list[BaseMessage]
    conversation_id: str
    options: dict[str, Any] = field(default_factory=dict)
    filter_expression: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def user_text(self) -> str:
        for message in reversed(self.messages):
            if isinstance(message, HumanMessage):
                return message_text(message)
        return ""

    def with_messages(self, messages: Sequence[BaseMessage]) -> ChatRequest:
        return replace(self, messages=list(messages))

    def with_user_text(self, text: str) -> ChatRequest:
        """Copy of the request whose last user message reads ``text``."""
        messages = list(self.messages)
        for index in range(len(messages) - 1, -1, -1):
            if isinstance(messages[index], HumanMessage):
                messages[index] = HumanMessage(content=text)
                break
        else:
            messages.append(HumanMessage(content=text))
        return replace(self, messages=messages)


@dataclass(slots=True)
class ChatResponse:
    """Final assistant answer plus the documents and metadata gathered on the way."""

    message: AIMessage
    documents: list[Document] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        return message_text(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "documents": [{"text": doc.page_content, "metadata": doc.metadata} for doc in self.documents],
            "metadata": self.metadata,
        }


CallNext = Callable[[ChatRequest], ChatResponse]
StreamNext = Callable[[ChatRequest], Iterator[AIMessageChunk]]


class Advisor(Protocol):
    name: str
    order: int

    def around_call(self, request: ChatRequest, next_call: CallNext) -> ChatResponse: ...

    def around_stream(self, request: ChatRequest, next_stream: StreamNext) -> Iterator[AIMessageChunk]: ...


class TerminalStep(Protocol):
    def call(self, request: ChatRequest) -> ChatResponse: ...

    def stream(self, request: ChatRequest) -> Iterator[AIMessageChunk]: ...


class AdvisorChain:
    """Composes advisors (sorted by ``order``, stable) around a terminal step."""

    def __init__(self, advisors: Sequence[Advisor], terminal: TerminalStep) -> None:
        self._advisors = sorted(advisors, key=lambda advisor: advisor.order)
        self._terminal = terminal

    @property
    def advisors(self) -> list[Advisor]:
        return list(self._advisors)

    def call(self, request: ChatRequest) -> ChatResponse:
        return self._call_from(0, request)

    def stream(self, request: ChatRequest) -> Iterator[AIMessageChunk]:
        return self._stream_from(0, request)

    def _call_from(self, index: int, request: ChatRequest) -> ChatResponse:
        if index == len(self._advisors):
            return self._terminal.call(request)
        return self._advisors[index].around_call(request, lambda next_request: self._call_from(index + 1, next_request))

    def _stream_from(self, index: int, request: ChatRequest) -> Iterator[AIMessageChunk]:
        if index == len(self._advisors):
            return self._terminal.stream(request)
        return self._advisors[index].around_stream(
            request, lambda next_request: self._stream_from(index + 1, next_request)
        )


class ModelCallStep:
    """Terminal step that sends the request straight to the chat model."""

    def __init__(self, model: Any) -> None:
        self._model = model

    def call(self, request: ChatRequest) -> ChatResponse:
        try:
            message = self._model.invoke(request.messages, **request.options)
        except GatewayError:
            raise
        except Exception as exc:
            raise ModelProviderError(describe_provider_error(exc)) from exc
        return ChatResponse(message=message)

    def stream(self, request: ChatRequest) -> Iterator[AIMessageChunk]:
        try:
            yield from self._model.stream(request.messages, **request.options)
        except GatewayError:
            raise
        except Exception as exc:
            raise ModelProviderError(describe_provider_error(exc)) from exc


def aggregate_chunks(chunks: Sequence[AIMessageChunk]) -> AIMessage:
    text = "".join(message_text(chunk) for chunk in chunks)
    return AIMessage(content=text)


class LoggingAdvisor:
    """Logs requests and responses at DEBUG; runs first in the chain."""

    name = "logging"

    def __init__(self, order: int = 0) -> None:
        self.order = order

    def around_call(self, request: ChatRequest, next_call: CallNext) -> ChatResponse:
        self._log_request(request)
        response = next_call(request)
        LOGGER.debug("Response for %s: %s", request.conversation_id, response.content)
        return response

    def around_stream(self, request: ChatRequest, next_stream: StreamNext) -> Iterator[AIMessageChunk]:
        self._log_request(request)
        chunks: list[AIMessageChunk] = []
        for chunk in next_stream(request):
            chunks.append(chunk)
            yield chunk
        LOGGER.debug("Streamed response for %s: %s", request.conversation_id, aggregate_chunks(chunks).content)

    @staticmethod
    def _log_request(request: ChatRequest) -> None:
        if LOGGER.isEnabledFor(logging.DEBUG):
            rendered = [f"{message.type}: {message_text(message)}" for message in request.messages]
            LOGGER.debug("Request for %s: %s", request.conversation_id, rendered)


class MemoryAdvisor:
    """Prepends the conversation window and records the exchange once it completes.

    Only the user turn(s) of the inbound request and the final assistant turn
    are stored. For streams the turns are stored after the stream is fully
    drained; a stream that fails or is closed early stores nothing. The
    conversation's request lock is held for the whole exchange so concurrent
    requests on the same conversation id see each other's turns in order.
    """

    name = "memory"

    def __init__(self, memory: MessageWindowMemory, order: int = 100) -> None:
        self._memory = memory
        self.order = order

    def around_call(self, request: ChatRequest, next_call: CallNext) -> ChatResponse:
        with self._memory.exclusive(request.conversation_id):
            new_turns = self._user_turns(request)
            response = next_call(self._with_history(request))
            self._memory.append_many(
                request.conversation_id, [*new_turns, ConversationTurn(role="assistant", content=response.content)]
            )
        return response

    def around_stream(self, request: ChatRequest, next_stream: StreamNext) -> Iterator[AIMessageChunk]:
        with self._memory.exclusive(request.conversation_id):
            new_turns = self._user_turns(request)
            chunks: list[AIMessageChunk] = []
            for chunk in next_stream(self._with_history(request)):
                chunks.append(chunk)
                yield chunk
            answer = aggregate_chunks(chunks)
            self._memory.append_many(
                request.conversation_id, [*new_turns, ConversationTurn(role="assistant", content=message_text(answer))]
            )

    def _with_history(self, request: ChatRequest) -> ChatRequest:
        history = [turn.to_message() for turn in self._memory.read(request.conversation_id)]
        system = [message for message in request.messages if isinstance(message, SystemMessage)]
        rest = [message for message in request.messages if not isinstance(message, SystemMessage)]
        return request.with_messages([*system, *history, *rest])

    @staticmethod
    def _user_turns(request: ChatRequest) -> list[ConversationTurn]:
        return [ConversationTurn.from_message(message) for message in request.messages if isinstance(message, HumanMessage)]
