"""Top-level chat entry points: blocking call, text stream, and event stream."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, TypeVar

from langchain_core.exceptions import OutputParserException
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_core.output_parsers import PydanticOutputParser
from pydantic import BaseModel, Field

from genai_chat_gateway.chat.advisors import AdvisorChain, ChatRequest, ChatResponse
from genai_chat_gateway.chat.conversation import message_text
from genai_chat_gateway.chat.modes import ConversationMode, ModeSettings
from genai_chat_gateway.errors import GatewayError, ModelProviderError

LOGGER = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=BaseModel)


class Emotion(str, Enum):
    VERY_NEGATIVE = "VERY_NEGATIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"
    POSITIVE = "POSITIVE"
    VERY_POSITIVE = "VERY_POSITIVE"


class EmotionEvaluation(BaseModel):
    """Sentiment of a piece of text with the reasons behind it."""

    emotion: Emotion = Field(description="Overall emotion expressed by the text")
    reason: list[str] = Field(default_factory=list, description="Short reasons supporting the emotion")


def build_prompt(user_prompt: str, system_prompt: str | None = None) -> list[BaseMessage]:
    """Messages for one request; a blank system prompt is dropped."""
    messages: list[BaseMessage] = []
    if system_prompt and system_prompt.strip():
        messages.append(SystemMessage(content=system_prompt))
    messages.append(HumanMessage(content=user_prompt))
    return messages


@dataclass(slots=True)
class ModePipeline:
    """Settings and advisor chain serving one chat mode."""

    settings: ModeSettings
    chain: AdvisorChain


@dataclass(slots=True)
class StreamEvent:
    type: Literal["token", "error", "done"]
    data: dict[str, Any] = field(default_factory=dict)


class ChatOrchestrator:
    """Routes each request to its mode's advisor chain.

    Plain mode runs memory around a direct model call, RAG mode adds the
    retrieval-augmentation advisor, and tool mode ends in the tool dispatcher.
    """

    def __init__(
        self,
        pipelines: Mapping[ConversationMode, ModePipeline],
        *,
        default_mode: ConversationMode = ConversationMode.PLAIN,
    ) -> None:
        self._pipelines = dict(pipelines)
        self._default_mode = default_mode

    @property
    def modes(self) -> list[ConversationMode]:
        return [mode for mode, pipeline in self._pipelines.items() if pipeline.settings.enabled]

    def call(
        self,
        prompt: str,
        conversation_id: str,
        mode: ConversationMode | str | None = None,
        *,
        system_prompt: str | None = None,
        filter_expression: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> ChatResponse:
        pipeline, request = self._prepare(prompt, conversation_id, mode, system_prompt, filter_expression, options)
        response = pipeline.chain.call(request)
        response.metadata.setdefault("conversation_id", conversation_id)
        response.metadata.setdefault("mode", self._resolve_mode(mode).value)
        return response

    def stream(
        self,
        prompt: str,
        conversation_id: str,
        mode: ConversationMode | str | None = None,
        *,
        system_prompt: str | None = None,
        filter_expression: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Iterator[str]:
        """Lazily yield answer fragments; errors are raised from the iterator."""
        pipeline, request = self._prepare(prompt, conversation_id, mode, system_prompt, filter_expression, options)
        return self._text_fragments(pipeline, request)

    def stream_events(
        self,
        prompt: str,
        conversation_id: str,
        mode: ConversationMode | str | None = None,
        *,
        system_prompt: str | None = None,
        filter_expression: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Iterator[StreamEvent]:
        """Like :meth:`stream`, but failures end the sequence with an ``error`` event."""
        try:
            pipeline, request = self._prepare(prompt, conversation_id, mode, system_prompt, filter_expression, options)
            for fragment in self._text_fragments(pipeline, request):
                yield StreamEvent(type="token", data={"text": fragment})
        except GatewayError as exc:
            LOGGER.warning("Stream for %s failed: %s", conversation_id, exc)
            yield StreamEvent(type="error", data=exc.to_dict())
            return
        except ValueError as exc:
            yield StreamEvent(type="error", data={"kind": "invalid_request", "message": str(exc)})
            return
        except Exception as exc:
            LOGGER.exception("Unexpected failure while streaming for %s", conversation_id)
            yield StreamEvent(type="error", data={"kind": "internal_error", "message": str(exc)})
            return
        done: dict[str, Any] = {"conversation_id": conversation_id, "mode": pipeline.settings.name}
        trace = request.context.get("retrieval")
        if trace is not None:
            done["documents"] = [document.metadata for document in trace.result.documents]
        yield StreamEvent(type="done", data=done)

    def call_entity(
        self,
        prompt: str,
        conversation_id: str,
        schema: type[EntityT],
        mode: ConversationMode | str | None = None,
        *,
        system_prompt: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> EntityT:
        """Ask for an answer in ``schema``'s JSON shape and parse it."""
        parser = PydanticOutputParser(pydantic_object=schema)
        structured_prompt = f"{prompt}\n\n{parser.get_format_instructions()}"
        response = self.call(structured_prompt, conversation_id, mode, system_prompt=system_prompt, options=options)
        try:
            return parser.parse(response.content)
        except OutputParserException as exc:
            message = f"Model answer did not match {schema.__name__}: {exc}"
            raise ModelProviderError(message) from exc

    def _text_fragments(self, pipeline: ModePipeline, request: ChatRequest) -> Iterator[str]:
        for chunk in pipeline.chain.stream(request):
            text = message_text(chunk)
            if text:
                yield text

    def _prepare(
        self,
        prompt: str,
        conversation_id: str,
        mode: ConversationMode | str | None,
        system_prompt: str | None,
        filter_expression: str | None,
        options: Mapping[str, Any] | None,
    ) -> tuple[ModePipeline, ChatRequest]:
        if not conversation_id:
            message = "conversation_id is required"
            raise ValueError(message)
        resolved = self._resolve_mode(mode)
        pipeline = self._pipelines.get(resolved)
        if pipeline is None or not pipeline.settings.enabled:
            message = f"Chat mode '{resolved.value}' is not enabled"
            raise ValueError(message)
        request_options: dict[str, Any] = {}
        if pipeline.settings.temperature is not None:
            request_options["temperature"] = pipeline.settings.temperature
        request_options.update(options or {})
        request = ChatRequest(
            messages=build_prompt(prompt, system_prompt or pipeline.settings.system_prompt),
            conversation_id=conversation_id,
            options=request_options,
            filter_expression=filter_expression or None,
        )
        return pipeline, request

    def _resolve_mode(self, mode: ConversationMode | str | None) -> ConversationMode:
        if mode is None:
            return self._default_mode
        return ConversationMode(mode)
