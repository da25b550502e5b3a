"""Tool-calling loop: run requested tools and resubmit until the model answers."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, ToolCall, ToolMessage
from pydantic import ValidationError

from genai_chat_gateway.chat.advisors import ChatRequest, ChatResponse
from genai_chat_gateway.chat.conversation import message_text
from genai_chat_gateway.errors import GatewayError, ModelProviderError, ToolExecutionError
from genai_chat_gateway.llm import describe_provider_error
from genai_chat_gateway.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolInvocation:
    """One model-requested tool call and its outcome."""

    name: str
    arguments: dict[str, Any]
    call_id: str
    result: str | None = None
    error: str | None = None
    return_direct: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_message(self) -> ToolMessage:
        if self.error is not None:
            return ToolMessage(
                content=f"Error: {self.error}",
                tool_call_id=self.call_id,
                name=self.name,
                status="error",
            )
        return ToolMessage(content=self.result or "", tool_call_id=self.call_id, name=self.name)

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments, "result": self.result, "error": self.error}


class ToolDispatcher:
    """Terminal chain step for tool mode.

    Each round sends the conversation plus the registered tool definitions to
    the model. Requested calls are executed synchronously, their results (or
    errors) appended as ``tool`` turns, and the conversation resubmitted. The
    loop ends when the model answers without tool calls, when every call in a
    round targets a ``return_direct`` tool, or fails with
    :class:`ToolExecutionError` once ``max_iterations`` model calls were made.
    """

    def __init__(
        self,
        model: Any,
        registry: ToolRegistry,
        *,
        max_iterations: int = 5,
        raise_on_error: bool = False,
    ) -> None:
        if max_iterations <= 0:
            message = f"max_iterations must be positive (got {max_iterations})"
            raise ValueError(message)
        self._model = model
        self._registry = registry
        self._max_iterations = max_iterations
        self._raise_on_error = raise_on_error

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def call(self, request: ChatRequest) -> ChatResponse:
        messages: list[BaseMessage] = list(request.messages)
        tools = self._registry.as_langchain_tools()
        invocations: list[ToolInvocation] = []
        for iteration in range(1, self._max_iterations + 1):
            response = self._invoke(messages, tools, request.options)
            if not response.tool_calls:
                return self._response(response, invocations, iteration)
            round_invocations = self._run_round(messages, response, response.tool_calls)
            invocations.extend(round_invocations)
            direct = self._direct_answer(round_invocations)
            if direct is not None:
                return self._response(AIMessage(content=direct), invocations, iteration)
        raise self._exhausted(invocations)

    def stream(self, request: ChatRequest) -> Iterator[AIMessageChunk]:
        """Stream the final answer.

        Text of a round is held back until the round ends without tool calls,
        so a preamble written alongside a tool call never reaches the caller
        and streamed calls leave the same answer as :meth:`call`.
        """
        messages: list[BaseMessage] = list(request.messages)
        tools = self._registry.as_langchain_tools()
        invocations: list[ToolInvocation] = []
        for _ in range(self._max_iterations):
            aggregate: AIMessageChunk | None = None
            pending: list[str] = []
            for chunk in self._stream(messages, tools, request.options):
                aggregate = chunk if aggregate is None else aggregate + chunk
                text = message_text(chunk)
                if text:
                    pending.append(text)
            if aggregate is None or not aggregate.tool_calls:
                for text in pending:
                    yield AIMessageChunk(content=text)
                return
            if pending:
                LOGGER.debug("Dropping %s text fragment(s) sent alongside tool calls", len(pending))
            response = AIMessage(content=aggregate.content, tool_calls=aggregate.tool_calls)
            round_invocations = self._run_round(messages, response, aggregate.tool_calls)
            invocations.extend(round_invocations)
            direct = self._direct_answer(round_invocations)
            if direct is not None:
                yield AIMessageChunk(content=direct)
                return
        raise self._exhausted(invocations)

    def execute(self, tool_call: ToolCall) -> ToolInvocation:
        """Run one tool call, capturing failures unless ``raise_on_error`` is set."""
        name = tool_call["name"]
        arguments = dict(tool_call.get("args") or {})
        invocation = ToolInvocation(name=name, arguments=arguments, call_id=str(tool_call.get("id") or name))
        cause: Exception | None = None
        spec = self._registry.get(name)
        if spec is None:
            invocation.error = f"Unknown tool '{name}'. Available tools: {', '.join(self._registry.names())}"
        else:
            invocation.return_direct = spec.return_direct
            try:
                invocation.result = spec.invoke(arguments)
            except ValidationError as exc:
                invocation.error = f"Invalid arguments for '{name}': {exc.errors(include_url=False)}"
                cause = exc
            except Exception as exc:
                invocation.error = f"{type(exc).__name__}: {exc}"
                cause = exc
        if invocation.error is None:
            LOGGER.debug("Tool call %s(%s) returned %s", name, arguments, invocation.result)
            return invocation
        LOGGER.warning("Tool call %s(%s) failed: %s", name, arguments, invocation.error)
        if self._raise_on_error:
            message = f"Tool '{name}' failed: {invocation.error}"
            raise ToolExecutionError(message) from cause
        return invocation

    def _run_round(
        self,
        messages: list[BaseMessage],
        response: AIMessage,
        tool_calls: Sequence[ToolCall],
    ) -> list[ToolInvocation]:
        messages.append(response)
        invocations = [self.execute(tool_call) for tool_call in tool_calls]
        messages.extend(invocation.to_message() for invocation in invocations)
        return invocations

    @staticmethod
    def _direct_answer(invocations: Sequence[ToolInvocation]) -> str | None:
        if invocations and all(item.return_direct and item.succeeded for item in invocations):
            return "\n".join(item.result or "" for item in invocations)
        return None

    def _invoke(self, messages: Sequence[BaseMessage], tools: Sequence[Any], options: dict[str, Any]) -> AIMessage:
        try:
            return self._model.invoke(messages, tools=tools, **options)
        except GatewayError:
            raise
        except Exception as exc:
            raise ModelProviderError(describe_provider_error(exc)) from exc

    def _stream(
        self, messages: Sequence[BaseMessage], tools: Sequence[Any], options: dict[str, Any]
    ) -> Iterator[AIMessageChunk]:
        try:
            yield from self._model.stream(messages, tools=tools, **options)
        except GatewayError:
            raise
        except Exception as exc:
            raise ModelProviderError(describe_provider_error(exc)) from exc

    @staticmethod
    def _response(message: AIMessage, invocations: list[ToolInvocation], iterations: int) -> ChatResponse:
        return ChatResponse(
            message=message,
            metadata={"tool_invocations": [item.as_dict() for item in invocations], "iterations": iterations},
        )

    def _exhausted(self, invocations: list[ToolInvocation]) -> ToolExecutionError:
        message = f"Tool loop did not finish within {self._max_iterations} model calls ({len(invocations)} tool calls made)"
        return ToolExecutionError(message)
