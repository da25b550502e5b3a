from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, ToolMessage
from pydantic import BaseModel

from genai_chat_gateway.chat import (
    MODE_REGISTRY,
    AdvisorChain,
    ChatOrchestrator,
    ChatRequest,
    ConversationMode,
    MemoryAdvisor,
    MessageWindowMemory,
    ModePipeline,
)
from genai_chat_gateway.errors import ModelProviderError, ToolExecutionError
from genai_chat_gateway.tools import ToolDispatcher, ToolRegistry, ToolSpec


class LocationArgs(BaseModel):
    location: str


def weather_handler(args: LocationArgs) -> str:
    if args.location == "Atlantis":
        message = f"Unknown location: {args.location}"
        raise LookupError(message)
    return f"Sunny in {args.location}"


def make_registry(*, return_direct: bool = False) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            name="getWeather",
            description="Look up the current weather.",
            args_schema=LocationArgs,
            handler=weather_handler,
            return_direct=return_direct,
        )
    )
    return registry


def tool_call(location: str, call_id: str = "call-1", name: str = "getWeather") -> dict[str, Any]:
    return {"name": name, "args": {"location": location}, "id": call_id}


class ScriptedToolModel:
    """Replays a fixed list of assistant messages."""

    def __init__(self, responses: list[AIMessage]) -> None:
        self._responses = list(responses)
        self.calls: list[list[BaseMessage]] = []
        self.tools: list[Any] = []

    def invoke(self, messages: list[BaseMessage], *, tools: list[Any] | None = None, **options: Any) -> AIMessage:
        self.calls.append(list(messages))
        self.tools = list(tools or [])
        return self._responses.pop(0)


class ScriptedStreamingModel:
    def __init__(self, rounds: list[list[AIMessageChunk]]) -> None:
        self._rounds = list(rounds)
        self.calls: list[list[BaseMessage]] = []

    def stream(self, messages: list[BaseMessage], *, tools: list[Any] | None = None, **options: Any) -> Iterator[AIMessageChunk]:
        self.calls.append(list(messages))
        yield from self._rounds.pop(0)


def request(text: str = "What's the weather?") -> ChatRequest:
    return ChatRequest(messages=[HumanMessage(content=text)], conversation_id="tools")


def test_failed_tool_is_reported_back_to_the_model() -> None:
    model = ScriptedToolModel(
        [
            AIMessage(content="", tool_calls=[tool_call("Atlantis")]),
            AIMessage(content="I could not find Atlantis."),
        ]
    )
    dispatcher = ToolDispatcher(model, make_registry())

    response = dispatcher.call(request("Weather in Atlantis?"))

    assert response.content == "I could not find Atlantis."
    assert len(model.calls) == 2
    tool_turn = model.calls[1][-1]
    assert isinstance(tool_turn, ToolMessage)
    assert tool_turn.status == "error"
    assert tool_turn.tool_call_id == "call-1"
    assert tool_turn.content.startswith("Error: LookupError")
    invocation = response.metadata["tool_invocations"][0]
    assert invocation["name"] == "getWeather"
    assert invocation["arguments"] == {"location": "Atlantis"}
    assert invocation["result"] is None
    assert "Atlantis" in invocation["error"]
    assert response.metadata["iterations"] == 2


def test_failed_tool_turn_reaches_the_model_through_the_orchestrator() -> None:
    model = ScriptedToolModel(
        [
            AIMessage(content="", tool_calls=[tool_call("Atlantis")]),
            AIMessage(content="No weather for Atlantis."),
        ]
    )
    memory = MessageWindowMemory()
    pipeline = ModePipeline(
        MODE_REGISTRY[ConversationMode.TOOL],
        AdvisorChain([MemoryAdvisor(memory)], ToolDispatcher(model, make_registry())),
    )
    orchestrator = ChatOrchestrator({ConversationMode.TOOL: pipeline}, default_mode=ConversationMode.TOOL)

    response = orchestrator.call("Weather in Atlantis?", "scenario-c")

    assert response.content == "No weather for Atlantis."
    assert [message.type for message in model.calls[1]] == ["system", "human", "ai", "tool"]
    assert [turn.role for turn in memory.read("scenario-c")] == ["user", "assistant"]


def test_successful_tool_result_is_resubmitted_with_tool_definitions() -> None:
    model = ScriptedToolModel(
        [
            AIMessage(content="", tool_calls=[tool_call("Seoul")]),
            AIMessage(content="It is sunny in Seoul."),
        ]
    )

    response = ToolDispatcher(model, make_registry()).call(request())

    assert response.content == "It is sunny in Seoul."
    assert [tool.name for tool in model.tools] == ["getWeather"]
    tool_turn = model.calls[1][-1]
    assert tool_turn.content == "Sunny in Seoul"
    assert response.metadata["tool_invocations"][0]["error"] is None


def test_return_direct_tool_answers_without_second_model_call() -> None:
    model = ScriptedToolModel([AIMessage(content="", tool_calls=[tool_call("Busan")])])

    response = ToolDispatcher(model, make_registry(return_direct=True)).call(request())

    assert response.content == "Sunny in Busan"
    assert len(model.calls) == 1
    assert response.metadata["iterations"] == 1


def test_return_direct_is_skipped_when_the_call_failed() -> None:
    model = ScriptedToolModel(
        [
            AIMessage(content="", tool_calls=[tool_call("Atlantis")]),
            AIMessage(content="Sorry."),
        ]
    )

    response = ToolDispatcher(model, make_registry(return_direct=True)).call(request())

    assert response.content == "Sorry."
    assert len(model.calls) == 2


def test_loop_stops_after_max_iterations() -> None:
    model = ScriptedToolModel(
        [AIMessage(content="", tool_calls=[tool_call("Seoul", call_id=f"call-{index}")]) for index in range(3)]
    )

    with pytest.raises(ToolExecutionError, match="within 3 model calls"):
        ToolDispatcher(model, make_registry(), max_iterations=3).call(request())

    assert len(model.calls) == 3


def test_raise_on_error_surfaces_tool_failures() -> None:
    model = ScriptedToolModel([AIMessage(content="", tool_calls=[tool_call("Atlantis")])])

    with pytest.raises(ToolExecutionError, match="getWeather") as excinfo:
        ToolDispatcher(model, make_registry(), raise_on_error=True).call(request())

    assert isinstance(excinfo.value.__cause__, LookupError)


def test_unknown_tool_becomes_error_turn() -> None:
    model = ScriptedToolModel(
        [
            AIMessage(content="", tool_calls=[tool_call("Seoul", name="getStockPrice")]),
            AIMessage(content="I cannot do that."),
        ]
    )

    response = ToolDispatcher(model, make_registry()).call(request())

    assert response.content == "I cannot do that."
    tool_turn = model.calls[1][-1]
    assert "Unknown tool 'getStockPrice'" in tool_turn.content
    assert "getWeather" in tool_turn.content


def test_invalid_arguments_become_error_turn() -> None:
    dispatcher = ToolDispatcher(ScriptedToolModel([]), make_registry())

    invocation = dispatcher.execute({"name": "getWeather", "args": {"city": "Seoul"}, "id": "call-9", "type": "tool_call"})

    assert not invocation.succeeded
    assert invocation.error is not None
    assert invocation.error.startswith("Invalid arguments for 'getWeather'")
    assert invocation.to_message().status == "error"


def test_model_failures_become_provider_errors() -> None:
    class BrokenModel:
        def invoke(self, messages: list[BaseMessage], **kwargs: Any) -> AIMessage:
            raise ConnectionError("connection refused")

    with pytest.raises(ModelProviderError):
        ToolDispatcher(BrokenModel(), make_registry()).call(request())


def test_max_iterations_must_be_positive() -> None:
    with pytest.raises(ValueError, match="max_iterations"):
        ToolDispatcher(ScriptedToolModel([]), make_registry(), max_iterations=0)


def test_stream_runs_tools_between_rounds() -> None:
    model = ScriptedStreamingModel(
        [
            [
                AIMessageChunk(
                    content="",
                    tool_call_chunks=[{"name": "getWeather", "args": '{"location": ', "id": "call-1", "index": 0}],
                ),
                AIMessageChunk(
                    content="",
                    tool_call_chunks=[{"name": None, "args": '"Seoul"}', "id": None, "index": 0}],
                ),
            ],
            [AIMessageChunk(content="It is "), AIMessageChunk(content="sunny.")],
        ]
    )

    fragments = [chunk.content for chunk in ToolDispatcher(model, make_registry()).stream(request())]

    assert fragments == ["It is ", "sunny."]
    tool_turn = model.calls[1][-1]
    assert isinstance(tool_turn, ToolMessage)
    assert tool_turn.content == "Sunny in Seoul"


def test_stream_return_direct_yields_tool_result() -> None:
    model = ScriptedStreamingModel(
        [[AIMessageChunk(content="", tool_call_chunks=[{"name": "getWeather", "args": '{"location": "Jeju"}', "id": "c", "index": 0}])]]
    )

    fragments = [chunk.content for chunk in ToolDispatcher(model, make_registry(return_direct=True)).stream(request())]

    assert fragments == ["Sunny in Jeju"]
    assert len(model.calls) == 1


class PreambleModel:
    """Writes a short preamble next to its tool call, then answers."""

    def invoke(self, messages: list[BaseMessage], *, tools: list[Any] | None = None, **options: Any) -> AIMessage:
        if isinstance(messages[-1], ToolMessage):
            return AIMessage(content="Sunny.")
        return AIMessage(content="Let me check. ", tool_calls=[tool_call("Seoul")])

    def stream(self, messages: list[BaseMessage], *, tools: list[Any] | None = None, **options: Any) -> Iterator[AIMessageChunk]:
        if isinstance(messages[-1], ToolMessage):
            yield AIMessageChunk(content="Sunny.")
            return
        yield AIMessageChunk(content="Let me check. ")
        yield AIMessageChunk(
            content="",
            tool_call_chunks=[{"name": "getWeather", "args": '{"location": "Seoul"}', "id": "call-1", "index": 0}],
        )


def test_call_and_stream_remember_the_same_answer() -> None:
    memory = MessageWindowMemory()
    pipeline = ModePipeline(
        MODE_REGISTRY[ConversationMode.TOOL],
        AdvisorChain([MemoryAdvisor(memory)], ToolDispatcher(PreambleModel(), make_registry())),
    )
    orchestrator = ChatOrchestrator({ConversationMode.TOOL: pipeline}, default_mode=ConversationMode.TOOL)

    called = orchestrator.call("Weather in Seoul?", "called")
    streamed = "".join(orchestrator.stream("Weather in Seoul?", "streamed"))

    assert called.content == "Sunny."
    assert streamed == "Sunny."
    assert memory.read("called")[-1].content == memory.read("streamed")[-1].content == "Sunny."
