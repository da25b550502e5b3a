from __future__ import annotations

import logging
from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest
import requests
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage

from genai_chat_gateway import llm as llm_module
from genai_chat_gateway.errors import ModelProviderError
from genai_chat_gateway.llm import ChatModelAdapter, check_ollama_connection, check_ollama_model, describe_provider_error


def fake_adapter(*answers: str) -> ChatModelAdapter:
    model = GenericFakeChatModel(messages=iter([AIMessage(content=answer) for answer in answers]))
    return ChatModelAdapter({"provider": "ollama"}, llm=model)


def test_invoke_and_generate_return_model_text() -> None:
    adapter = fake_adapter("first answer", "second answer")

    message = adapter.invoke([HumanMessage(content="hello")])
    text = adapter.generate("hello again")

    assert isinstance(message, AIMessage)
    assert message.content == "first answer"
    assert text == "second answer"


def test_stream_yields_message_chunks() -> None:
    adapter = fake_adapter("hello streaming world")

    chunks = list(adapter.stream([HumanMessage(content="hi")]))

    assert all(isinstance(chunk, AIMessageChunk) for chunk in chunks)
    assert "".join(str(chunk.content) for chunk in chunks) == "hello streaming world"


def test_unknown_options_are_ignored_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    adapter = fake_adapter("ok")

    with caplog.at_level(logging.WARNING, logger="genai_chat_gateway.llm"):
        message = adapter.invoke([HumanMessage(content="hi")], temperature=0.3)

    assert message.content == "ok"
    assert "temperature" in caplog.text


def test_provider_failures_become_model_provider_errors() -> None:
    llm = MagicMock()
    llm.invoke.side_effect = ConnectionError("connection refused on port 11434")
    adapter = ChatModelAdapter({"provider": "ollama"}, llm=llm)

    with pytest.raises(ModelProviderError, match="ollama serve"):
        adapter.invoke([HumanMessage(content="hi")])


def test_stream_failures_become_model_provider_errors() -> None:
    def broken() -> Iterator[AIMessageChunk]:
        yield AIMessageChunk(content="partial")
        raise RuntimeError("boom")

    llm = MagicMock()
    llm.stream.return_value = broken()
    adapter = ChatModelAdapter({"provider": "ollama"}, llm=llm)
    stream = adapter.stream([HumanMessage(content="hi")])

    assert next(stream).content == "partial"
    with pytest.raises(ModelProviderError, match="boom"):
        next(stream)


def test_closing_stream_closes_provider_iterator() -> None:
    closed: list[bool] = []

    def provider_stream() -> Iterator[AIMessageChunk]:
        try:
            yield AIMessageChunk(content="a")
            yield AIMessageChunk(content="b")
        finally:
            closed.append(True)

    llm = MagicMock()
    llm.stream.return_value = provider_stream()
    stream = ChatModelAdapter({"provider": "ollama"}, llm=llm).stream([HumanMessage(content="hi")])

    next(stream)
    stream.close()

    assert closed == [True]


def test_describe_provider_error_suggests_fixes() -> None:
    assert "ollama serve" in describe_provider_error(requests.exceptions.ConnectionError("refused"))
    assert "ollama pull llama3.1:8b" in describe_provider_error(RuntimeError("model 'llama3.1:8b' not found"))
    assert describe_provider_error(RuntimeError("rate limited")).startswith("Model provider call failed")


def test_check_ollama_connection(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MagicMock(status_code=200)
    monkeypatch.setattr(llm_module.requests, "get", MagicMock(return_value=response))
    assert check_ollama_connection("http://localhost:11434") is True

    monkeypatch.setattr(llm_module.requests, "get", MagicMock(side_effect=requests.exceptions.ConnectionError()))
    assert check_ollama_connection("http://localhost:11434") is False


def test_check_ollama_model_matches_tag_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MagicMock(status_code=200)
    response.json.return_value = {"models": [{"name": "llama3.1:latest"}, {"name": "nomic-embed-text:latest"}]}
    monkeypatch.setattr(llm_module.requests, "get", MagicMock(return_value=response))

    installed, models = check_ollama_model("http://localhost:11434", "llama3.1:8b")

    assert installed is True
    assert models == ["llama3.1:latest", "nomic-embed-text:latest"]
