"""Chat model provider adapter and Ollama health checks."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from typing import Any

import requests
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage
from langchain_core.tools import BaseTool

from genai_chat_gateway.errors import GatewayError, ModelProviderError

LOGGER = logging.getLogger(__name__)


def check_ollama_connection(base_url: str = "http://localhost:11434", timeout: int = 2) -> bool:
    """Check if Ollama is running and accessible."""
    try:
        response = requests.get(f"{base_url}/api/tags", timeout=timeout)
        return response.status_code == 200
    except (OSError, requests.exceptions.ConnectionError, requests.exceptions.Timeout):
        return False


def check_ollama_model(base_url: str, model_name: str, timeout: int = 2) -> tuple[bool, list[str]]:
    """Check if a specific Ollama model is installed. Returns (is_installed, available_models)."""
    try:
        response = requests.get(f"{base_url}/api/tags", timeout=timeout)
        data = response.json()
    except (OSError, requests.exceptions.ConnectionError, requests.exceptions.Timeout, ValueError):
        return False, []
    if response.status_code != 200:
        return False, []

    models = [model.get("name", "") for model in data.get("models", [])]
    model_installed = any(model_name == model or model.split(":")[0] == model_name.split(":")[0] for model in models)
    return model_installed, models


def describe_provider_error(exc: BaseException) -> str:
    """Turn a provider exception into an actionable message."""
    error_text = str(exc)
    if isinstance(exc, (requests.exceptions.ConnectionError, ConnectionError)) or "11434" in error_text:
        return (
            "Ollama is not reachable. Start it with 'ollama serve' and verify with 'ollama list'. "
            f"({error_text[:200]})"
        )
    if "404" in error_text or "not found" in error_text.lower():
        match = re.search(r"model ['\"]?([\w.:\-/]+)['\"]? not found", error_text)
        hint = match.group(1) if match else "<model>"
        return f"Model not found. Install it with 'ollama pull {hint}'. ({error_text[:200]})"
    return f"Model provider call failed: {error_text[:300]}"


class ChatModelAdapter:
    """Hydrates a LangChain chat model from provider settings.

    Per-call ``options`` override model fields (``temperature``,
    ``num_predict``, ...) on a copy of the client, so one adapter can be
    shared by concurrent requests.
    """

    def __init__(self, settings: dict[str, Any], llm: Any = None) -> None:
        self.provider = str(settings.get("provider", "ollama"))
        self.settings = settings
        self.llm = llm if llm is not None else self._initialize_llm()

    def _initialize_llm(self) -> Any:  # pragma: no cover - depends on runtime environment
        if self.provider == "ollama":
            from langchain_ollama import ChatOllama

            return ChatOllama(
                model=self.settings.get("model", "llama3.1:8b"),
                base_url=self.settings.get("base_url", "http://localhost:11434"),
                temperature=self.settings.get("temperature"),
                num_ctx=self.settings.get("num_ctx", 8192),
                num_predict=self.settings.get("max_tokens"),
            )
        if self.provider == "openai":
            from langchain_openai import ChatOpenAI

            return ChatOpenAI(
                model=self.settings.get("model", "gpt-4o-mini"),
                temperature=self.settings.get("temperature"),
                max_tokens=self.settings.get("max_tokens"),  # type: ignore[call-arg]
                base_url=self.settings.get("base_url"),
                timeout=self.settings.get("timeout"),
            )
        message = f"Unsupported LLM provider: {self.provider}"
        raise ValueError(message)

    def with_options(self, **options: Any) -> ChatModelAdapter:
        """Return an adapter whose client has ``options`` applied as field overrides."""
        return ChatModelAdapter(self.settings, llm=self._configured(None, options))

    def invoke(
        self,
        messages: Sequence[BaseMessage],
        *,
        tools: Sequence[BaseTool] | None = None,
        **options: Any,
    ) -> AIMessage:
        runnable = self._configured(tools, options)
        try:
            response = runnable.invoke(list(messages))
        except GatewayError:
            raise
        except Exception as exc:
            raise ModelProviderError(describe_provider_error(exc)) from exc
        if isinstance(response, AIMessage):
            return response
        return AIMessage(content=getattr(response, "content", str(response)))

    def stream(
        self,
        messages: Sequence[BaseMessage],
        *,
        tools: Sequence[BaseTool] | None = None,
        **options: Any,
    ) -> Iterator[AIMessageChunk]:
        runnable = self._configured(tools, options)
        iterator = iter(runnable.stream(list(messages)))
        try:
            while True:
                try:
                    chunk = next(iterator)
                except StopIteration:
                    return
                except GatewayError:
                    raise
                except Exception as exc:
                    raise ModelProviderError(describe_provider_error(exc)) from exc
                if isinstance(chunk, AIMessageChunk):
                    yield chunk
                else:
                    yield AIMessageChunk(content=getattr(chunk, "content", str(chunk)))
        finally:
            close = getattr(iterator, "close", None)
            if callable(close):
                close()

    def generate(self, prompt: str, **options: Any) -> str:
        """Single-turn text completion used by enrichment and query rewriting."""
        response = self.invoke([HumanMessage(content=prompt)], **options)
        content = response.content
        return content if isinstance(content, str) else str(content)

    def _configured(self, tools: Sequence[BaseTool] | None, options: dict[str, Any]) -> Any:
        llm = self.llm
        overrides = {key: value for key, value in options.items() if value is not None}
        if overrides:
            fields = getattr(type(llm), "model_fields", {})
            unknown = sorted(key for key in overrides if key not in fields)
            if unknown:
                LOGGER.warning("Ignoring unsupported model options: %s", ", ".join(unknown))
            supported = {key: value for key, value in overrides.items() if key in fields}
            if supported:
                llm = llm.model_copy(update=supported)
        if tools:
            return llm.bind_tools(list(tools))
        return llm
