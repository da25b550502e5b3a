"""Health checks reported by the ``diagnose`` command."""

from __future__ import annotations

import importlib
import platform
import sqlite3
import sys
from dataclasses import dataclass

from langchain_core.embeddings import Embeddings
from pydantic import ValidationError

from genai_chat_gateway.app.bootstrap import build_tool_registry
from genai_chat_gateway.chat import ConversationMode, SqliteMessageRepository
from genai_chat_gateway.config import GatewayConfig
from genai_chat_gateway.llm import check_ollama_connection, check_ollama_model
from genai_chat_gateway.rag.ingestion import resolve_sources
from genai_chat_gateway.rag.vector_store import VectorStoreManager


@dataclass(slots=True)
class DiagnosticResult:
    status: str
    details: str

    def as_dict(self) -> dict[str, str]:
        return {"status": self.status, "details": self.details}


class _DiagnosticsEmbeddings(Embeddings):
    """Constant embeddings; health checks never embed real text."""

    def __init__(self, dimension: int = 3) -> None:
        self._dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [[0.0] * self._dimension for _ in texts]

    def embed_query(self, text: str) -> list[float]:
        return [0.0] * self._dimension


def _check_python_version() -> DiagnosticResult:
    if sys.version_info >= (3, 10):
        return DiagnosticResult("ok", f"Python {platform.python_version()} detected.")
    return DiagnosticResult("warn", f"Python {platform.python_version()} detected; project requires 3.10+.")


def _check_optional_dependency(module_name: str, friendly_name: str) -> DiagnosticResult:
    try:
        importlib.import_module(module_name)
        return DiagnosticResult("ok", f"{friendly_name} available.")
    except ImportError as exc:
        return DiagnosticResult("warn", f"{friendly_name} missing: {exc}")


def _check_vector_store(config: GatewayConfig) -> DiagnosticResult:
    vector_cfg = config.vector_store_config()
    if vector_cfg.backend == "in_memory":
        return DiagnosticResult("ok", "In-memory vector store; contents are lost on exit.")
    try:
        manager = VectorStoreManager(_DiagnosticsEmbeddings(), vector_cfg)
        healthy, message = manager.check_health()
    except Exception as exc:  # pragma: no cover - backend errors vary
        return DiagnosticResult("error", f"Vector store check failed: {exc}")
    if healthy:
        return DiagnosticResult("ok", f"Chroma collection '{manager.collection_name}' accessible.")
    return DiagnosticResult("error", message or "Vector store health check failed.")


def _check_ollama(config: GatewayConfig) -> DiagnosticResult:
    llm_settings = config.llm_settings()
    if llm_settings.get("provider") != "ollama":
        return DiagnosticResult("not_applicable", "LLM provider is not Ollama.")
    base_url = llm_settings.get("base_url", "http://localhost:11434")
    if not check_ollama_connection(base_url):
        return DiagnosticResult("error", f"Ollama not reachable at {base_url}.")
    model_name = str(llm_settings.get("model", "llama3.1:8b"))
    installed, models = check_ollama_model(base_url, model_name)
    if not installed:
        available = ", ".join(models) if models else "none"
        return DiagnosticResult("warn", f"Model '{model_name}' missing. Available: {available}.")
    return DiagnosticResult("ok", f"Ollama reachable and model '{model_name}' installed.")


def _check_chat_modes(config: GatewayConfig) -> DiagnosticResult:
    settings = config.mode_settings()
    enabled = [mode.value for mode, mode_settings in settings.items() if mode_settings.enabled]
    default = config.default_mode()
    if not enabled:
        return DiagnosticResult("error", "Every chat mode is disabled.")
    if not settings[default].enabled:
        return DiagnosticResult("error", f"Default mode '{default.value}' is disabled. Enabled: {', '.join(enabled)}.")
    return DiagnosticResult("ok", f"Default mode '{default.value}'. Enabled: {', '.join(enabled)}.")


def _check_tools(config: GatewayConfig) -> DiagnosticResult:
    if not config.mode_settings()[ConversationMode.TOOL].enabled:
        return DiagnosticResult("not_applicable", "Tool mode is disabled.")
    tool_cfg = config.tool_config()
    try:
        registry = build_tool_registry(tool_cfg)
        definitions = registry.as_langchain_tools()
    except (ValueError, ValidationError) as exc:
        return DiagnosticResult("error", f"Tool registry failed to build: {exc}")
    if not definitions:
        return DiagnosticResult("warn", "Tool mode is enabled but no tools are registered.")
    return DiagnosticResult(
        "ok",
        f"{len(definitions)} tool(s) registered: {', '.join(registry.names())} (max {tool_cfg.max_iterations} model calls).",
    )


def _check_documents(config: GatewayConfig) -> DiagnosticResult:
    ingestion_cfg = config.ingestion_config()
    pattern = ingestion_cfg.documents_location_pattern
    sources = resolve_sources(pattern)
    if not sources:
        status = "warn" if config.mode_settings()[ConversationMode.RAG].enabled else "not_applicable"
        return DiagnosticResult(status, f"No supported documents match '{pattern}'.")
    startup = "ingested at startup" if ingestion_cfg.init_on_startup else "run 'genai-gateway ingest' to index them"
    return DiagnosticResult("ok", f"{len(sources)} document(s) match '{pattern}' ({startup}).")


def _check_memory(config: GatewayConfig) -> DiagnosticResult:
    memory_cfg = config.memory_config()
    if memory_cfg.backend != "sqlite":
        return DiagnosticResult("ok", f"In-memory conversation store, window of {memory_cfg.max_messages} turns.")
    try:
        conversations = SqliteMessageRepository(memory_cfg.sqlite_path).conversation_ids()
    except (OSError, sqlite3.Error) as exc:
        return DiagnosticResult("error", f"Conversation store at {memory_cfg.sqlite_path} unusable: {exc}")
    return DiagnosticResult(
        "ok",
        f"SQLite conversation store at {memory_cfg.sqlite_path} holds {len(conversations)} conversation(s).",
    )


def run_diagnostics(config: GatewayConfig) -> dict[str, dict[str, str]]:
    """Run a suite of health checks and return structured results."""
    results: dict[str, dict[str, str]] = {}
    results["python"] = _check_python_version().as_dict()
    results["ollama"] = _check_ollama(config).as_dict()
    results["vector_store"] = _check_vector_store(config).as_dict()
    results["chat_modes"] = _check_chat_modes(config).as_dict()
    results["tools"] = _check_tools(config).as_dict()
    results["documents"] = _check_documents(config).as_dict()
    results["memory"] = _check_memory(config).as_dict()

    optional_dependencies = {
        "pypdf": "PDF ingestion (pypdf)",
        "docx": "DOCX ingestion (python-docx)",
        "langchain_huggingface": "Sentence-transformer embeddings",
        "langchain_openai": "OpenAI LLM/embeddings integration",
    }
    for module_name, friendly in optional_dependencies.items():
        key = f"dep:{module_name}"
        results[key] = _check_optional_dependency(module_name, friendly).as_dict()

    return results


__all__ = ["DiagnosticResult", "run_diagnostics"]
