"""Configuration helpers for the chat gateway."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import yaml

from genai_chat_gateway.chat.conversation import MemoryConfig
from genai_chat_gateway.chat.modes import ConversationMode, ModeSettings, get_mode_settings
from genai_chat_gateway.rag.embeddings import EmbeddingConfig
from genai_chat_gateway.rag.ingestion import IngestionConfig
from genai_chat_gateway.rag.retrieval import RetrievalConfig
from genai_chat_gateway.rag.vector_store import VectorStoreConfig
from genai_chat_gateway.tools.weather import DEFAULT_REPORT_FORMAT

LLMProvider = Literal["ollama", "openai"]
EmbeddingProvider = Literal["ollama", "sentence-transformers", "openai"]


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


@dataclass(slots=True, frozen=True)
class QueryPipelineConfig:
    """Query-time stages around retrieval in RAG mode."""

    expand_queries: bool = True
    number_of_queries: int = 3
    include_original: bool = False
    translate_queries: bool = True
    target_language: str = "korean"
    allow_empty_context: bool = True
    empty_context_policy: Literal["refuse", "raise"] = "refuse"


@dataclass(slots=True, frozen=True)
class ToolConfig:
    max_iterations: int = 5
    raise_on_error: bool = False
    weather_enabled: bool = True
    weather_base_url: str = "https://wttr.in"
    weather_language: str = "ko"
    weather_format: str = DEFAULT_REPORT_FORMAT
    weather_return_direct: bool = False
    weather_timeout: float = 10.0


@dataclass(slots=True)
class GatewayConfig:
    source: Path
    raw: dict[str, Any]

    @classmethod
    def from_file(cls, path: Path) -> GatewayConfig:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            message = f"Configuration file {path} must contain a mapping at the top level"
            raise ValueError(message)
        instance = cls(source=path, raw=raw)
        instance.validate()
        return instance

    def validate(self) -> None:
        """Validate settings and materialize directories declared in the config."""
        ingestion = self.ingestion_config()
        if ingestion.chunk_overlap >= ingestion.chunk_size:
            message = (
                f"ingestion.chunk_overlap ({ingestion.chunk_overlap}) must be smaller than "
                f"ingestion.chunk_size ({ingestion.chunk_size})"
            )
            raise ValueError(message)
        if ingestion.processed_dir is not None:
            _ensure_dir(ingestion.processed_dir)
        vector_cfg = self.vector_store_config()
        if vector_cfg.backend == "chroma":
            _ensure_dir(vector_cfg.persist_directory)
        memory = self.memory_config()
        if memory.backend == "sqlite":
            memory.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        retrieval = self.retrieval_config()
        if not 0.0 <= retrieval.similarity_threshold <= 1.0:
            message = f"retrieval.similarity_threshold must be within [0, 1] (got {retrieval.similarity_threshold})"
            raise ValueError(message)

    def llm_settings(self, provider: LLMProvider | None = None) -> dict[str, Any]:
        llm_cfg = self.raw.get("llm", {})
        provider_name: str = provider or llm_cfg.get("provider", "ollama")
        providers = llm_cfg.get("providers", {})
        provider_settings = providers.get(provider_name)
        if not provider_settings:
            available = ", ".join(sorted(providers.keys()))
            message = f"Unsupported LLM provider '{provider_name}'. Available: {available or 'none'}."
            raise ValueError(message)
        merged = dict(provider_settings)
        merged["provider"] = provider_name
        for key, value in llm_cfg.items():
            if key not in {"provider", "providers"} and key not in merged:
                merged[key] = value
        return merged

    def embedding_settings(self, provider: EmbeddingProvider | None = None) -> EmbeddingConfig:
        emb_cfg = self.raw.get("embedding", {})
        provider_name: str = provider or emb_cfg.get("provider", "ollama")
        providers = emb_cfg.get("providers", {})
        provider_settings = providers.get(provider_name)
        if not provider_settings:
            available = ", ".join(sorted(providers.keys()))
            message = f"Unsupported embedding provider '{provider_name}'. Available: {available or 'none'}."
            raise ValueError(message)
        defaults = EmbeddingConfig()
        if provider_name == "ollama":
            return EmbeddingConfig(
                provider="ollama",
                model_name=provider_settings.get("model_name", defaults.model_name),
                base_url=provider_settings.get("base_url", defaults.base_url),
            )
        if provider_name == "sentence-transformers":
            return EmbeddingConfig(
                provider="sentence-transformers",
                model_name=provider_settings.get("model_name", "sentence-transformers/all-MiniLM-L6-v2"),
                base_url=None,
                device=provider_settings.get("device", defaults.device),
                normalize_embeddings=provider_settings.get("normalize_embeddings", True),
            )
        if provider_name == "openai":
            return EmbeddingConfig(
                provider="openai",
                model_name=provider_settings.get("model_name", "text-embedding-3-small"),
                base_url=provider_settings.get("api_base"),
                api_key_env=provider_settings.get("api_key_env", "OPENAI_API_KEY"),
                dimensions=provider_settings.get("dimensions"),
            )
        message = f"Embedding provider '{provider_name}' is not supported."
        raise ValueError(message)

    def vector_store_config(self) -> VectorStoreConfig:
        cfg = self.raw.get("vector_store", {})
        defaults = VectorStoreConfig()
        backend = cfg.get("backend", defaults.backend)
        if backend not in {"in_memory", "chroma"}:
            message = f"Unsupported vector store backend '{backend}'. Available: chroma, in_memory."
            raise ValueError(message)
        return VectorStoreConfig(
            backend=backend,
            collection_name=cfg.get("collection_name", defaults.collection_name),
            persist_directory=Path(cfg.get("persist_directory", defaults.persist_directory)),
            reset_on_start=cfg.get("reset_on_start", defaults.reset_on_start),
            write_batch_size=int(cfg.get("write_batch_size", defaults.write_batch_size)),
        )

    def ingestion_config(self) -> IngestionConfig:
        cfg = self.raw.get("ingestion", {})
        defaults = IngestionConfig()
        max_bytes = cfg.get("max_file_size_bytes")
        if max_bytes is None and "max_file_size_mb" in cfg:
            max_bytes = int(cfg["max_file_size_mb"]) * 1024 * 1024
        if max_bytes is None:
            max_bytes = defaults.max_file_size_bytes
        processed_dir = cfg.get("processed_dir")
        return IngestionConfig(
            documents_location_pattern=cfg.get("documents_location_pattern", defaults.documents_location_pattern),
            chunk_size=int(cfg.get("chunk_size", defaults.chunk_size)),
            chunk_overlap=int(cfg.get("chunk_overlap", defaults.chunk_overlap)),
            windowing=cfg.get("windowing", defaults.windowing),
            keyword_count=int(cfg.get("keyword_count", defaults.keyword_count)),
            enrich_keywords=cfg.get("enrich_keywords", defaults.enrich_keywords),
            init_on_startup=cfg.get("init_on_startup", defaults.init_on_startup),
            debug_log_sink=cfg.get("debug_log_sink", defaults.debug_log_sink),
            processed_dir=Path(processed_dir) if processed_dir else None,
            max_file_size_bytes=int(max_bytes),
        )

    def retrieval_config(self) -> RetrievalConfig:
        cfg = self.raw.get("retrieval", {})
        defaults = RetrievalConfig()
        return RetrievalConfig(
            similarity_threshold=float(cfg.get("similarity_threshold", defaults.similarity_threshold)),
            top_k=int(cfg.get("top_k", defaults.top_k)),
        )

    def query_pipeline_config(self) -> QueryPipelineConfig:
        cfg = self.raw.get("retrieval", {})
        expansion = cfg.get("expansion", {}) or {}
        translation = cfg.get("translation", {}) or {}
        augmentation = cfg.get("augmentation", {}) or {}
        defaults = QueryPipelineConfig()
        return QueryPipelineConfig(
            expand_queries=expansion.get("enabled", defaults.expand_queries),
            number_of_queries=int(expansion.get("number_of_queries", defaults.number_of_queries)),
            include_original=expansion.get("include_original", defaults.include_original),
            translate_queries=translation.get("enabled", defaults.translate_queries),
            target_language=translation.get("target_language", defaults.target_language),
            allow_empty_context=augmentation.get("allow_empty_context", defaults.allow_empty_context),
            empty_context_policy=augmentation.get("empty_context_policy", defaults.empty_context_policy),
        )

    def memory_config(self) -> MemoryConfig:
        cfg = self.raw.get("memory", {})
        defaults = MemoryConfig()
        return MemoryConfig(
            max_messages=int(cfg.get("max_messages", defaults.max_messages)),
            backend=cfg.get("backend", defaults.backend),
            sqlite_path=Path(cfg.get("sqlite_path", defaults.sqlite_path)),
            exempt_roles=tuple(cfg.get("exempt_roles", defaults.exempt_roles)),
        )

    def tool_config(self) -> ToolConfig:
        cfg = self.raw.get("tools", {})
        weather = cfg.get("weather", {}) or {}
        defaults = ToolConfig()
        return ToolConfig(
            max_iterations=int(cfg.get("max_iterations", defaults.max_iterations)),
            raise_on_error=cfg.get("raise_on_error", defaults.raise_on_error),
            weather_enabled=weather.get("enabled", defaults.weather_enabled),
            weather_base_url=weather.get("base_url", defaults.weather_base_url),
            weather_language=weather.get("language", defaults.weather_language),
            weather_format=weather.get("format", defaults.weather_format),
            weather_return_direct=weather.get("return_direct", defaults.weather_return_direct),
            weather_timeout=float(weather.get("timeout", defaults.weather_timeout)),
        )

    def mode_settings(self) -> dict[ConversationMode, ModeSettings]:
        cfg = self.raw.get("modes", {})
        return {mode: get_mode_settings(mode, cfg.get(mode.value)) for mode in ConversationMode}

    def default_mode(self) -> ConversationMode:
        cfg = self.raw.get("chat", {})
        return ConversationMode(cfg.get("default_mode", ConversationMode.PLAIN.value))

    def cli_settings(self) -> dict[str, Any]:
        defaults = {
            "show_documents": True,
            "box_style": "simple",
        }
        cli_cfg = self.raw.get("cli", {})
        resolved = dict(defaults)
        if isinstance(cli_cfg, dict):
            resolved.update(cli_cfg)
        return resolved
