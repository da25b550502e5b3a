"""Embedding model providers used by the vector index."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from langchain_core.embeddings import Embeddings

LOGGER = logging.getLogger(__name__)

ProviderLiteral = Literal["ollama", "sentence-transformers", "openai"]


def _resolve_device(device: str | None) -> str:
    """Map ``auto`` (or nothing) to ``cuda`` when a GPU is visible, else ``cpu``."""
    if device is None or device == "auto":
        try:
            import torch

            return "cuda" if torch.cuda.is_available() else "cpu"
        except ImportError:
            return "cpu"
    return device


@dataclass(slots=True, frozen=True)
class EmbeddingConfig:
    """Connection settings for the embedding model."""

    provider: ProviderLiteral = "ollama"
    model_name: str = "nomic-embed-text"
    base_url: str | None = "http://localhost:11434"
    device: str | None = "cpu"
    normalize_embeddings: bool = True
    api_key_env: str = "OPENAI_API_KEY"
    dimensions: int | None = None


class EmbeddingFactory:
    """Builds (once) the LangChain embedding client described by the config."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self._embedding: Embeddings | None = None

    @property
    def config(self) -> EmbeddingConfig:
        return self._config

    def build(self) -> Embeddings:
        if self._embedding is None:
            builders = {
                "ollama": self._build_ollama,
                "sentence-transformers": self._build_sentence_transformers,
                "openai": self._build_openai,
            }
            builder = builders.get(self._config.provider)
            if builder is None:
                message = f"Unsupported embedding provider: {self._config.provider}"
                raise ValueError(message)
            self._embedding = builder()
        return self._embedding

    def _build_ollama(self) -> Embeddings:  # pragma: no cover - needs a running Ollama server
        from langchain_ollama import OllamaEmbeddings

        LOGGER.info("Using Ollama embeddings model '%s' at %s", self._config.model_name, self._config.base_url)
        options: dict[str, Any] = {"model": self._config.model_name}
        if self._config.base_url:
            options["base_url"] = self._config.base_url
        return OllamaEmbeddings(**options)

    def _build_sentence_transformers(self) -> Embeddings:  # pragma: no cover - downloads model weights
        try:
            from langchain_huggingface import HuggingFaceEmbeddings
        except ImportError as exc:
            message = "Install 'langchain-huggingface' to enable sentence transformer embeddings"
            raise RuntimeError(message) from exc

        device = _resolve_device(self._config.device)
        LOGGER.info(
            "Loading sentence-transformer embeddings model '%s' (device=%s)",
            self._config.model_name,
            device,
        )
        return HuggingFaceEmbeddings(
            model_name=self._config.model_name,
            model_kwargs={"device": device},
            encode_kwargs={"normalize_embeddings": self._config.normalize_embeddings},
        )

    def _build_openai(self) -> Embeddings:  # pragma: no cover - requires credentials
        import os

        from langchain_openai import OpenAIEmbeddings

        LOGGER.info("Using OpenAI embedding model '%s'", self._config.model_name)
        options: dict[str, Any] = {
            "model": self._config.model_name,
            "api_key": os.environ.get(self._config.api_key_env),
        }
        if self._config.base_url:
            options["base_url"] = self._config.base_url
        if self._config.dimensions:
            options["dimensions"] = self._config.dimensions
        return OpenAIEmbeddings(**options)
