from __future__ import annotations

import pytest
from langchain_core.embeddings import Embeddings

from genai_chat_gateway.rag.embeddings import EmbeddingConfig, EmbeddingFactory


class DummyEmbeddings(Embeddings):
    def __init__(self) -> None:
        self.last_query: str | None = None

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [[float(len(text))] for text in texts]

    def embed_query(self, text: str) -> list[float]:
        self.last_query = text
        return [float(len(text))]


def recording_constructor(dummy: DummyEmbeddings):
    def fake_ctor(**kwargs):
        fake_ctor.kwargs = kwargs
        return dummy

    return fake_ctor


def test_ollama_factory_passes_model_and_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    dummy = DummyEmbeddings()
    fake_ctor = recording_constructor(dummy)
    monkeypatch.setattr("langchain_ollama.OllamaEmbeddings", fake_ctor)

    factory = EmbeddingFactory(EmbeddingConfig(model_name="nomic-embed-text", base_url="http://ollama:11434"))

    assert factory.build() is dummy
    assert fake_ctor.kwargs == {"model": "nomic-embed-text", "base_url": "http://ollama:11434"}


def test_factory_builds_client_once(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []

    def fake_ctor(**kwargs):
        calls.append(kwargs)
        return DummyEmbeddings()

    monkeypatch.setattr("langchain_ollama.OllamaEmbeddings", fake_ctor)
    factory = EmbeddingFactory()

    assert factory.build() is factory.build()
    assert len(calls) == 1


def test_sentence_transformer_factory(monkeypatch: pytest.MonkeyPatch) -> None:
    dummy = DummyEmbeddings()
    fake_ctor = recording_constructor(dummy)
    monkeypatch.setattr("langchain_huggingface.HuggingFaceEmbeddings", fake_ctor)

    factory = EmbeddingFactory(
        EmbeddingConfig(provider="sentence-transformers", model_name="sentence-transformers/test-model", device="cpu")
    )
    embeddings = factory.build()

    assert embeddings is dummy
    assert fake_ctor.kwargs["model_name"] == "sentence-transformers/test-model"
    assert fake_ctor.kwargs["model_kwargs"]["device"] == "cpu"
    assert fake_ctor.kwargs["encode_kwargs"] == {"normalize_embeddings": True}
    embeddings.embed_query("hello")
    assert dummy.last_query == "hello"


def test_sentence_transformer_auto_device(monkeypatch: pytest.MonkeyPatch) -> None:
    dummy = DummyEmbeddings()
    fake_ctor = recording_constructor(dummy)
    monkeypatch.setattr("langchain_huggingface.HuggingFaceEmbeddings", fake_ctor)
    monkeypatch.setattr("torch.cuda.is_available", lambda: False)

    factory = EmbeddingFactory(
        EmbeddingConfig(provider="sentence-transformers", model_name="sentence-transformers/test-model", device="auto")
    )
    factory.build()

    assert fake_ctor.kwargs["model_kwargs"]["device"] == "cpu"


def test_openai_factory_reads_api_key_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    dummy = DummyEmbeddings()
    fake_ctor = recording_constructor(dummy)
    monkeypatch.setattr("langchain_openai.OpenAIEmbeddings", fake_ctor)
    monkeypatch.setenv("GATEWAY_OPENAI_KEY", "sk-test")

    factory = EmbeddingFactory(
        EmbeddingConfig(
            provider="openai",
            model_name="text-embedding-3-small",
            base_url=None,
            api_key_env="GATEWAY_OPENAI_KEY",
            dimensions=256,
        )
    )
    factory.build()

    assert fake_ctor.kwargs == {"model": "text-embedding-3-small", "api_key": "sk-test", "dimensions": 256}


def test_unsupported_provider_is_rejected() -> None:
    factory = EmbeddingFactory(EmbeddingConfig(provider="cohere"))  # type: ignore[arg-type]

    with pytest.raises(ValueError, match="cohere"):
        factory.build()
