from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from genai_chat_gateway.chat import ConversationMode
from genai_chat_gateway.config import GatewayConfig

PROJECT_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "gateway_config.yaml"


def write_config(tmp_path: Path, payload: dict) -> Path:
    path = tmp_path / "gateway.yaml"
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return path


def base_payload(tmp_path: Path) -> dict:
    return {
        "llm": {
            "provider": "ollama",
            "temperature": 0.5,
            "providers": {"ollama": {"model": "llama3.1:8b"}, "openai": {"model": "gpt-4o-mini"}},
        },
        "embedding": {"provider": "ollama", "providers": {"ollama": {"model_name": "nomic-embed-text"}}},
        "vector_store": {"backend": "chroma", "persist_directory": str(tmp_path / "chroma")},
        "ingestion": {"chunk_size": 400, "chunk_overlap": 50, "processed_dir": str(tmp_path / "processed")},
    }


def test_project_config_loads(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = GatewayConfig.from_file(PROJECT_CONFIG)

    assert config.llm_settings()["model"] == "llama3.1:8b"
    assert config.ingestion_config().max_file_size_bytes == 10 * 1024 * 1024
    assert config.ingestion_config().windowing == "overlapping"
    assert config.retrieval_config().top_k == 3
    assert config.default_mode() is ConversationMode.PLAIN
    query_cfg = config.query_pipeline_config()
    assert (query_cfg.expand_queries, query_cfg.translate_queries) == (True, True)
    assert query_cfg.target_language == "korean"


def test_validate_creates_declared_directories(tmp_path: Path) -> None:
    config = GatewayConfig.from_file(write_config(tmp_path, base_payload(tmp_path)))

    assert (tmp_path / "chroma").is_dir()
    assert (tmp_path / "processed").is_dir()
    assert config.ingestion_config().processed_dir == tmp_path / "processed"


def test_llm_settings_merge_global_keys(tmp_path: Path) -> None:
    config = GatewayConfig.from_file(write_config(tmp_path, base_payload(tmp_path)))

    settings = config.llm_settings()
    openai = config.llm_settings("openai")

    assert settings == {"model": "llama3.1:8b", "provider": "ollama", "temperature": 0.5}
    assert openai["model"] == "gpt-4o-mini"
    assert openai["provider"] == "openai"


def test_unknown_providers_are_rejected(tmp_path: Path) -> None:
    config = GatewayConfig.from_file(write_config(tmp_path, base_payload(tmp_path)))

    with pytest.raises(ValueError, match="Available: ollama, openai"):
        config.llm_settings("anthropic")  # type: ignore[arg-type]
    with pytest.raises(ValueError, match="Unsupported embedding provider"):
        config.embedding_settings("openai")


def test_overlap_must_be_smaller_than_chunk_size(tmp_path: Path) -> None:
    payload = base_payload(tmp_path)
    payload["ingestion"] = {"chunk_size": 100, "chunk_overlap": 100}

    with pytest.raises(ValueError, match="chunk_overlap"):
        GatewayConfig.from_file(write_config(tmp_path, payload))


def test_similarity_threshold_must_be_a_fraction(tmp_path: Path) -> None:
    payload = base_payload(tmp_path)
    payload["retrieval"] = {"similarity_threshold": 1.5}

    with pytest.raises(ValueError, match="similarity_threshold"):
        GatewayConfig.from_file(write_config(tmp_path, payload))


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- one\n- two\n", encoding="utf-8")

    with pytest.raises(ValueError, match="mapping"):
        GatewayConfig.from_file(path)


def test_unsupported_vector_backend(tmp_path: Path) -> None:
    payload = base_payload(tmp_path)
    payload["vector_store"] = {"backend": "pinecone"}

    with pytest.raises(ValueError, match="pinecone"):
        GatewayConfig.from_file(write_config(tmp_path, payload))


def test_defaults_when_sections_are_missing(tmp_path: Path) -> None:
    payload = {"llm": {"providers": {"ollama": {"model": "llama3.1:8b"}}}}
    config = GatewayConfig.from_file(write_config(tmp_path, payload))

    assert config.vector_store_config().backend == "in_memory"
    assert config.memory_config().max_messages == 10
    assert config.memory_config().exempt_roles == ("system",)
    assert config.query_pipeline_config().expand_queries is True
    assert config.query_pipeline_config().translate_queries is True
    assert config.query_pipeline_config().target_language == "korean"
    assert config.query_pipeline_config().allow_empty_context is True
    assert config.tool_config().max_iterations == 5
    assert config.tool_config().weather_language == "ko"
    assert config.cli_settings() == {"show_documents": True, "box_style": "simple"}


def test_nested_retrieval_and_tool_sections(tmp_path: Path) -> None:
    payload = base_payload(tmp_path)
    payload["retrieval"] = {
        "top_k": 5,
        "expansion": {"enabled": True, "number_of_queries": 2, "include_original": True},
        "translation": {"enabled": True, "target_language": "english"},
        "augmentation": {"allow_empty_context": False},
    }
    payload["tools"] = {"max_iterations": 2, "weather": {"enabled": False, "return_direct": True}}
    config = GatewayConfig.from_file(write_config(tmp_path, payload))

    query_cfg = config.query_pipeline_config()
    tool_cfg = config.tool_config()

    assert config.retrieval_config().top_k == 5
    assert (query_cfg.expand_queries, query_cfg.number_of_queries, query_cfg.include_original) == (True, 2, True)
    assert query_cfg.target_language == "english"
    assert query_cfg.allow_empty_context is False
    assert tool_cfg.max_iterations == 2
    assert tool_cfg.weather_enabled is False
    assert tool_cfg.weather_return_direct is True


def test_mode_overrides_and_default_mode(tmp_path: Path) -> None:
    payload = base_payload(tmp_path)
    payload["modes"] = {"tool": {"enabled": False}, "rag": {"temperature": 0.1, "system_prompt": "Cite sources."}}
    payload["chat"] = {"default_mode": "rag"}
    config = GatewayConfig.from_file(write_config(tmp_path, payload))

    settings = config.mode_settings()

    assert settings[ConversationMode.TOOL].enabled is False
    assert settings[ConversationMode.RAG].temperature == pytest.approx(0.1)
    assert settings[ConversationMode.RAG].system_prompt == "Cite sources."
    assert settings[ConversationMode.PLAIN].name == "Plain Chat"
    assert config.default_mode() is ConversationMode.RAG
