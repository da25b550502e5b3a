from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
import yaml
from click.testing import CliRunner
from langchain_core.documents import Document
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage
from rich.console import Console

from genai_chat_gateway import cli as cli_module
from genai_chat_gateway.app.bootstrap import RuntimeComponents, build_runtime_components
from genai_chat_gateway.chat import ConversationMode
from genai_chat_gateway.cli import ConsoleDocumentPostProcessor, cli, handle_cli_command
from genai_chat_gateway.config import GatewayConfig
from genai_chat_gateway.diagnostics import _DiagnosticsEmbeddings
from genai_chat_gateway.rag.retrieval import RetrievedChunk


class CannedModel:
    def generate(self, prompt: str, **options: Any) -> str:
        return "keyword"

    def invoke(self, messages: list[BaseMessage], **options: Any) -> AIMessage:
        return AIMessage(content="canned answer")

    def stream(self, messages: list[BaseMessage], **options: Any) -> Iterator[AIMessageChunk]:
        yield AIMessageChunk(content="canned ")
        yield AIMessageChunk(content="answer")


def write_config(tmp_path: Path, **overrides: Any) -> Path:
    payload: dict[str, Any] = {
        "llm": {"provider": "openai", "providers": {"openai": {"model": "gpt-4o-mini"}}},
        "vector_store": {"backend": "in_memory"},
        "tools": {"weather": {"enabled": False}},
    }
    payload.update(overrides)
    path = tmp_path / "gateway.yaml"
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return path


def make_runtime(tmp_path: Path, **overrides: Any) -> RuntimeComponents:
    config = GatewayConfig.from_file(write_config(tmp_path, **overrides))
    return build_runtime_components(config, chat_model=CannedModel(), embeddings=_DiagnosticsEmbeddings())


@pytest.fixture()
def recorded(monkeypatch: pytest.MonkeyPatch) -> Console:
    test_console = Console(record=True, width=120)
    monkeypatch.setattr(cli_module, "console", test_console)
    return test_console


def new_state() -> dict[str, Any]:
    return {
        "conversation_id": "cli",
        "mode": ConversationMode.PLAIN,
        "filter": None,
        "system_prompt": None,
        "last_documents": [],
    }


def test_cli_help_displays_commands() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("chat", "ingest", "reset-vector-store", "diagnose", "classify-emotion"):
        assert command in result.output


def test_plain_input_is_not_a_command(recorded: Console) -> None:
    assert handle_cli_command("hello there", state=new_state(), runtime=None) is False
    assert recorded.export_text().strip() == ""


def test_mode_command_switches_mode(recorded: Console) -> None:
    state = new_state()

    assert handle_cli_command(":mode rag", state=state, runtime=None)
    assert state["mode"] is ConversationMode.RAG

    assert handle_cli_command(":mode telepathy", state=state, runtime=None)
    assert state["mode"] is ConversationMode.RAG
    output = recorded.export_text()
    assert "Unknown mode" in output
    assert "- tool:" in output


def test_mode_command_respects_disabled_modes(tmp_path: Path, recorded: Console) -> None:
    runtime = make_runtime(tmp_path, modes={"tool": {"enabled": False}})
    state = new_state()

    handle_cli_command(":mode tool", state=state, runtime=runtime)

    assert state["mode"] is ConversationMode.PLAIN
    assert "disabled" in recorded.export_text()


def test_filter_and_system_commands_update_state(recorded: Console) -> None:
    state = new_state()

    handle_cli_command(":filter year >= 2020 && tag in ['a']", state=state, runtime=None)
    handle_cli_command(":system Answer briefly.", state=state, runtime=None)
    assert state["filter"] == "year >= 2020 && tag in ['a']"
    assert state["system_prompt"] == "Answer briefly."

    handle_cli_command(":filter", state=state, runtime=None)
    assert state["filter"] is None
    assert "Filter cleared" in recorded.export_text()


def test_unknown_command_is_reported(recorded: Console) -> None:
    assert handle_cli_command(":bogus", state=new_state(), runtime=None)
    assert "Unknown command" in recorded.export_text()


def test_sources_command_lists_last_documents(recorded: Console) -> None:
    state = new_state()
    state["last_documents"] = [{"file_name": "guide.md", "keywords": "setup, install"}]

    handle_cli_command(":sources", state=state, runtime=None)

    assert "[1] guide.md (setup, install)" in recorded.export_text()


def test_clear_command_forgets_conversation(tmp_path: Path, recorded: Console) -> None:
    runtime = make_runtime(tmp_path)
    runtime.orchestrator.call("remember me", "cli")

    handle_cli_command(":clear", state=new_state(), runtime=runtime)

    assert runtime.memory.read("cli") == []


def test_console_post_processor_prints_table() -> None:
    output = Console(record=True, width=120)
    processor = ConsoleDocumentPostProcessor(output, preview_chars=20)
    chunks = [RetrievedChunk(Document(page_content="Cats sleep a lot during the day", metadata={"file_name": "cats.txt"}), 0.91)]

    assert processor.process("cats", chunks) == chunks
    text = output.export_text()
    assert "cats.txt" in text
    assert "0.910" in text
    assert "Cats sleep a lot" in text

    processor.process("cats", [])
    assert "No documents matched" in output.export_text()


def test_chat_command_streams_answers(tmp_path: Path, recorded: Console, monkeypatch: pytest.MonkeyPatch) -> None:
    runtime = make_runtime(tmp_path)
    monkeypatch.setattr(cli_module, "load_chat_runtime", lambda config_path: runtime)
    inputs = iter(["hello", ":mode rag", "", ":exit"])
    monkeypatch.setattr(cli_module.Prompt, "ask", lambda *args, **kwargs: next(inputs))

    result = CliRunner().invoke(cli, ["chat", "--config", str(tmp_path / "gateway.yaml")])

    assert result.exit_code == 0, result.output
    output = recorded.export_text()
    assert "Assistant: canned answer" in output
    assert "Switched to rag mode" in output
    assert "Ending session" in output
    assert [turn.content for turn in runtime.memory.read("cli")] == ["hello", "canned answer"]


def test_stream_answer_renders_errors(tmp_path: Path, recorded: Console) -> None:
    runtime = make_runtime(tmp_path)
    state = new_state()
    state["mode"] = ConversationMode.RAG
    state["filter"] = "year >>> 2020"

    text = cli_module.stream_answer(runtime, "hello", state)

    assert text == ""
    assert "filter_expression_error" in recorded.export_text()


def test_reset_vector_store_in_memory_is_noop(tmp_path: Path, recorded: Console) -> None:
    config_path = write_config(tmp_path)

    result = CliRunner().invoke(cli, ["reset-vector-store", "--config", str(config_path), "--force"])

    assert result.exit_code == 0
    assert "Nothing to reset" in recorded.export_text()


def test_diagnose_json_output(tmp_path: Path, recorded: Console, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = write_config(tmp_path)
    monkeypatch.setattr(
        cli_module,
        "run_diagnostics",
        lambda config: {"python": {"status": "ok", "details": "Python 3.12"}},
    )

    result = CliRunner().invoke(cli, ["diagnose", "--config", str(config_path), "--json"])

    assert result.exit_code == 0
    output = recorded.export_text()
    assert '"python"' in output
    assert '"status": "ok"' in output


def test_ingest_command_reports_counts(tmp_path: Path, recorded: Console, monkeypatch: pytest.MonkeyPatch) -> None:
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "notes.txt").write_text("Short note about the gateway.", encoding="utf-8")
    config_path = write_config(tmp_path, ingestion={"enrich_keywords": False})
    runtime_config = GatewayConfig.from_file(config_path)
    monkeypatch.setattr(
        cli_module,
        "build_runtime_components",
        lambda config: build_runtime_components(
            runtime_config, chat_model=CannedModel(), embeddings=_DiagnosticsEmbeddings()
        ),
    )

    result = CliRunner().invoke(cli, ["ingest", "--config", str(config_path), "--pattern", str(docs / "*.txt")])

    assert result.exit_code == 0, result.output
    assert "Ingested 1 file(s): 1 document(s), 1 chunk(s)" in recorded.export_text()
