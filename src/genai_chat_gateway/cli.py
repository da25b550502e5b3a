"""Command-line interface for the chat gateway."""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from genai_chat_gateway.app.bootstrap import (
    RuntimeComponents,
    build_runtime_components,
    run_ingestion,
    run_startup_ingestion,
)
from genai_chat_gateway.chat import ConversationMode, EmotionEvaluation
from genai_chat_gateway.config import GatewayConfig
from genai_chat_gateway.diagnostics import run_diagnostics
from genai_chat_gateway.errors import GatewayError
from genai_chat_gateway.llm import check_ollama_connection, check_ollama_model
from genai_chat_gateway.rag import EmbeddingFactory, VectorStoreManager
from genai_chat_gateway.rag.retrieval import RetrievedChunk

console = Console()

DEFAULT_CONFIG_PATH = Path("configs/gateway_config.yaml")

_MODE_DESCRIPTIONS = {
    ConversationMode.PLAIN: "Direct model answers with conversation memory",
    ConversationMode.RAG: "Answers grounded in the ingested documents",
    ConversationMode.TOOL: "Answers that may call the registered tools",
}


class ConsoleDocumentPostProcessor:
    """Prints each retrieved document with its score before the answer streams."""

    def __init__(self, output: Console, preview_chars: int = 160) -> None:
        self._output = output
        self._preview_chars = preview_chars

    def process(self, query: str, chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
        if not chunks:
            self._output.print("[dim]No documents matched the query.[/dim]")
            return chunks
        table = Table(title="Retrieved documents", box=box.SIMPLE, expand=True)
        table.add_column("#", justify="right", style="cyan", no_wrap=True)
        table.add_column("Score", justify="right", no_wrap=True)
        table.add_column("Source", overflow="fold")
        table.add_column("Preview", overflow="fold")
        for index, chunk in enumerate(chunks, start=1):
            metadata = chunk.document.metadata
            source = str(metadata.get("file_name") or metadata.get("source") or "-")
            preview = " ".join(chunk.document.page_content.split())[: self._preview_chars]
            table.add_row(str(index), f"{chunk.score:.3f}", source, preview)
        self._output.print(table)
        return chunks


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def load_chat_runtime(config_path: Path) -> RuntimeComponents:
    gateway_config = GatewayConfig.from_file(config_path)
    show_documents = bool(gateway_config.cli_settings().get("show_documents", True))
    post_processor = ConsoleDocumentPostProcessor(console) if show_documents else None
    runtime = build_runtime_components(gateway_config, post_processor=post_processor)
    run_startup_ingestion(runtime)
    return runtime


def list_modes(enabled: list[ConversationMode] | None = None) -> str:
    modes = enabled if enabled is not None else list(ConversationMode)
    lines = [f"- {mode.value}: {_MODE_DESCRIPTIONS[mode]}" for mode in modes]
    return "\n".join(lines)


def render_error(data: dict[str, Any]) -> None:
    kind = data.get("kind", "error")
    console.print(Panel(str(data.get("message", "")), title=f"[bold red]{kind}[/bold red]", border_style="red"))
    if kind == "model_provider_error":
        console.print(
            "\n[yellow]Tip:[/yellow] Make sure Ollama is running. Run [cyan]ollama serve[/cyan] in another terminal.\n"
        )


def stream_answer(runtime: RuntimeComponents, prompt: str, state: dict[str, Any]) -> str:
    """Stream one answer to the console and return the text that was printed."""
    fragments: list[str] = []
    header_printed = False
    for event in runtime.orchestrator.stream_events(
        prompt,
        state["conversation_id"],
        state["mode"],
        system_prompt=state.get("system_prompt"),
        filter_expression=state.get("filter"),
    ):
        if event.type == "token":
            if not header_printed:
                console.print("[bold blue]Assistant[/bold blue]: ", end="")
                header_printed = True
            fragment = event.data["text"]
            fragments.append(fragment)
            console.print(fragment, end="", markup=False, highlight=False)
        elif event.type == "error":
            if header_printed:
                console.print()
            render_error(event.data)
            return "".join(fragments)
        else:
            state["last_documents"] = event.data.get("documents", [])
    if header_printed:
        console.print()
    return "".join(fragments)


def handle_cli_command(command: str, *, state: dict[str, Any], runtime: RuntimeComponents | None) -> bool:
    """Handle ``:``-prefixed commands; return True when the input was consumed."""
    if not command.startswith(":"):
        return False
    name, _, argument = command[1:].partition(" ")
    name = name.lower()
    argument = argument.strip()
    if name == "help":
        _print_help_menu()
    elif name == "mode":
        _set_conversation_mode(argument, state, runtime)
    elif name == "filter":
        state["filter"] = argument or None
        if argument:
            console.print(f"[green]Filter set:[/] {argument}")
        else:
            console.print("[green]Filter cleared.[/]")
    elif name == "system":
        state["system_prompt"] = argument or None
        console.print("[green]System prompt updated.[/]" if argument else "[green]System prompt cleared.[/]")
    elif name == "clear":
        if runtime is not None:
            runtime.memory.clear(state["conversation_id"])
        console.print(f"[green]Cleared memory for conversation[/] [cyan]{state['conversation_id']}[/]")
    elif name in {"sources", "source"}:
        _render_sources(state.get("last_documents") or [])
    else:
        console.print(f"[red]Unknown command:[/] :{name}. Type ':help' for the list of commands.")
    return True


def _print_help_menu() -> None:
    console.print(
        Panel(
            "\n".join(
                [
                    ":mode <plain|rag|tool>  switch chat mode",
                    ":filter <expression>    restrict retrieval, e.g. year >= 2020 && tag in ['a']",
                    ":filter                 clear the filter",
                    ":system <prompt>        set a system prompt (empty clears it)",
                    ":sources                show documents used for the last RAG answer",
                    ":clear                  forget this conversation",
                    ":exit                   leave the chat",
                ]
            ),
            title="Commands",
            border_style="cyan",
        )
    )


def _set_conversation_mode(argument: str, state: dict[str, Any], runtime: RuntimeComponents | None) -> None:
    try:
        mode = ConversationMode(argument.lower())
    except ValueError:
        console.print(f"[red]Unknown mode:[/] {argument or '(none)'}")
        console.print(list_modes())
        return
    if runtime is not None and mode not in runtime.orchestrator.modes:
        console.print(f"[red]Mode '{mode.value}' is disabled in the configuration.[/]")
        return
    state["mode"] = mode
    console.print(f"[green]Switched to[/] [cyan]{mode.value}[/] mode.")


def _render_sources(documents: list[dict[str, Any]]) -> None:
    if not documents:
        console.print("[yellow]No sources available for the last answer.[/yellow]")
        return
    console.print("[bold]Sources:[/bold]")
    for index, metadata in enumerate(documents, start=1):
        source = metadata.get("file_name") or metadata.get("source") or "unknown"
        keywords = metadata.get("keywords")
        entry = f"[{index}] {source}"
        if keywords:
            entry += f" ({keywords})"
        console.print(entry, markup=False)


def _ensure_ollama_ready(runtime: RuntimeComponents, skip_check: bool) -> None:
    llm_settings = runtime.llm_settings
    if llm_settings.get("provider") != "ollama" or skip_check:
        return
    base_url = llm_settings.get("base_url", "http://localhost:11434")
    model_name = llm_settings.get("model", "llama3.1:8b")
    if not check_ollama_connection(base_url):
        console.print(
            Panel(
                "[bold red]Ollama is not running![/bold red]\n\n"
                "[bold]To start Ollama:[/bold]\n"
                "  Run: [cyan]ollama serve[/cyan]\n\n"
                "You can skip this check with [cyan]--skip-ollama-check[/cyan], "
                "but every chat request will fail until Ollama is reachable.",
                title="Ollama Connection Error",
                border_style="red",
            )
        )
        raise click.Abort()
    model_installed, available_models = check_ollama_model(base_url, model_name)
    if model_installed:
        return
    available_list = "\n  - ".join(available_models) if available_models else "(none installed)"
    console.print(
        Panel(
            f"[bold red]Model '{model_name}' is not installed![/bold red]\n\n"
            f"  Run: [cyan]ollama pull {model_name}[/cyan]\n\n"
            "[bold]Currently installed models:[/bold]\n"
            f"  - {available_list}",
            title="Model Not Found",
            border_style="yellow",
        )
    )
    raise click.Abort()


def perform_vector_store_reset(gateway_config: GatewayConfig, *, force: bool) -> None:
    vector_cfg = gateway_config.vector_store_config()
    persist_dir = vector_cfg.persist_directory

    console.print("[bold]Vector Store Reset[/bold]")
    console.print(f"Collection: [cyan]{vector_cfg.collection_name}[/cyan]")
    if vector_cfg.backend != "chroma":
        console.print("[yellow]The in-memory vector store is empty at every start. Nothing to reset.[/yellow]")
        return
    console.print(f"Directory: [cyan]{persist_dir}[/cyan]")
    console.print()
    if not persist_dir.exists():
        console.print("[yellow]Vector store directory does not exist. Nothing to reset.[/yellow]")
        return

    embeddings = EmbeddingFactory(gateway_config.embedding_settings()).build()
    vector_store = VectorStoreManager(embeddings, vector_cfg)
    proceed, backup_dir = _maybe_backup_existing_store(persist_dir, force)
    if not proceed:
        return
    try:
        vector_store.reset()
    except Exception as exc:  # pragma: no cover - filesystem errors vary
        console.print(f"[red]Error resetting vector store:[/red] {exc}")
        if backup_dir and backup_dir.exists():
            console.print(f"[yellow]Backup is still available at:[/yellow] {backup_dir}")
        raise click.Abort() from exc
    console.print("[green]Vector store reset successfully![/green]")
    console.print("Run [cyan]genai-gateway ingest[/cyan] to rebuild the index.")
    if backup_dir:
        console.print(f"Backup is available at: [cyan]{backup_dir}[/cyan]")


def _maybe_backup_existing_store(persist_dir: Path, force: bool) -> tuple[bool, Path | None]:
    if not any(persist_dir.iterdir()):
        return True, None
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_dir = persist_dir.parent / f"{persist_dir.name}.backup.{timestamp}"
    if not force:
        console.print(f"[yellow]This will backup the existing store to:[/yellow] [cyan]{backup_dir}[/cyan]")
        if not click.confirm("Do you want to continue?"):
            console.print("[yellow]Reset cancelled.[/yellow]")
            return False, None
    shutil.copytree(persist_dir, backup_dir, dirs_exist_ok=True)
    console.print(f"[green]Backup created:[/green] {backup_dir}")
    return True, backup_dir


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
def cli(log_level: str) -> None:
    """Conversational gateway over local or hosted chat models."""
    configure_logging(log_level)


@cli.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=DEFAULT_CONFIG_PATH)
@click.option("--mode", type=click.Choice([mode.value for mode in ConversationMode]), default=None)
@click.option("--conversation-id", type=str, default="cli", show_default=True)
@click.option("--filter", "filter_expression", type=str, default=None, help="Metadata filter for RAG mode.")
@click.option("--system-prompt", type=str, default=None)
@click.option("--skip-ollama-check", is_flag=True, help="Skip checking if Ollama is running (not recommended)")
def chat(
    config_path: Path,
    mode: str | None,
    conversation_id: str,
    filter_expression: str | None,
    system_prompt: str | None,
    skip_ollama_check: bool,
) -> None:
    """Start an interactive chat session."""
    runtime = load_chat_runtime(config_path)
    _ensure_ollama_ready(runtime, skip_ollama_check)
    state: dict[str, Any] = {
        "conversation_id": conversation_id,
        "mode": ConversationMode(mode) if mode else runtime.config.default_mode(),
        "filter": filter_expression,
        "system_prompt": system_prompt,
        "last_documents": [],
    }

    console.print("[bold magenta]GenAI Chat Gateway[/]")
    console.print(
        f"Type ':help' for available commands. Conversation: [cyan]{conversation_id}[/], "
        f"mode: [cyan]{state['mode'].value}[/]"
    )
    console.print(list_modes(runtime.orchestrator.modes))

    while True:
        user_input = Prompt.ask("[bold green]You[/]", console=console)
        stripped = user_input.strip()
        if not stripped:
            continue
        if stripped.lower() in {":exit", ":quit"}:
            console.print("[cyan]Ending session.[/]")
            break
        if handle_cli_command(stripped, state=state, runtime=runtime):
            continue
        stream_answer(runtime, stripped, state)


@cli.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=DEFAULT_CONFIG_PATH)
@click.option("--pattern", type=str, default=None, help="Glob pattern overriding ingestion.documents_location_pattern.")
def ingest(config_path: Path, pattern: str | None) -> None:
    """Extract, chunk, enrich and index documents."""
    gateway_config = GatewayConfig.from_file(config_path)
    runtime = build_runtime_components(gateway_config)
    try:
        report = run_ingestion(runtime, pattern)
    except GatewayError as exc:
        render_error(exc.to_dict())
        raise click.Abort() from exc
    console.print(
        f"[green]Ingested[/green] {report.source_count} file(s): "
        f"{report.document_count} document(s), {report.chunk_count} chunk(s) "
        f"into [cyan]{runtime.vector_store.collection_name}[/cyan]"
    )
    console.print(f"Sinks: {', '.join(report.sinks)}")


@cli.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=DEFAULT_CONFIG_PATH)
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
def reset_vector_store(config_path: Path, force: bool) -> None:
    """Reset the persistent vector store, backing up existing data if present.

    After reset, re-ingest your documents.
    """
    gateway_config = GatewayConfig.from_file(config_path)
    perform_vector_store_reset(gateway_config, force=force)


@cli.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=DEFAULT_CONFIG_PATH)
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON instead of a table.")
def diagnose(config_path: Path, as_json: bool) -> None:
    """Check the Python runtime, model provider, vector store and optional dependencies."""
    results = run_diagnostics(GatewayConfig.from_file(config_path))
    if as_json:
        console.print_json(json.dumps(results))
        return
    styles = {"ok": "green", "warn": "yellow", "error": "red", "not_applicable": "dim"}
    table = Table(title="Diagnostics", box=box.SIMPLE)
    table.add_column("Check", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Details", overflow="fold")
    for name, result in results.items():
        style = styles.get(result["status"], "white")
        table.add_row(name, f"[{style}]{result['status']}[/{style}]", result["details"])
    console.print(table)


@cli.command(name="classify-emotion")
@click.argument("text")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=DEFAULT_CONFIG_PATH)
@click.option("--conversation-id", type=str, default="emotion", show_default=True)
def classify_emotion(text: str, config_path: Path, conversation_id: str) -> None:
    """Classify the emotion expressed by TEXT as structured output."""
    runtime = build_runtime_components(GatewayConfig.from_file(config_path))
    prompt = f"Evaluate the emotion expressed in the following text.\n\n{text}"
    try:
        evaluation = runtime.orchestrator.call_entity(
            prompt, conversation_id, EmotionEvaluation, ConversationMode.PLAIN
        )
    except GatewayError as exc:
        render_error(exc.to_dict())
        raise click.Abort() from exc
    console.print(f"[bold]Emotion:[/bold] {evaluation.emotion.value}")
    for reason in evaluation.reason:
        console.print(f"- {reason}", markup=False)


if __name__ == "__main__":  # pragma: no cover
    cli()
