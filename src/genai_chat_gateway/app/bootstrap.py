"""Runtime bootstrap helpers for the CLI and embedding applications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from langchain_core.embeddings import Embeddings

from genai_chat_gateway.chat import (
    AdvisorChain,
    ChatOrchestrator,
    ConversationMode,
    InMemoryMessageRepository,
    LoggingAdvisor,
    MemoryAdvisor,
    MessageWindowMemory,
    ModelCallStep,
    ModePipeline,
    SqliteMessageRepository,
)
from genai_chat_gateway.config import GatewayConfig, QueryPipelineConfig, ToolConfig
from genai_chat_gateway.llm import ChatModelAdapter
from genai_chat_gateway.rag import (
    ContextualQueryAugmenter,
    DocumentRetriever,
    EmbeddingFactory,
    EtlPipeline,
    FileDocumentReader,
    IngestionConfig,
    IngestionReport,
    JsonLogDocumentWriter,
    KeywordMetadataEnricher,
    LengthTextSplitter,
    LoggingDocumentPostProcessor,
    MultiQueryExpander,
    ProcessedDocumentWriter,
    RetrievalAugmentationAdvisor,
    RetrievalOrchestrator,
    TranslationQueryTransformer,
    VectorIndexWriter,
    VectorStoreManager,
    resolve_sources,
)
from genai_chat_gateway.rag.retrieval import DocumentPostProcessor
from genai_chat_gateway.rag.writers import DocumentWriter
from genai_chat_gateway.tools import ToolDispatcher, ToolRegistry, ToolSpec, WeatherService, build_weather_tools

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeComponents:
    """Bundled runtime components for reuse across entry points."""

    config: GatewayConfig
    llm_settings: dict[str, Any]
    chat_model: Any
    vector_store: VectorStoreManager
    ingestion: EtlPipeline
    memory: MessageWindowMemory
    retrieval: RetrievalOrchestrator
    tools: ToolRegistry
    orchestrator: ChatOrchestrator
    cli_settings: dict[str, Any]


def build_ingestion_pipeline(
    ingestion_cfg: IngestionConfig,
    vector_store: VectorStoreManager,
    chat_model: Any,
) -> EtlPipeline:
    splitter = LengthTextSplitter(
        chunk_size=ingestion_cfg.chunk_size,
        chunk_overlap=ingestion_cfg.chunk_overlap,
        windowing=ingestion_cfg.windowing,
    )
    enricher = KeywordMetadataEnricher(chat_model, ingestion_cfg.keyword_count) if ingestion_cfg.enrich_keywords else None
    debug_writers: list[DocumentWriter] = []
    if ingestion_cfg.debug_log_sink:
        debug_writers.append(JsonLogDocumentWriter())
    if ingestion_cfg.processed_dir is not None:
        debug_writers.append(ProcessedDocumentWriter(ingestion_cfg.processed_dir))
    return EtlPipeline(
        FileDocumentReader(ingestion_cfg.max_file_size_bytes),
        splitter,
        VectorIndexWriter(vector_store),
        enricher=enricher,
        debug_writers=debug_writers,
    )


def build_memory(config: GatewayConfig) -> MessageWindowMemory:
    memory_cfg = config.memory_config()
    if memory_cfg.backend == "sqlite":
        repository = SqliteMessageRepository(memory_cfg.sqlite_path)
    else:
        repository = InMemoryMessageRepository()
    return MessageWindowMemory(repository, max_messages=memory_cfg.max_messages, exempt_roles=memory_cfg.exempt_roles)


def build_retrieval_orchestrator(
    query_cfg: QueryPipelineConfig,
    retriever: DocumentRetriever,
    chat_model: Any,
    post_processor: DocumentPostProcessor | None = None,
) -> RetrievalOrchestrator:
    expander = None
    if query_cfg.expand_queries:
        expander = MultiQueryExpander(
            chat_model,
            query_cfg.number_of_queries,
            include_original=query_cfg.include_original,
        )
    transformer = TranslationQueryTransformer(chat_model, query_cfg.target_language) if query_cfg.translate_queries else None
    augmenter = ContextualQueryAugmenter(
        allow_empty_context=query_cfg.allow_empty_context,
        empty_context_policy=query_cfg.empty_context_policy,
    )
    return RetrievalOrchestrator(
        retriever,
        augmenter,
        expander=expander,
        transformer=transformer,
        post_processor=post_processor,
    )


def build_tool_registry(tool_cfg: ToolConfig, extra_tools: list[ToolSpec] | None = None) -> ToolRegistry:
    registry = ToolRegistry()
    if tool_cfg.weather_enabled:
        service = WeatherService(
            tool_cfg.weather_base_url,
            language=tool_cfg.weather_language,
            report_format=tool_cfg.weather_format,
            timeout=tool_cfg.weather_timeout,
        )
        for spec in build_weather_tools(service, weather_return_direct=tool_cfg.weather_return_direct):
            registry.register(spec)
    for spec in extra_tools or []:
        registry.register(spec)
    return registry


def build_runtime_components(
    config: GatewayConfig,
    *,
    chat_model: Any = None,
    embeddings: Embeddings | None = None,
    post_processor: DocumentPostProcessor | None = None,
    extra_tools: list[ToolSpec] | None = None,
) -> RuntimeComponents:
    """Wire every component described by ``config``.

    ``chat_model`` and ``embeddings`` default to the configured providers;
    callers pass their own to run against local fakes.
    """
    llm_settings = config.llm_settings()
    model = chat_model if chat_model is not None else ChatModelAdapter(llm_settings)
    if embeddings is None:
        embeddings = EmbeddingFactory(config.embedding_settings()).build()

    vector_store = VectorStoreManager(embeddings, config.vector_store_config())
    ingestion = build_ingestion_pipeline(config.ingestion_config(), vector_store, model)

    memory = build_memory(config)
    retriever = DocumentRetriever(vector_store, config.retrieval_config())
    retrieval = build_retrieval_orchestrator(
        config.query_pipeline_config(),
        retriever,
        model,
        post_processor or LoggingDocumentPostProcessor(),
    )
    tool_cfg = config.tool_config()
    tools = build_tool_registry(tool_cfg, extra_tools)

    settings = config.mode_settings()
    base_advisors = [LoggingAdvisor(), MemoryAdvisor(memory)]
    pipelines = {
        ConversationMode.PLAIN: ModePipeline(
            settings[ConversationMode.PLAIN],
            AdvisorChain(base_advisors, ModelCallStep(model)),
        ),
        ConversationMode.RAG: ModePipeline(
            settings[ConversationMode.RAG],
            AdvisorChain([*base_advisors, RetrievalAugmentationAdvisor(retrieval)], ModelCallStep(model)),
        ),
        ConversationMode.TOOL: ModePipeline(
            settings[ConversationMode.TOOL],
            AdvisorChain(
                base_advisors,
                ToolDispatcher(
                    model,
                    tools,
                    max_iterations=tool_cfg.max_iterations,
                    raise_on_error=tool_cfg.raise_on_error,
                ),
            ),
        ),
    }
    orchestrator = ChatOrchestrator(pipelines, default_mode=config.default_mode())
    return RuntimeComponents(
        config=config,
        llm_settings=llm_settings,
        chat_model=model,
        vector_store=vector_store,
        ingestion=ingestion,
        memory=memory,
        retrieval=retrieval,
        tools=tools,
        orchestrator=orchestrator,
        cli_settings=config.cli_settings(),
    )


def run_ingestion(runtime: RuntimeComponents, pattern: str | None = None) -> IngestionReport:
    """Ingest every supported file matching ``pattern`` (or the configured pattern)."""
    location = pattern or runtime.config.ingestion_config().documents_location_pattern
    sources = resolve_sources(location)
    if not sources:
        LOGGER.warning("No supported documents match '%s'", location)
    return runtime.ingestion.run(sources)


def run_startup_ingestion(runtime: RuntimeComponents) -> IngestionReport | None:
    """Run the one-shot ingestion when ``ingestion.init_on_startup`` is set."""
    ingestion_cfg = runtime.config.ingestion_config()
    if not ingestion_cfg.init_on_startup:
        return None
    sources = resolve_sources(ingestion_cfg.documents_location_pattern)
    return runtime.ingestion.run_once(sources)


def load_runtime_from_path(config_path: Path) -> RuntimeComponents:
    """Load configuration and bootstrap all runtime services."""
    gateway_config = GatewayConfig.from_file(config_path)
    runtime = build_runtime_components(gateway_config)
    run_startup_ingestion(runtime)
    return runtime
