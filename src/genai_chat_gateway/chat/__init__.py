"""Chat interfaces for the gateway."""

from .advisors import AdvisorChain, ChatRequest, ChatResponse, LoggingAdvisor, MemoryAdvisor, ModelCallStep
from .conversation import (
    ConversationTurn,
    InMemoryMessageRepository,
    MemoryConfig,
    MessageWindowMemory,
    SqliteMessageRepository,
)
from .modes import MODE_REGISTRY, ConversationMode, ModeSettings, get_mode_settings
from .orchestrator import ChatOrchestrator, Emotion, EmotionEvaluation, ModePipeline, StreamEvent, build_prompt

__all__ = [
    "MODE_REGISTRY",
    "AdvisorChain",
    "ChatOrchestrator",
    "ChatRequest",
    "ChatResponse",
    "ConversationMode",
    "ConversationTurn",
    "Emotion",
    "EmotionEvaluation",
    "InMemoryMessageRepository",
    "LoggingAdvisor",
    "MemoryAdvisor",
    "MemoryConfig",
    "MessageWindowMemory",
    "ModeSettings",
    "ModePipeline",
    "ModelCallStep",
    "SqliteMessageRepository",
    "StreamEvent",
    "build_prompt",
    "get_mode_settings",
]
