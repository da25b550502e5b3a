"""Chat mode definitions: plain, retrieval-augmented, and tool-calling."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class ConversationMode(str, Enum):
    PLAIN = "plain"
    RAG = "rag"
    TOOL = "tool"


@dataclass(slots=True, frozen=True)
class ModeSettings:
    """Per-mode model options and default system prompt."""

    name: str
    temperature: float | None
    system_prompt: str | None = None
    enabled: bool = True


MODE_REGISTRY: dict[ConversationMode, ModeSettings] = {
    ConversationMode.PLAIN: ModeSettings(name="Plain Chat", temperature=None),
    ConversationMode.RAG: ModeSettings(name="Document Q&A", temperature=0.0),
    ConversationMode.TOOL: ModeSettings(
        name="Tool Calling",
        temperature=0.2,
        system_prompt="You are a helpful assistant. Use the available tools when they help answer the question.",
    ),
}


def get_mode_settings(mode: ConversationMode, overrides: Mapping[str, Any] | None = None) -> ModeSettings:
    """Return the settings for ``mode`` with any configured overrides applied."""
    settings = MODE_REGISTRY[mode]
    if not overrides:
        return settings
    known = {key: overrides[key] for key in ("name", "temperature", "system_prompt", "enabled") if key in overrides}
    return replace(settings, **known)
