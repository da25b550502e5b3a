"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict


class ToolSpec(BaseModel):
    """Declarative tool specification: name, description, argument schema and handler."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], Any]
    return_direct: bool = False

    def invoke(self, payload: dict[str, Any]) -> str:
        """Validate ``payload`` against the schema, run the handler, and render its result as text."""
        data = self.args_schema.model_validate(payload)
        return render_result(self.handler(data))


def render_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, ensure_ascii=False, default=str)


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            message = f"Tool already registered: {spec.name}"
            raise ValueError(message)
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def as_langchain_tools(self) -> list[StructuredTool]:
        """Tool definitions to bind to the chat model; execution stays with the dispatcher."""
        return [
            StructuredTool.from_function(
                name=spec.name,
                description=spec.description,
                args_schema=spec.args_schema,
                func=self._build_function(spec),
                return_direct=spec.return_direct,
            )
            for spec in self._tools.values()
        ]

    @staticmethod
    def _build_function(spec: ToolSpec) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return spec.invoke(kwargs)

        return _callable
