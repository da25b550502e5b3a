"""Error taxonomy shared by the ingestion, retrieval and chat layers."""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base class for failures surfaced to callers as ``{kind, message}``."""

    kind = "gateway_error"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class ExtractionError(GatewayError):
    """Raised when a source document cannot be located or read."""

    kind = "extraction_error"


class IndexWriteError(GatewayError):
    """Raised when the vector index rejects an ingestion batch."""

    kind = "index_write_error"


class ModelProviderError(GatewayError):
    """Raised when the chat model cannot produce a response."""

    kind = "model_provider_error"


class RetrievalError(GatewayError):
    """Raised when the vector index cannot be searched."""

    kind = "retrieval_error"


class FilterExpressionError(RetrievalError):
    """Raised for malformed metadata filter expressions."""

    kind = "filter_expression_error"


class AugmentationError(GatewayError):
    """Raised when retrieval returned nothing and empty context is not allowed."""

    kind = "augmentation_error"


class ToolExecutionError(GatewayError):
    """Raised when a tool call fails and the dispatcher is configured to raise."""

    kind = "tool_execution_error"


class MemoryCapacityViolation(GatewayError):
    """Internal assertion: a conversation window grew past its bound."""

    kind = "memory_capacity_violation"


__all__ = [
    "AugmentationError",
    "ExtractionError",
    "FilterExpressionError",
    "GatewayError",
    "IndexWriteError",
    "MemoryCapacityViolation",
    "ModelProviderError",
    "RetrievalError",
    "ToolExecutionError",
]
