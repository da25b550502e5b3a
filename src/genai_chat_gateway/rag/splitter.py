"""Fixed-length character chunking for ingested documents."""

from __future__ import annotations

import logging
from typing import Any, Literal

from langchain_text_splitters import TextSplitter

LOGGER = logging.getLogger(__name__)

Windowing = Literal["literal", "overlapping"]


class LengthTextSplitter(TextSplitter):
    """Split text into fixed-length character windows.

    Two windowing modes are supported:

    ``literal``
        Windows of width ``chunk_overlap`` where the next window starts at
        ``end - chunk_overlap``. The start never advances, so the no-progress
        guard stops after the first window and only the leading
        ``chunk_overlap`` characters of a long text are kept.
    ``overlapping``
        Windows of width ``chunk_size`` where each window starts
        ``chunk_overlap`` characters before the previous one ended. Adjacent
        chunks share exactly ``chunk_overlap`` characters and together cover
        the whole text.

    In both modes blank text yields no chunks and text no longer than
    ``chunk_overlap`` yields itself as the only chunk.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        *,
        windowing: Windowing = "literal",
        **kwargs: Any,
    ) -> None:
        if chunk_size <= 0 or chunk_overlap <= 0:
            message = f"chunk_size and chunk_overlap must be positive (got {chunk_size}, {chunk_overlap})"
            raise ValueError(message)
        if chunk_overlap >= chunk_size:
            message = f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            raise ValueError(message)
        if windowing not in ("literal", "overlapping"):
            message = f"Unsupported windowing mode: {windowing}"
            raise ValueError(message)
        kwargs.setdefault("strip_whitespace", False)
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap, **kwargs)
        self._windowing = windowing

    @property
    def windowing(self) -> Windowing:
        return self._windowing

    def split_text(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []
        if len(text) <= self._chunk_overlap:
            return [text]
        if self._windowing == "overlapping":
            return self._split_overlapping(text)
        return self._split_literal(text)

    def _split_literal(self, text: str) -> list[str]:
        chunks: list[str] = []
        position = 0
        length = len(text)
        while position < length:
            end = min(position + self._chunk_overlap, length)
            chunks.append(text[position:end])
            next_position = end - self._chunk_overlap
            if next_position <= position:
                break
            position = next_position
        if position + self._chunk_overlap < length:
            LOGGER.debug(
                "Literal windowing kept %s of %s characters (chunk_overlap=%s)",
                sum(len(chunk) for chunk in chunks),
                length,
                self._chunk_overlap,
            )
        return chunks

    def _split_overlapping(self, text: str) -> list[str]:
        chunks: list[str] = []
        position = 0
        length = len(text)
        while True:
            end = min(position + self._chunk_size, length)
            chunks.append(text[position:end])
            if end >= length:
                break
            position = end - self._chunk_overlap
        return chunks
