"""Per-conversation message windows with in-memory or SQLite persistence."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from genai_chat_gateway.errors import MemoryCapacityViolation
from genai_chat_gateway.utils.time import utcnow_isoformat

LOGGER = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant", "tool"]

_ROLE_BY_MESSAGE_TYPE = {"system": "system", "human": "user", "ai": "assistant", "tool": "tool"}


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of content blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


@dataclass(slots=True)
class ConversationTurn:
    """Represents a single conversational turn."""

    role: Role
    content: str
    created_at: str = field(default_factory=utcnow_isoformat)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> BaseMessage:
        if self.role == "system":
            return SystemMessage(content=self.content)
        if self.role == "user":
            return HumanMessage(content=self.content)
        if self.role == "assistant":
            return AIMessage(content=self.content)
        return ToolMessage(content=self.content, tool_call_id=str(self.metadata.get("tool_call_id", "")))

    @classmethod
    def from_message(cls, message: BaseMessage) -> ConversationTurn:
        role = _ROLE_BY_MESSAGE_TYPE.get(message.type)
        if role is None:
            message_type = message.type
            error = f"Unsupported message type for memory: {message_type}"
            raise ValueError(error)
        metadata: dict[str, Any] = {}
        if isinstance(message, ToolMessage):
            metadata["tool_call_id"] = message.tool_call_id
        return cls(role=role, content=message_text(message), metadata=metadata)  # type: ignore[arg-type]


class MessageRepository(Protocol):
    def load(self, conversation_id: str) -> list[ConversationTurn]: ...

    def save(self, conversation_id: str, turns: Sequence[ConversationTurn]) -> None: ...

    def delete(self, conversation_id: str) -> None: ...

    def conversation_ids(self) -> list[str]: ...


class InMemoryMessageRepository:
    """Process-local storage; windows are lost on restart."""

    def __init__(self) -> None:
        self._windows: dict[str, list[ConversationTurn]] = {}

    def load(self, conversation_id: str) -> list[ConversationTurn]:
        return list(self._windows.get(conversation_id, []))

    def save(self, conversation_id: str, turns: Sequence[ConversationTurn]) -> None:
        self._windows[conversation_id] = list(turns)

    def delete(self, conversation_id: str) -> None:
        self._windows.pop(conversation_id, None)

    def conversation_ids(self) -> list[str]:
        return sorted(self._windows)


class SqliteMessageRepository:
    """SQLite-backed persistence for conversation windows."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _initialize(self) -> None:
        with self._connection() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    conversation_id TEXT NOT NULL,
                    idx INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    metadata TEXT,
                    PRIMARY KEY (conversation_id, idx)
                )
                """
            )
            connection.commit()

    def load(self, conversation_id: str) -> list[ConversationTurn]:
        with self._connection() as connection:
            rows = connection.execute(
                """
                SELECT role, content, created_at, metadata
                FROM messages
                WHERE conversation_id = ?
                ORDER BY idx ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [
            ConversationTurn(
                role=row["role"],
                content=row["content"],
                created_at=row["created_at"],
                metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            )
            for row in rows
        ]

    def save(self, conversation_id: str, turns: Sequence[ConversationTurn]) -> None:
        with self._connection() as connection:
            connection.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            connection.executemany(
                """
                INSERT INTO messages(conversation_id, idx, role, content, created_at, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        conversation_id,
                        idx,
                        turn.role,
                        turn.content,
                        turn.created_at,
                        json.dumps(turn.metadata, ensure_ascii=False),
                    )
                    for idx, turn in enumerate(turns)
                ],
            )
            connection.commit()

    def delete(self, conversation_id: str) -> None:
        with self._connection() as connection:
            connection.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            connection.commit()

    def conversation_ids(self) -> list[str]:
        with self._connection() as connection:
            rows = connection.execute("SELECT DISTINCT conversation_id FROM messages ORDER BY conversation_id").fetchall()
        return [row[0] for row in rows]

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(str(self._db_path))
        connection.row_factory = sqlite3.Row
        try:
            yield connection
        finally:
            connection.close()


@dataclass(slots=True, frozen=True)
class MemoryConfig:
    """Conversation window settings."""

    max_messages: int = 10
    backend: Literal["in_memory", "sqlite"] = "in_memory"
    sqlite_path: Path = Path("data/memory/conversations.db")
    exempt_roles: tuple[str, ...] = ("system",)


class MessageWindowMemory:
    """Bounded FIFO window of turns per conversation id.

    Appending at capacity evicts the oldest turn whose role is not exempt.
    A new turn with an exempt role replaces earlier turns of the same role,
    and when only exempt turns remain the oldest one is evicted, so a window
    never holds more than ``max_messages`` turns.

    Reads and appends on one conversation are serialized by a per-conversation
    lock; different conversations never contend. :meth:`exclusive` gives
    callers a second per-conversation lock that spans a whole request.
    """

    def __init__(
        self,
        repository: MessageRepository | None = None,
        *,
        max_messages: int = 10,
        exempt_roles: Iterable[str] = ("system",),
    ) -> None:
        if max_messages <= 0:
            message = f"max_messages must be positive (got {max_messages})"
            raise ValueError(message)
        self._repository = repository or InMemoryMessageRepository()
        self._max_messages = max_messages
        self._exempt_roles = frozenset(exempt_roles)
        self._registry_lock = threading.Lock()
        self._window_locks: dict[str, threading.RLock] = {}
        self._request_locks: dict[str, threading.Lock] = {}

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def read(self, conversation_id: str) -> list[ConversationTurn]:
        with self._window_lock(conversation_id):
            return self._repository.load(conversation_id)

    def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        self.append_many(conversation_id, [turn])

    def append_many(self, conversation_id: str, turns: Sequence[ConversationTurn]) -> None:
        """Append turns atomically with respect to other operations on the same conversation."""
        with self._window_lock(conversation_id):
            window = self._repository.load(conversation_id)
            for turn in turns:
                self._insert(window, turn)
            if len(window) > self._max_messages:
                message = f"Conversation {conversation_id} holds {len(window)} turns (max {self._max_messages})"
                raise MemoryCapacityViolation(message)
            self._repository.save(conversation_id, window)
        LOGGER.debug("Appended %s turns to conversation %s (%s held)", len(turns), conversation_id, len(window))

    def clear(self, conversation_id: str) -> None:
        """Forget a conversation and release its lock entries.

        The request lock is kept while a request still holds it.
        """
        with self._window_lock(conversation_id):
            self._repository.delete(conversation_id)
        with self._registry_lock:
            self._window_locks.pop(conversation_id, None)
            request_lock = self._request_locks.get(conversation_id)
            if request_lock is not None and request_lock.acquire(blocking=False):
                del self._request_locks[conversation_id]
                request_lock.release()

    def conversation_ids(self) -> list[str]:
        return self._repository.conversation_ids()

    @contextmanager
    def exclusive(self, conversation_id: str) -> Iterator[None]:
        """Hold the conversation's request lock for the duration of the block."""
        with self._registry_lock:
            lock = self._request_locks.setdefault(conversation_id, threading.Lock())
        with lock:
            yield

    def _window_lock(self, conversation_id: str) -> threading.RLock:
        with self._registry_lock:
            return self._window_locks.setdefault(conversation_id, threading.RLock())

    def _insert(self, window: list[ConversationTurn], turn: ConversationTurn) -> None:
        if turn.role in self._exempt_roles:
            window[:] = [existing for existing in window if existing.role != turn.role]
        while len(window) >= self._max_messages:
            index = next(
                (position for position, existing in enumerate(window) if existing.role not in self._exempt_roles),
                0,
            )
            window.pop(index)
        window.append(turn)
