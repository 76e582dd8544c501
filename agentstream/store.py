"""Conversation store interface and an in-memory implementation."""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import Protocol

from agentstream.schemas import Message


class ConversationStore(Protocol):
    """Where finalized messages go. Persistence is up to the implementation."""

    def append(self, session_id: str, message: Message) -> None: ...

    def clear(self, session_id: str) -> None: ...

    def rename(self, session_id: str, title: str) -> None: ...

    def messages(self, session_id: str) -> list[Message]: ...


@dataclass
class Session:
    """Session state held by the in-memory store."""

    session_id: str
    title: str = ""
    messages: list[Message] = field(default_factory=list)


class InMemoryStore:
    """Process-local store, used by the CLI and in tests."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = Lock()

    def _get_or_create(self, session_id: str) -> Session:
        if session_id not in self._sessions:
            self._sessions[session_id] = Session(session_id=session_id)
        return self._sessions[session_id]

    def append(self, session_id: str, message: Message) -> None:
        with self._lock:
            self._get_or_create(session_id).messages.append(message)

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._get_or_create(session_id).messages = []

    def rename(self, session_id: str, title: str) -> None:
        with self._lock:
            self._get_or_create(session_id).title = title

    def messages(self, session_id: str) -> list[Message]:
        with self._lock:
            return list(self._get_or_create(session_id).messages)

    def title(self, session_id: str) -> str:
        with self._lock:
            return self._get_or_create(session_id).title
