"""Per-turn state and the single-agent stream consumer."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, Callable, Iterable
from threading import Lock

from agentstream.client import TransportError
from agentstream.progress import ProgressTracker
from agentstream.schemas import (
    AgentResponse,
    AgentStatus,
    EventKind,
    ProgressStep,
    RawPayload,
    StepStatus,
    StreamEvent,
)

logger = logging.getLogger(__name__)

THINKING_STATUSES = {"starting", "queued"}

AGENT_SEPARATOR = "\n\n---\n\n"


class TurnContext:
    """State owned by one user turn.

    Holds the in-flight AgentResponse of every agent plus the shared progress
    tracker. Each turn gets a fresh context, which is dropped once the turn's
    messages are finalized. Records are replaced whole under a lock.
    """

    def __init__(self, agent_ids: Iterable[str] = ()):
        self.progress = ProgressTracker()
        self._responses: dict[str, AgentResponse] = {}
        self._lock = Lock()
        self._cancelled = asyncio.Event()
        for agent_id in agent_ids:
            self.register(agent_id)

    # --- Agent records ---

    def register(self, agent_id: str) -> AgentResponse:
        """Add a pending record for agent_id if it is not tracked yet."""
        with self._lock:
            if agent_id not in self._responses:
                self._responses[agent_id] = AgentResponse(agent_id=agent_id)
            return self._responses[agent_id].model_copy()

    def start(self, agent_id: str) -> None:
        """Move an agent to streaming, registering it if needed."""
        self.register(agent_id)
        with self._lock:
            record = self._responses[agent_id]
            if record.status.is_terminal:
                return
            updated = record.model_copy()
            updated.advance(AgentStatus.STREAMING)
            self._responses[agent_id] = updated

    def append(self, agent_id: str, text: str) -> bool:
        """Append a content fragment. Returns False if the agent already finished."""
        self.register(agent_id)
        with self._lock:
            record = self._responses[agent_id]
            if record.status.is_terminal:
                logger.debug(f"Ignoring content for finished agent '{agent_id}'")
                return False
            updated = record.model_copy()
            updated.advance(AgentStatus.STREAMING)
            updated.append(text)
            self._responses[agent_id] = updated
            return True

    def finish(
        self,
        agent_id: str,
        status: AgentStatus,
        content: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Move an agent to a terminal status.

        content, when given, replaces the accumulated buffer. Returns False if
        the agent had already finished.
        """
        self.register(agent_id)
        with self._lock:
            record = self._responses[agent_id]
            if record.status.is_terminal:
                return False
            updated = record.model_copy()
            if status == AgentStatus.COMPLETED:
                updated.advance(AgentStatus.STREAMING)
            updated.advance(status)
            if content is not None:
                updated.content = content
            if error is not None:
                updated.error = error
            self._responses[agent_id] = updated
            return True

    def get(self, agent_id: str) -> AgentResponse:
        with self._lock:
            return self._responses[agent_id].model_copy()

    def snapshot(self) -> list[AgentResponse]:
        """Copies of all records in registration order."""
        with self._lock:
            return [record.model_copy() for record in self._responses.values()]

    @property
    def agent_ids(self) -> list[str]:
        with self._lock:
            return list(self._responses)

    # --- Cancellation ---

    def cancel(self) -> None:
        """Fire the turn's cancellation token."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()


class StreamConsumer:
    """Drives one agent's decoded event stream to a final AgentResponse.

    States: idle -> thinking? -> streaming -> completed | error. Events with an
    ``agentId`` field (agent_start, agent_progress, agent_done) update that
    agent's record in the same context, which is how a backend reports several
    agents over one stream.
    """

    def __init__(
        self,
        context: TurnContext,
        agent_id: str,
        on_thinking: Callable[[bool], None] | None = None,
        on_content: Callable[[str, str], None] | None = None,
    ):
        self.context = context
        self.agent_id = agent_id
        self.on_thinking = on_thinking
        self.on_content = on_content
        self.thinking = False
        self.sub_agents: list[str] = []
        self._finished = False
        self._all_done = False

        self._handlers: dict[EventKind, Callable[[StreamEvent], None]] = {
            EventKind.THINKING: self._on_thinking,
            EventKind.PROGRESS: self._on_progress,
            EventKind.MESSAGE: self._on_message,
            EventKind.CONTENT: self._on_message,
            EventKind.DONE: self._on_done,
            EventKind.AGENT_DONE: self._on_done,
            EventKind.ERROR: self._on_error,
            EventKind.AGENT_START: self._on_agent_start,
            EventKind.AGENT_PROGRESS: self._on_agent_progress,
            EventKind.ALL_DONE: self._on_all_done,
        }

    @property
    def finished(self) -> bool:
        """True once this consumer's own agent reached a terminal event."""
        return self._finished

    async def consume(self, events: AsyncIterable[StreamEvent]) -> AgentResponse:
        """Process events until the stream ends or all_done arrives.

        Raises:
            TransportError: If the stream fails before a terminal event
        """
        self.context.start(self.agent_id)
        try:
            async for event in events:
                self.dispatch(event)
                if self._all_done:
                    break
        except TransportError:
            if not self._finished:
                raise
            logger.warning(f"Stream for '{self.agent_id}' failed after its final event, keeping result")
        finally:
            self._set_thinking(False)

        if not self._finished:
            self.context.finish(self.agent_id, AgentStatus.COMPLETED)
            self._finished = True
        return self.context.get(self.agent_id)

    def dispatch(self, event: StreamEvent) -> None:
        """Apply one event to the turn state."""
        logger.debug(f"[{self.agent_id}] {event.name}")

        if isinstance(event.payload, RawPayload):
            # Not a JSON object: the text itself is content
            if event.payload.text:
                logger.warning(f"[{self.agent_id}] non-JSON data on '{event.name}', appending as text")
                self._append(self.agent_id, event.payload.text)
            return

        handler = self._handlers.get(event.kind)
        if handler is not None:
            handler(event)

    def combined_content(self) -> str:
        """Join sub-agent outputs reported over this stream into one text."""
        blocks = []
        for agent_id in self.sub_agents:
            record = self.context.get(agent_id)
            blocks.append(f"## {agent_id}\n\n{record.content}")
        return AGENT_SEPARATOR.join(blocks)

    # --- Handlers ---

    def _on_thinking(self, event: StreamEvent) -> None:
        self._set_thinking(_field(event, "status") in THINKING_STATUSES)

    def _on_progress(self, event: StreamEvent) -> None:
        tool = _field(event, "tool")
        file = _field(event, "file")
        action = _field(event, "action")
        content = _field(event, "content")
        if tool or file or action:
            self.context.progress.upsert(
                ProgressStep(
                    tool=tool or None,
                    file=file or None,
                    action=action or None,
                    status=StepStatus(_field(event, "status") or StepStatus.RUNNING.value),
                    content=content,
                )
            )
        if content:
            self._append(self.agent_id, content)

    def _on_message(self, event: StreamEvent) -> None:
        content = _field(event, "content") or _field(event, "delta")
        if content:
            self._append(self.agent_id, content)

    def _on_done(self, event: StreamEvent) -> None:
        agent_id = _field(event, "agentId") or self.agent_id
        if agent_id != self.agent_id:
            self._track(agent_id)

        # A false or empty error flag means success
        error = _field(event, "error") if event.field("error") else ""
        status = AgentStatus.ERROR if error else AgentStatus.COMPLETED
        self.context.finish(
            agent_id,
            status,
            content=_field(event, "content") or None,
            error=error or None,
        )
        if agent_id == self.agent_id:
            self._finished = True
        logger.info(f"Agent '{agent_id}' {status.value}")

    def _on_error(self, event: StreamEvent) -> None:
        agent_id = _field(event, "agentId") or self.agent_id
        message = _field(event, "content") or "Unknown error"
        logger.warning(f"Stream error for '{agent_id}': {message}")
        self.context.finish(agent_id, AgentStatus.ERROR, error=message)
        if agent_id == self.agent_id:
            self._finished = True

    def _on_agent_start(self, event: StreamEvent) -> None:
        agent_id = _field(event, "agentId")
        if agent_id:
            self._track(agent_id)
            self.context.start(agent_id)

    def _on_agent_progress(self, event: StreamEvent) -> None:
        agent_id = _field(event, "agentId")
        content = _field(event, "content")
        if agent_id and content:
            self._track(agent_id)
            self._append(agent_id, content)

    def _on_all_done(self, event: StreamEvent) -> None:
        for agent_id in self.sub_agents:
            self.context.finish(agent_id, AgentStatus.COMPLETED)
        self.context.finish(self.agent_id, AgentStatus.COMPLETED)
        self._finished = True
        self._all_done = True

    # --- Helpers ---

    def _append(self, agent_id: str, text: str) -> None:
        if self.context.append(agent_id, text) and self.on_content is not None:
            self.on_content(agent_id, text)

    def _track(self, agent_id: str) -> None:
        if agent_id not in self.sub_agents:
            self.sub_agents.append(agent_id)

    def _set_thinking(self, value: bool) -> None:
        if value == self.thinking:
            return
        self.thinking = value
        if self.on_thinking is not None:
            self.on_thinking(value)


def _field(event: StreamEvent, key: str) -> str:
    """Payload field as text, "" when absent. Non-strings are JSON-encoded."""
    value = event.field(key)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
