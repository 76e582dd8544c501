"""Pydantic schemas for AgentStream wire contracts and turn records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventKind(str, Enum):
    """Event types recognised in an agent stream."""

    THINKING = "thinking"
    PROGRESS = "progress"
    MESSAGE = "message"
    CONTENT = "content"
    DONE = "done"
    ERROR = "error"
    AGENT_START = "agent_start"
    AGENT_PROGRESS = "agent_progress"
    AGENT_DONE = "agent_done"
    ALL_DONE = "all_done"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> EventKind:
        return cls.UNKNOWN


class StepStatus(str, Enum):
    """Status of a tool/file progress step."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @classmethod
    def _missing_(cls, value: object) -> StepStatus:
        return cls.RUNNING


class AgentStatus(str, Enum):
    """Lifecycle of one agent's response within a turn."""

    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentStatus.COMPLETED, AgentStatus.ERROR)


class Role(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"


class InvalidTransitionError(Exception):
    """Raised when an agent status would move backward or skip streaming."""

    pass


# --- Stream Events ---


class StructuredPayload(BaseModel):
    """Data line that parsed as a JSON object."""

    data: dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class RawPayload(BaseModel):
    """Data line kept verbatim because it was not a JSON object."""

    text: str


class StreamEvent(BaseModel):
    """One decoded event: its kind and the payload of its data line."""

    kind: EventKind
    name: str = Field(..., description="Event type exactly as sent, for logging")
    payload: StructuredPayload | RawPayload

    @property
    def is_structured(self) -> bool:
        return isinstance(self.payload, StructuredPayload)

    def field(self, key: str, default: Any = None) -> Any:
        """Return a payload field, or default for raw payloads."""
        if isinstance(self.payload, StructuredPayload):
            return self.payload.get(key, default)
        return default


# --- Turn Records ---


class ProgressStep(BaseModel):
    """Tool activity notification, identified by (tool, file)."""

    tool: str | None = None
    file: str | None = None
    action: str | None = None
    status: StepStatus = StepStatus.RUNNING
    content: str = ""

    @property
    def identity(self) -> tuple[str | None, str | None]:
        return (self.tool, self.file)


_STATUS_ORDER = {
    AgentStatus.PENDING: 0,
    AgentStatus.STREAMING: 1,
    AgentStatus.COMPLETED: 2,
    AgentStatus.ERROR: 2,
}


class AgentResponse(BaseModel):
    """In-flight output of one agent for the current turn."""

    agent_id: str
    content: str = ""
    status: AgentStatus = AgentStatus.PENDING
    error: str | None = None

    def advance(self, status: AgentStatus) -> None:
        """Move the status forward.

        pending -> streaming -> completed|error. A pending agent may fail
        directly (it never produced content) but may not complete directly.
        """
        if status == self.status:
            return
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Agent '{self.agent_id}' already {self.status.value}, cannot move to {status.value}"
            )
        if _STATUS_ORDER[status] < _STATUS_ORDER[self.status]:
            raise InvalidTransitionError(
                f"Agent '{self.agent_id}' cannot move from {self.status.value} back to {status.value}"
            )
        if self.status == AgentStatus.PENDING and status == AgentStatus.COMPLETED:
            raise InvalidTransitionError(
                f"Agent '{self.agent_id}' cannot complete without streaming"
            )
        self.status = status

    def append(self, text: str) -> None:
        """Append a content fragment. Only valid while not terminal."""
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Agent '{self.agent_id}' is {self.status.value}, content is frozen"
            )
        self.content += text


class ToolCall(BaseModel):
    """Tool invocation attached to an assistant message."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None


class Message(BaseModel):
    """Finalized conversation message handed to the conversation store."""

    id: str
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    tool_calls: list[ToolCall] | None = None
    agent_id: str | None = None


# --- Routing ---


class ExecutionPlan(BaseModel):
    """Routing decision: which agents run and what each one is asked."""

    agents: list[str] = Field(default_factory=list)
    task_for_each: dict[str, str] = Field(default_factory=dict)
    reasoning: str | None = None
    execution_mode: str | None = None

    @field_validator("agents")
    @classmethod
    def dedupe_agents(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        ordered = []
        for agent_id in v:
            if agent_id not in seen:
                seen.add(agent_id)
                ordered.append(agent_id)
        return ordered

    def task_for(self, agent_id: str, fallback: str) -> str:
        """Return the assigned task, or the original message when unassigned."""
        return self.task_for_each.get(agent_id) or fallback

    def summary(self) -> str:
        """Human-readable dispatch summary."""
        lines = [f"Dispatched {len(self.agents)} agent(s):"]
        lines.extend(f"  - {agent_id}" for agent_id in self.agents)
        if self.reasoning:
            lines.append(f"Reasoning: {self.reasoning}")
        return "\n".join(lines)


# --- Request Schemas ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class StreamRequest(_CamelModel):
    """Body of a stream-request."""

    message: str
    session_id: str = Field(..., alias="sessionId")
    agent_id: str | None = Field(default=None, alias="agentId")
    agent_ids: list[str] | None = Field(default=None, alias="agentIds")


class RouteRequest(_CamelModel):
    """Body of a route-request."""

    message: str
    session_id: str = Field(..., alias="sessionId")
    agent_id: str | None = Field(default=None, alias="agentId")


class ClearRequest(_CamelModel):
    """Body of a clear-request."""

    session_id: str = Field(..., alias="sessionId")


# --- Response Schemas ---


class RouteResponse(BaseModel):
    """Response of a route-request."""

    success: bool = False
    plan: ExecutionPlan | None = None
    error: str | None = None
