"""Client configuration for AgentStream."""

from __future__ import annotations

from dataclasses import dataclass, field

# Backend endpoint
DEFAULT_BASE_URL = "http://localhost:8000"
STREAM_PATH = "/api/chat/stream"
ROUTE_PATH = "/api/chat/route"
CLEAR_PATH = "/api/chat/clear"

# Timeouts
REQUEST_TIMEOUT = 30.0  # seconds, connect/write/pool
AGENT_TIMEOUT = 300.0  # seconds, whole stream for one agent

# Session titles
SESSION_TITLE_CHARS = 30


@dataclass
class ClientConfig:
    """Connection and orchestration settings."""

    base_url: str = DEFAULT_BASE_URL
    stream_path: str = STREAM_PATH
    route_path: str = ROUTE_PATH
    clear_path: str = CLEAR_PATH
    request_timeout: float = REQUEST_TIMEOUT
    agent_timeout: float | None = AGENT_TIMEOUT
    multi_agent: bool = False
    headers: dict[str, str] = field(default_factory=dict)
