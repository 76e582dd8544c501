"""Pytest configuration and fixtures for AgentStream tests."""

import pytest

from agentstream.store import InMemoryStore

from tests.helpers import frame, stream_body


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def scenario_a_body() -> bytes:
    """Thinking, then two progress frames for the same tool."""
    return stream_body(
        frame("thinking", {"status": "starting"}),
        frame("progress", {"tool": "search", "action": "run", "status": "running", "content": "x"}),
        frame("progress", {"tool": "search", "action": "run", "status": "completed", "content": "y"}),
    )


@pytest.fixture
def scenario_b_plan() -> dict:
    return {
        "success": True,
        "plan": {
            "agents": ["coder", "writer"],
            "task_for_each": {"coder": "taskA"},
            "reasoning": "code first, prose second",
        },
    }
