"""Tests for the route planner client."""

import pytest

from agentstream.client import TransportError
from agentstream.planner import PlanningError, RoutePlanner

from tests.helpers import FakeAgentClient


class TestRoutePlanner:
    """Test plan retrieval and validation."""

    @pytest.mark.asyncio
    async def test_valid_plan(self, scenario_b_plan):
        client = FakeAgentClient(route_body=scenario_b_plan)
        plan = await RoutePlanner(client).plan("hello", "sess-1", "main")

        assert plan.agents == ["coder", "writer"]
        assert plan.task_for("writer", "hello") == "hello"
        request = client.route_requests[0]
        assert request.to_json() == {"message": "hello", "sessionId": "sess-1", "agentId": "main"}

    @pytest.mark.asyncio
    async def test_unsuccessful_response(self):
        client = FakeAgentClient(route_body={"success": False, "error": "router offline"})
        with pytest.raises(PlanningError, match="router offline"):
            await RoutePlanner(client).plan("hello", "sess-1")

    @pytest.mark.asyncio
    async def test_success_without_plan(self):
        client = FakeAgentClient(route_body={"success": True})
        with pytest.raises(PlanningError, match="Routing failed"):
            await RoutePlanner(client).plan("hello", "sess-1")

    @pytest.mark.asyncio
    async def test_empty_agent_list(self):
        client = FakeAgentClient(route_body={"success": True, "plan": {"agents": [], "task_for_each": {}}})
        with pytest.raises(PlanningError, match="No agents"):
            await RoutePlanner(client).plan("hello", "sess-1")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        client = FakeAgentClient(route_body=TransportError("API error: 502"))
        with pytest.raises(PlanningError, match="502"):
            await RoutePlanner(client).plan("hello", "sess-1")

    @pytest.mark.asyncio
    async def test_malformed_plan(self):
        client = FakeAgentClient(route_body={"success": True, "plan": {"agents": "coder"}})
        with pytest.raises(PlanningError, match="Malformed"):
            await RoutePlanner(client).plan("hello", "sess-1")
