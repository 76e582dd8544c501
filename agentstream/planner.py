"""Route planner client: asks the backend which agents should handle a message."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from agentstream.client import AgentStreamClient, TransportError
from agentstream.schemas import ExecutionPlan, RouteRequest, RouteResponse

logger = logging.getLogger(__name__)


class PlanningError(Exception):
    """Raised when no usable execution plan could be obtained."""

    pass


class RoutePlanner:
    """Issues route-requests and validates the returned plan."""

    def __init__(self, client: AgentStreamClient):
        self.client = client

    async def plan(
        self,
        message: str,
        session_id: str,
        agent_id: str | None = None,
    ) -> ExecutionPlan:
        """Obtain an execution plan for a user message.

        Args:
            message: The user's message
            session_id: Conversation session
            agent_id: Agent the session is bound to, if any

        Returns:
            ExecutionPlan with at least one agent

        Raises:
            PlanningError: If the request fails, the backend reports failure,
                or the plan names no agents
        """
        request = RouteRequest(message=message, session_id=session_id, agent_id=agent_id)

        try:
            body = await self.client.route(request)
        except TransportError as e:
            raise PlanningError(f"Route API error: {e}") from e

        try:
            response = RouteResponse.model_validate(body)
        except ValidationError as e:
            raise PlanningError(f"Malformed route response: {e.error_count()} validation error(s)") from e

        if not response.success or response.plan is None:
            raise PlanningError(response.error or "Routing failed")

        plan = response.plan
        if not plan.agents:
            raise PlanningError("No agents returned from router")

        missing = [a for a in plan.agents if not plan.task_for_each.get(a)]
        if missing:
            logger.info(f"No task assigned for {missing}, falling back to the original message")

        logger.info(f"Plan received: agents={plan.agents}, mode={plan.execution_mode}")
        return plan
