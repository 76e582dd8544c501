"""Turn orchestration: single-agent streaming and multi-agent fan-out."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from agentstream.client import AgentStreamClient, TransportError
from agentstream.config import SESSION_TITLE_CHARS, ClientConfig
from agentstream.consumer import StreamConsumer, TurnContext
from agentstream.decoder import decode_events
from agentstream.planner import RoutePlanner
from agentstream.schemas import (
    AgentResponse,
    AgentStatus,
    ExecutionPlan,
    Message,
    ProgressStep,
    Role,
    StreamRequest,
)
from agentstream.store import ConversationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_AGENT_ID = "assistant"
EMPTY_REPLY = "No response"
ERROR_REPLY = "Sorry, I encountered an error."


class TurnCancelledError(Exception):
    """Raised when a turn's cancellation token fires before it finalizes."""

    pass


@dataclass
class TurnResult:
    """What a finished turn produced."""

    messages: list[Message]
    responses: list[AgentResponse] = field(default_factory=list)
    progress: list[ProgressStep] = field(default_factory=list)
    plan: ExecutionPlan | None = None


def make_session_title(text: str, limit: int = SESSION_TITLE_CHARS) -> str:
    """Session title from the first user message."""
    return text[:limit] + ("..." if len(text) > limit else "")


def _new_message(role: Role, content: str, agent_id: str | None = None) -> Message:
    return Message(
        id=f"msg-{uuid.uuid4().hex[:12]}",
        role=role,
        content=content,
        agent_id=agent_id,
    )


class Orchestrator:
    """Runs one user turn against the backend and stores the results.

    The single-agent path streams one response. The multi-agent path asks the
    route planner for a plan, streams every planned agent concurrently and
    emits one message per agent in plan order once all of them have finished.
    A failure in one agent is confined to that agent's status.
    """

    def __init__(
        self,
        client: AgentStreamClient,
        store: ConversationStore,
        config: ClientConfig | None = None,
        on_thinking: Callable[[bool], None] | None = None,
        on_content: Callable[[str, str], None] | None = None,
    ):
        self.client = client
        self.store = store
        self.config = config or client.config
        self.planner = RoutePlanner(client)
        self.on_thinking = on_thinking
        self.on_content = on_content

    async def chat(
        self,
        message: str,
        session_id: str,
        agent_id: str | None = None,
        multi_agent: bool | None = None,
        context: TurnContext | None = None,
    ) -> TurnResult:
        """Run a turn, choosing the path from multi_agent or the config.

        Pass a TurnContext to be able to cancel the turn from elsewhere.
        """
        if not message.strip():
            raise ValueError("Message is empty")

        use_fanout = self.config.multi_agent if multi_agent is None else multi_agent
        if use_fanout:
            return await self.run_fanout(message, session_id, agent_id, context)
        return await self.run_single(message, session_id, agent_id, context)

    async def run_single(
        self,
        message: str,
        session_id: str,
        agent_id: str | None = None,
        context: TurnContext | None = None,
    ) -> TurnResult:
        """Stream one agent's response into a single assistant message.

        Transport failures produce one error reply, never a retry.
        """
        content = message.strip()
        context = context or TurnContext()
        own_id = agent_id or DEFAULT_AGENT_ID
        context.register(own_id)

        logger.info(f"Single-agent turn: session={session_id}, agent={own_id}")
        was_empty = self._begin_turn(session_id, content)

        consumer = StreamConsumer(context, own_id, self.on_thinking, self.on_content)
        request = StreamRequest(message=content, session_id=session_id, agent_id=agent_id)

        try:
            response = await self._run_guarded(
                context, self._stream(consumer, request), self.config.agent_timeout
            )
        except (TransportError, asyncio.TimeoutError) as e:
            reason = str(e) or "Timed out"
            logger.error(f"Chat error: {reason}")
            context.finish(own_id, AgentStatus.ERROR, error=reason)
            reply = _new_message(Role.ASSISTANT, ERROR_REPLY)
        else:
            text = consumer.combined_content() if consumer.sub_agents else response.content
            reply = _new_message(Role.ASSISTANT, text or EMPTY_REPLY)

        self._finish_turn(session_id, content, was_empty, [reply])
        return TurnResult(
            messages=[reply],
            responses=context.snapshot(),
            progress=context.progress.steps(),
        )

    async def run_fanout(
        self,
        message: str,
        session_id: str,
        agent_id: str | None = None,
        context: TurnContext | None = None,
    ) -> TurnResult:
        """Plan, stream every planned agent concurrently, then join.

        Raises:
            PlanningError: Before anything is stored or streamed
            TurnCancelledError: If the turn's context was cancelled
        """
        content = message.strip()
        context = context or TurnContext()
        # Planning is bounded by the request timeout, not the per-agent one
        plan = await self._run_guarded(
            context, self.planner.plan(content, session_id, agent_id), None
        )
        if context.cancelled:
            raise TurnCancelledError(f"Turn cancelled for session {session_id}")

        for planned in plan.agents:
            context.register(planned)

        logger.info(f"Fan-out turn: session={session_id}, agents={plan.agents}")
        was_empty = self._begin_turn(session_id, content)

        tasks = [
            asyncio.ensure_future(
                self._run_agent(context, plan, planned, content, session_id, agent_id)
            )
            for planned in plan.agents
        ]
        # Collect every outcome; one agent failing must not stop its siblings
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        if context.cancelled:
            raise TurnCancelledError(f"Turn cancelled for session {session_id}")

        for planned, outcome in zip(plan.agents, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Agent '{planned}' crashed: {outcome!r}", exc_info=outcome)
                context.finish(planned, AgentStatus.ERROR, error=str(outcome) or type(outcome).__name__)
            elif not context.get(planned).status.is_terminal:
                context.finish(planned, AgentStatus.ERROR, error="Agent did not finish")

        replies = []
        for planned in plan.agents:
            record = context.get(planned)
            text = record.content
            if record.status == AgentStatus.ERROR and not text:
                text = f"Error: {record.error or 'Unknown error'}"
            replies.append(_new_message(Role.ASSISTANT, text, agent_id=planned))

        self._finish_turn(session_id, content, was_empty, replies)
        return TurnResult(
            messages=replies,
            responses=[context.get(planned) for planned in plan.agents],
            progress=context.progress.steps(),
            plan=plan,
        )

    async def clear(self, session_id: str) -> None:
        """Clear a session on the backend and in the store."""
        try:
            await self.client.clear(session_id)
        except TransportError as e:
            logger.warning(f"Failed to clear backend session: {e}")
        self.store.clear(session_id)

    # --- Internals ---

    async def _run_agent(
        self,
        context: TurnContext,
        plan: ExecutionPlan,
        planned: str,
        message: str,
        session_id: str,
        session_agent_id: str | None,
    ) -> AgentResponse:
        context.start(planned)
        consumer = StreamConsumer(context, planned, self.on_thinking, self.on_content)
        request = StreamRequest(
            message=plan.task_for(planned, message),
            session_id=session_id,
            agent_id=session_agent_id,
            agent_ids=[planned],
        )

        try:
            await self._run_guarded(
                context, self._stream(consumer, request), self.config.agent_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Agent '{planned}' timed out after {self.config.agent_timeout}s")
            context.finish(planned, AgentStatus.ERROR, error=f"Timed out after {self.config.agent_timeout}s")
        except TransportError as e:
            logger.warning(f"Agent '{planned}' failed: {e}")
            context.finish(planned, AgentStatus.ERROR, error=str(e))

        return context.get(planned)

    async def _stream(self, consumer: StreamConsumer, request: StreamRequest) -> AgentResponse:
        async with self.client.stream(request) as body:
            return await consumer.consume(decode_events(body))

    async def _run_guarded(
        self,
        context: TurnContext,
        work: Awaitable[T],
        timeout: float | None,
    ) -> T:
        """Await work under a timeout and the turn's cancel token.

        Raises:
            asyncio.TimeoutError: If the timeout elapsed
            TurnCancelledError: If the turn was cancelled first
        """
        runner = asyncio.ensure_future(asyncio.wait_for(work, timeout=timeout))
        waiter = asyncio.ensure_future(context.wait_cancelled())
        try:
            await asyncio.wait({runner, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            runner.cancel()
            raise
        finally:
            waiter.cancel()

        if not runner.done():
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
            raise TurnCancelledError("Turn cancelled")
        return runner.result()

    def _begin_turn(self, session_id: str, content: str) -> bool:
        was_empty = not self.store.messages(session_id)
        self.store.append(session_id, _new_message(Role.USER, content))
        return was_empty

    def _finish_turn(
        self,
        session_id: str,
        content: str,
        was_empty: bool,
        replies: list[Message],
    ) -> None:
        for reply in replies:
            self.store.append(session_id, reply)
        if was_empty:
            self.store.rename(session_id, make_session_title(content))
        logger.info(f"Turn finalized: session={session_id}, messages={len(replies)}")
