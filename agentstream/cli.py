"""CLI for AgentStream - chat with backend agents from the terminal."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid

import click

from agentstream import __version__
from agentstream.client import AgentStreamClient, TransportError
from agentstream.config import AGENT_TIMEOUT, DEFAULT_BASE_URL, ClientConfig
from agentstream.decoder import iter_events
from agentstream.orchestrator import Orchestrator, TurnCancelledError, TurnResult
from agentstream.planner import PlanningError, RoutePlanner
from agentstream.schemas import StructuredPayload
from agentstream.store import InMemoryStore

READ_CHUNK_BYTES = 4096

base_url_option = click.option(
    "--base-url", "-u",
    default=DEFAULT_BASE_URL,
    show_default=True,
    help="Backend base URL",
)
session_option = click.option(
    "--session", "-s",
    "session_id",
    default=None,
    help="Session ID (defaults to a fresh one)",
)
agent_option = click.option(
    "--agent", "-a",
    "agent_id",
    default=None,
    help="Agent the session is bound to",
)


def _new_session_id() -> str:
    return f"sess-{uuid.uuid4().hex[:12]}"


@click.group()
@click.version_option(version=__version__, prog_name="agentstream")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """AgentStream - stream answers from one agent or fan out to many.

    Talks to an agent backend exposing stream, route and clear endpoints.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@main.command()
@click.argument("message")
@base_url_option
@session_option
@agent_option
@click.option("--multi", "-m", is_flag=True, help="Plan and fan out to several agents")
@click.option(
    "--timeout", "-t",
    default=AGENT_TIMEOUT,
    show_default=True,
    type=float,
    help="Per-agent timeout in seconds",
)
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def chat(
    message: str,
    base_url: str,
    session_id: str | None,
    agent_id: str | None,
    multi: bool,
    timeout: float,
    raw: bool,
) -> None:
    """Send a message and print the reply.

    \b
    Example:
        agentstream chat "summarize the release notes"
        agentstream chat "write and review a parser" --multi
    """
    config = ClientConfig(base_url=base_url, agent_timeout=timeout, multi_agent=multi)
    session_id = session_id or _new_session_id()
    # Deltas are only printed live for a single formatted stream
    live = not multi and not raw

    def on_content(_agent: str, fragment: str) -> None:
        click.echo(fragment, nl=False)

    async def run() -> TurnResult:
        async with AgentStreamClient(config) as client:
            orchestrator = Orchestrator(
                client,
                InMemoryStore(),
                config,
                on_content=on_content if live else None,
            )
            return await orchestrator.chat(message, session_id, agent_id)

    try:
        result = asyncio.run(run())
    except (PlanningError, TurnCancelledError) as e:
        raise click.ClickException(str(e))

    if raw:
        click.echo(json.dumps({
            "session_id": session_id,
            "plan": result.plan.model_dump() if result.plan else None,
            "messages": [m.model_dump(mode="json") for m in result.messages],
            "progress": [s.model_dump(mode="json") for s in result.progress],
        }, indent=2))
        return

    if live:
        streamed = any(r.content for r in result.responses)
        if not streamed:
            click.echo(result.messages[0].content, nl=False)
        click.echo()
        return

    if result.plan:
        click.echo(result.plan.summary())
    for reply, response in zip(result.messages, result.responses):
        click.echo(f"\n{'=' * 60}")
        click.echo(f"{reply.agent_id} [{response.status.value}]")
        click.echo(f"{'=' * 60}")
        click.echo(reply.content)

    if result.progress:
        click.echo(f"\n{'─' * 60}")
        click.echo(f"Tools ({len(result.progress)}):")
        for step in result.progress:
            label = " ".join(part for part in (step.tool, step.action, step.file) if part)
            click.echo(f"  [{step.status.value}] {label}")


@main.command()
@click.argument("message")
@base_url_option
@session_option
@agent_option
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def plan(
    message: str,
    base_url: str,
    session_id: str | None,
    agent_id: str | None,
    raw: bool,
) -> None:
    """Show which agents the router would dispatch for MESSAGE."""
    config = ClientConfig(base_url=base_url)

    async def run():
        async with AgentStreamClient(config) as client:
            return await RoutePlanner(client).plan(
                message.strip(), session_id or _new_session_id(), agent_id
            )

    try:
        execution_plan = asyncio.run(run())
    except PlanningError as e:
        raise click.ClickException(str(e))

    if raw:
        click.echo(json.dumps(execution_plan.model_dump(), indent=2))
        return

    click.echo(execution_plan.summary())
    for agent in execution_plan.agents:
        click.echo(f"\n{agent}: {execution_plan.task_for(agent, message.strip())}")


@main.command()
@click.argument("session_id")
@base_url_option
def clear(session_id: str, base_url: str) -> None:
    """Clear a session's history on the backend."""
    config = ClientConfig(base_url=base_url)

    async def run() -> None:
        async with AgentStreamClient(config) as client:
            await client.clear(session_id)

    try:
        asyncio.run(run())
    except TransportError as e:
        raise click.ClickException(f"Failed to clear session: {e}")
    click.echo(f"Cleared session: {session_id}")


@main.command()
@click.argument("stream_file", type=click.File("rb"))
def decode(stream_file) -> None:
    """Decode a captured event stream and print one event per line.

    \b
    Example:
        curl -N -X POST .../api/chat/stream -d '{...}' > turn.sse
        agentstream decode turn.sse
    """
    chunks = iter(lambda: stream_file.read(READ_CHUNK_BYTES), b"")
    count = 0
    for event in iter_events(chunks):
        if isinstance(event.payload, StructuredPayload):
            body = json.dumps(event.payload.data, ensure_ascii=False)
        else:
            body = f"(raw) {event.payload.text}"
        click.echo(f"{event.name}\t{body}")
        count += 1
    click.echo(f"{count} event(s)", err=True)


if __name__ == "__main__":
    main()
