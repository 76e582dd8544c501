"""Stream scripting helpers shared by the AgentStream tests."""

import asyncio
import json
from contextlib import asynccontextmanager

from agentstream.client import TransportError
from agentstream.config import ClientConfig


def frame(event: str | None, data) -> str:
    """Build one event frame; dicts are JSON-encoded, strings sent as-is."""
    lines = []
    if event is not None:
        lines.append(f"event: {event}")
    body = json.dumps(data, ensure_ascii=False) if isinstance(data, dict) else data
    lines.append(f"data: {body}")
    return "\n".join(lines) + "\n\n"


def stream_body(*frames: str) -> bytes:
    return "".join(frames).encode("utf-8")


class FakeAgentClient:
    """Stands in for AgentStreamClient with scripted per-agent streams.

    Streams are keyed by the single id in ``agentIds`` (or None for a
    single-agent request). A script is a list of byte chunks, or an exception
    to raise when the request is opened. ``delays`` pauses before the first
    chunk, ``fail_after`` raises TransportError after that many chunks and
    ``route_delay`` pauses before the route response.
    """

    def __init__(self, streams=None, route_body=None, config=None):
        self.config = config or ClientConfig()
        self.streams = streams or {}
        self.route_body = route_body
        self.delays: dict = {}
        self.route_delay: float = 0.0
        self.fail_after: dict = {}
        self.stream_requests = []
        self.route_requests = []
        self.cleared = []
        self.clear_error: Exception | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    @asynccontextmanager
    async def stream(self, request):
        self.stream_requests.append(request)
        key = request.agent_ids[0] if request.agent_ids else None
        script = self.streams.get(key, [])
        if isinstance(script, Exception):
            raise script

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            yield self._body(key, script)
        finally:
            self.in_flight -= 1

    async def _body(self, key, script):
        delay = self.delays.get(key)
        if delay:
            await asyncio.sleep(delay)
        for index, chunk in enumerate(script):
            if self.fail_after.get(key) == index:
                raise TransportError("Stream interrupted: connection reset")
            await asyncio.sleep(0)
            yield chunk

    async def route(self, request):
        self.route_requests.append(request)
        if self.route_delay:
            await asyncio.sleep(self.route_delay)
        if isinstance(self.route_body, Exception):
            raise self.route_body
        return self.route_body

    async def clear(self, session_id):
        if self.clear_error is not None:
            raise self.clear_error
        self.cleared.append(session_id)


