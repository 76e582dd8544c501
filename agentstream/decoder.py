"""Event frame decoder for agent streams.

Turns an arbitrarily chunked byte stream into StreamEvents. Framing:

    event: progress
    data: {"tool": "search", "status": "running"}

    data: plain text is kept verbatim

Lines starting with ":" and blank lines are ignored. After every data line the
pending event type resets to "message", so a frame without an ``event:`` line
is always typed as a message.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator

from agentstream.schemas import EventKind, RawPayload, StreamEvent, StructuredPayload

logger = logging.getLogger(__name__)

DEFAULT_EVENT = "message"

EVENT_PREFIX = "event:"
DATA_PREFIX = "data:"
COMMENT_PREFIX = ":"


def parse_payload(text: str) -> StructuredPayload | RawPayload:
    """Parse a data line as a JSON object, falling back to the raw text."""
    try:
        data = json.loads(text)
    except ValueError:
        return RawPayload(text=text)
    if not isinstance(data, dict):
        return RawPayload(text=text)
    return StructuredPayload(data=data)


class EventFrameDecoder:
    """Incremental decoder; feed it chunks, get back complete events.

    Partial lines are buffered as bytes until their newline arrives, so the
    output does not depend on where reads split the stream, including splits
    inside a multi-byte character.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._event_name = DEFAULT_EVENT

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume a chunk and return the events completed by it."""
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")

        events = []
        for raw_line in lines:
            event = self._process_line(raw_line.decode("utf-8", errors="replace"))
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        """Signal end of stream. An unterminated trailing line is dropped."""
        if self._buffer.strip():
            logger.debug(f"Dropping unterminated trailing line ({len(self._buffer)} bytes)")
        self._buffer = b""
        self._event_name = DEFAULT_EVENT

    def _process_line(self, line: str) -> StreamEvent | None:
        if not line.strip() or line.startswith(COMMENT_PREFIX):
            return None

        if line.startswith(EVENT_PREFIX):
            self._event_name = line[len(EVENT_PREFIX):].strip()
            return None

        if line.startswith(DATA_PREFIX):
            text = line[len(DATA_PREFIX):].strip()
            name = self._event_name
            self._event_name = DEFAULT_EVENT
            return StreamEvent(kind=EventKind(name), name=name, payload=parse_payload(text))

        # Unknown field names (id:, retry:, ...) carry nothing we use
        return None


def iter_events(chunks: Iterable[bytes | str]) -> Iterator[StreamEvent]:
    """Decode a synchronous chunk iterable."""
    decoder = EventFrameDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    decoder.close()


async def decode_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode an async byte stream lazily, one event at a time."""
    decoder = EventFrameDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    decoder.close()
