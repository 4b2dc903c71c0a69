"""
Server-Sent Events decoder.

Handles:
- standard `data: ...` lines, with a configurable prefix
- `event: ...` lines (Anthropic-style named events)
- a configurable done marker, matched on a data payload or an event name;
  the event name `message_stop` always ends the stream
- lines split across chunk boundaries, including split UTF-8 sequences

Payload semantics are not interpreted here: a data line is JSON-decoded
when possible and otherwise passed through as the raw string.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

STOP_EVENT = "message_stop"


@dataclass(frozen=True)
class SSEConfig:
    data_prefix: str = "data: "
    done_marker: str = "[DONE]"


DEFAULT_SSE_CONFIG = SSEConfig()


class SSEEventType(str, Enum):
    DATA = "data"
    EVENT = "event"
    DONE = "done"
    ERROR = "error"


@dataclass
class SSEEvent:
    type: SSEEventType
    data: Any = None
    event_type: str | None = None  # name from an `event:` line
    raw: str | None = None
    exception: BaseException | None = None


def _strip_prefix(line: str, prefix: str) -> str | None:
    if line.startswith(prefix):
        return line[len(prefix):]
    # "data:{...}" is as valid as "data: {...}"
    bare = prefix.rstrip()
    if bare and bare != prefix and line.startswith(bare):
        return line[len(bare):].lstrip()
    return None


def parse_sse_line(line: str, config: SSEConfig = DEFAULT_SSE_CONFIG) -> SSEEvent | None:
    """Decode one complete line. Blank lines, comments and unknown fields -> None."""
    trimmed = line.strip()
    if not trimmed or trimmed.startswith(":"):
        return None

    event_name = _strip_prefix(trimmed, "event: ")
    if event_name is not None:
        event_name = event_name.strip()
        if event_name in (config.done_marker, STOP_EVENT):
            return SSEEvent(type=SSEEventType.DONE, event_type=event_name, raw=trimmed)
        return SSEEvent(type=SSEEventType.EVENT, event_type=event_name, raw=trimmed)

    payload = _strip_prefix(trimmed, config.data_prefix)
    if payload is None or not payload:
        return None

    if payload.strip() == config.done_marker:
        return SSEEvent(type=SSEEventType.DONE, raw=trimmed)

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        data = payload
    return SSEEvent(type=SSEEventType.DATA, data=data, raw=trimmed)


class SSEDecoder:
    """Incremental decoder: feed bytes, get events for every complete line."""

    def __init__(self, config: SSEConfig = DEFAULT_SSE_CONFIG):
        self.config = config
        self.finished = False
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes | str) -> list[SSEEvent]:
        if self.finished:
            return []
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer += text

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()  # incomplete tail

        events: list[SSEEvent] = []
        for line in lines:
            event = parse_sse_line(line, self.config)
            if event is None:
                continue
            events.append(event)
            if event.type == SSEEventType.DONE:
                self._finish()
                break
        return events

    def flush(self) -> list[SSEEvent]:
        """End of input: decode whatever is left without a trailing newline."""
        if self.finished:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        tail = self._buffer
        self._finish()
        event = parse_sse_line(tail, self.config)
        return [event] if event is not None else []

    def _finish(self) -> None:
        self.finished = True
        self._buffer = ""


async def parse_sse_stream(
    source: AsyncIterable[bytes],
    config: SSEConfig = DEFAULT_SSE_CONFIG,
) -> AsyncIterator[SSEEvent]:
    """
    Lazily decode a byte stream into SSE events.

    Stops reading the source as soon as the done marker is seen. A read
    failure yields a single ERROR event carrying the exception and ends
    the sequence.
    """
    decoder = SSEDecoder(config)
    try:
        async for chunk in source:
            for event in decoder.feed(chunk):
                yield event
            if decoder.finished:
                return
        for event in decoder.flush():
            yield event
    except Exception as exc:
        logger.warning(f"SSE read failed: {exc}")
        yield SSEEvent(type=SSEEventType.ERROR, data=str(exc), exception=exc)
