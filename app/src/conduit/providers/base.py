"""
Transport base classes: one transport per protocol family.

A transport turns a NativeRequest into a stream of StreamParts:

    parts = await transport.open(request)   # raises LLMError on a bad status
    async for part in parts:                # text, reasoning, tool input, finish
        ...
    await transport.aclose()

open() returns once the provider has answered, so retrying open() never
replays output. Iteration owns the HTTP response; closing the iterator
releases it.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator

import httpx

from conduit.llm.errors import LLMError
from conduit.llm.sse import DEFAULT_SSE_CONFIG, SSEConfig, SSEEvent, SSEEventType, parse_sse_stream
from conduit.llm.types import TokenUsage
from conduit.providers.profiles import ProviderProfile

if TYPE_CHECKING:
    from conduit.llm.request import NativeRequest

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0


class StreamPartType(str, Enum):
    TEXT_DELTA = "text_delta"
    REASONING_DELTA = "reasoning_delta"
    TOOL_INPUT_START = "tool_input_start"
    TOOL_INPUT_DELTA = "tool_input_delta"
    TOOL_INPUT_END = "tool_input_end"
    TOOL_CALL = "tool_call"
    ERROR = "error"
    FINISH = "finish"


@dataclass
class StreamPart:
    """
    One normalized unit of provider output.

    TOOL_CALL carries the complete argument text; families that stream
    arguments send START / DELTA / END first, families that deliver whole
    calls (Gemini) send TOOL_CALL alone. FINISH comes last, once.
    """

    type: StreamPartType
    text: str = ""
    id: str = ""
    name: str = ""
    arguments: str | None = None
    error: BaseException | None = None
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    response_id: str | None = None
    model_id: str | None = None

    @classmethod
    def text_delta(cls, text: str) -> StreamPart:
        return cls(type=StreamPartType.TEXT_DELTA, text=text)

    @classmethod
    def reasoning_delta(cls, text: str) -> StreamPart:
        return cls(type=StreamPartType.REASONING_DELTA, text=text)

    @classmethod
    def tool_input_start(cls, call_id: str, name: str) -> StreamPart:
        return cls(type=StreamPartType.TOOL_INPUT_START, id=call_id, name=name)

    @classmethod
    def tool_input_delta(cls, call_id: str, name: str, delta: str) -> StreamPart:
        return cls(type=StreamPartType.TOOL_INPUT_DELTA, id=call_id, name=name, text=delta)

    @classmethod
    def tool_input_end(cls, call_id: str) -> StreamPart:
        return cls(type=StreamPartType.TOOL_INPUT_END, id=call_id)

    @classmethod
    def tool_call(cls, call_id: str, name: str, arguments: str) -> StreamPart:
        return cls(type=StreamPartType.TOOL_CALL, id=call_id, name=name, arguments=arguments)

    @classmethod
    def finish(
        cls,
        finish_reason: str | None = None,
        usage: TokenUsage | None = None,
        response_id: str | None = None,
        model_id: str | None = None,
    ) -> StreamPart:
        return cls(
            type=StreamPartType.FINISH,
            finish_reason=finish_reason,
            usage=usage,
            response_id=response_id,
            model_id=model_id,
        )


class ProviderTransport(ABC):
    """Protocol-family transport interface."""

    def __init__(
        self,
        profile: ProviderProfile,
        api_key: str = "",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.profile = profile
        self.api_key = api_key
        self.timeout = timeout
        self.http_client = http_client

    @abstractmethod
    async def open(self, request: NativeRequest) -> AsyncIterator[StreamPart]:
        """Send the request; return an iterator over the response parts."""
        ...

    async def aclose(self) -> None:
        pass


class HTTPStreamTransport(ProviderTransport):
    """
    Shared httpx + SSE plumbing for the hand-rolled families.

    Subclasses implement translate(): SSE events in, StreamParts out.
    The client is owned (and closed) only when none was injected.
    """

    sse_config: SSEConfig = DEFAULT_SSE_CONFIG

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._owned_client: httpx.AsyncClient | None = None

    def _client(self) -> httpx.AsyncClient:
        if self.http_client is not None:
            return self.http_client
        if self._owned_client is None:
            self._owned_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=CONNECT_TIMEOUT)
            )
        return self._owned_client

    async def aclose(self) -> None:
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    async def open(self, request: NativeRequest) -> AsyncIterator[StreamPart]:
        client = self._client()
        auth_headers, auth_params = self.profile.auth_params(self.api_key)
        http_request = client.build_request(
            request.method,
            request.url,
            headers={"Content-Type": "application/json", **request.headers, **auth_headers},
            params={**request.params, **auth_params},
            json=request.body,
        )
        logger.debug(f"{request.method} {request.url} (provider={self.profile.id})")
        response = await client.send(http_request, stream=True)

        if response.status_code >= 400:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            raise LLMError.from_status(response.status_code, error_message(body))

        return self._iterate(response)

    async def _iterate(self, response: httpx.Response) -> AsyncIterator[StreamPart]:
        try:
            async for part in self.translate(self._events(response)):
                yield part
        finally:
            await response.aclose()

    async def _events(self, response: httpx.Response) -> AsyncIterator[SSEEvent]:
        async for event in parse_sse_stream(response.aiter_bytes(), self.sse_config):
            if event.type == SSEEventType.ERROR:
                raise event.exception or LLMError(str(event.data))
            yield event

    @abstractmethod
    def translate(self, events: AsyncIterator[SSEEvent]) -> AsyncIterator[StreamPart]:
        ...


def error_message(body: bytes | str) -> str:
    """Best human-readable message out of a provider error body."""
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text.strip()[:500]

    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        inner = data.get("error", data)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
        if isinstance(inner, str):
            return inner
        if data.get("message"):
            return str(data["message"])
    return text.strip()[:500]
