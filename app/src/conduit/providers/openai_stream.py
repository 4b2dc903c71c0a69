"""
OpenAI transport: chat completions streaming through the official SDK.

Also serves OpenAI-compatible endpoints (OpenRouter, vLLM, DeepSeek, ...)
via the profile's base_url. SDK retries are disabled; retry happens once,
around open(), in the orchestrator.

Tool calls arrive incrementally (index, then id + name, then argument
chunks); every call is closed with END + TOOL_CALL when the stream ends.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, AsyncIterator

from openai import AsyncOpenAI

from conduit.llm.types import TokenUsage
from conduit.providers.base import ProviderTransport, StreamPart

if TYPE_CHECKING:
    from conduit.llm.request import NativeRequest

logger = logging.getLogger(__name__)

# Local OpenAI-compatible servers usually ignore the key but the SDK wants one
PLACEHOLDER_API_KEY = "EMPTY"


class OpenAITransport(ProviderTransport):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.client: AsyncOpenAI | None = None

    def _sdk(self) -> AsyncOpenAI:
        if self.client is None:
            client_kwargs: dict[str, Any] = {
                "api_key": self.api_key or PLACEHOLDER_API_KEY,
                "base_url": self.profile.base_url,
                "max_retries": 0,
                "timeout": self.timeout,
            }
            if self.http_client is not None:
                client_kwargs["http_client"] = self.http_client
            self.client = AsyncOpenAI(**client_kwargs)
        return self.client

    async def open(self, request: NativeRequest) -> AsyncIterator[StreamPart]:
        kwargs = dict(request.body)
        if request.headers:
            kwargs["extra_headers"] = request.headers
        stream = await self._sdk().chat.completions.create(**kwargs)
        return self._iterate(stream)

    async def _iterate(self, stream) -> AsyncIterator[StreamPart]:
        # index -> {"id", "name", "arguments"}
        pending_tool_calls: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None
        usage: TokenUsage | None = None
        response_id: str | None = None
        model_id: str | None = None

        try:
            async for chunk in stream:
                response_id = response_id or chunk.id
                model_id = model_id or chunk.model
                if chunk.usage:
                    usage = _usage(chunk.usage)
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    # Non-standard fields used by DeepSeek / OpenRouter / vLLM
                    reasoning = getattr(delta, "reasoning_content", None) or getattr(
                        delta, "reasoning", None
                    )
                    if isinstance(reasoning, str) and reasoning:
                        yield StreamPart.reasoning_delta(reasoning)

                    if delta.content:
                        yield StreamPart.text_delta(delta.content)

                    for tc in delta.tool_calls or []:
                        idx = tc.index
                        entry = pending_tool_calls.get(idx)
                        if entry is None:
                            entry = {
                                "id": tc.id or f"call_{idx}",
                                "name": (tc.function.name or "") if tc.function else "",
                                "arguments": "",
                            }
                            pending_tool_calls[idx] = entry
                            yield StreamPart.tool_input_start(entry["id"], entry["name"])
                        elif tc.function and tc.function.name and not entry["name"]:
                            entry["name"] = tc.function.name

                        if tc.function and tc.function.arguments:
                            entry["arguments"] += tc.function.arguments
                            yield StreamPart.tool_input_delta(
                                entry["id"], entry["name"], tc.function.arguments
                            )

                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        finally:
            await stream.close()

        for idx in sorted(pending_tool_calls):
            entry = pending_tool_calls[idx]
            yield StreamPart.tool_input_end(entry["id"])
            yield StreamPart.tool_call(entry["id"], entry["name"], entry["arguments"])

        yield StreamPart.finish(finish_reason, usage, response_id, model_id)

    async def aclose(self) -> None:
        # An injected http_client belongs to the caller
        if self.client is not None and self.http_client is None:
            await self.client.close()
        self.client = None


def _usage(raw) -> TokenUsage:
    prompt_details = getattr(raw, "prompt_tokens_details", None)
    completion_details = getattr(raw, "completion_tokens_details", None)
    return TokenUsage(
        prompt_tokens=raw.prompt_tokens,
        completion_tokens=raw.completion_tokens,
        total_tokens=raw.total_tokens,
        cached_input_tokens=getattr(prompt_details, "cached_tokens", None),
        reasoning_tokens=getattr(completion_details, "reasoning_tokens", None),
    )
