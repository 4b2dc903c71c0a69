"""
Anthropic transport: Messages API streaming over httpx + SSE.

Event flow:
    message_start -> (content_block_start -> content_block_delta* ->
    content_block_stop)* -> message_delta -> message_stop

Content blocks are text, thinking or tool_use. tool_use blocks stream
their input as input_json_delta fragments. An `error` event is terminal.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from conduit.llm.errors import API_ERROR, RATE_LIMIT, LLMError
from conduit.llm.sse import SSEEvent, SSEEventType
from conduit.llm.types import TokenUsage
from conduit.providers.base import HTTPStreamTransport, StreamPart

logger = logging.getLogger(__name__)

_RETRYABLE_ERROR_TYPES = {"overloaded_error", "rate_limit_error", "api_error"}


class AnthropicTransport(HTTPStreamTransport):
    async def translate(self, events: AsyncIterator[SSEEvent]) -> AsyncIterator[StreamPart]:
        blocks: dict[int, dict[str, Any]] = {}
        usage = TokenUsage()
        finish_reason: str | None = None
        response_id: str | None = None
        model_id: str | None = None

        async for event in events:
            if event.type != SSEEventType.DATA:
                continue
            data = event.data
            if not isinstance(data, dict):
                logger.warning(f"Skipping non-JSON Anthropic event: {event.raw!r}")
                continue

            kind = data.get("type")
            if kind == "message_start":
                message = data.get("message") or {}
                response_id = message.get("id")
                model_id = message.get("model")
                _merge_usage(usage, message.get("usage") or {})

            elif kind == "content_block_start":
                index = data.get("index", 0)
                block = data.get("content_block") or {}
                blocks[index] = {
                    "type": block.get("type"),
                    "id": block.get("id", ""),
                    "name": block.get("name", ""),
                    "arguments": "",
                }
                if block.get("type") == "tool_use":
                    yield StreamPart.tool_input_start(block.get("id", ""), block.get("name", ""))
                elif block.get("type") == "text" and block.get("text"):
                    yield StreamPart.text_delta(block["text"])
                elif block.get("type") == "thinking" and block.get("thinking"):
                    yield StreamPart.reasoning_delta(block["thinking"])

            elif kind == "content_block_delta":
                delta = data.get("delta") or {}
                delta_type = delta.get("type")
                if delta_type == "text_delta" and delta.get("text"):
                    yield StreamPart.text_delta(delta["text"])
                elif delta_type == "thinking_delta" and delta.get("thinking"):
                    yield StreamPart.reasoning_delta(delta["thinking"])
                elif delta_type == "input_json_delta":
                    block = blocks.get(data.get("index", 0))
                    fragment = delta.get("partial_json") or ""
                    if block is None or not fragment:
                        continue
                    block["arguments"] += fragment
                    yield StreamPart.tool_input_delta(block["id"], block["name"], fragment)

            elif kind == "content_block_stop":
                block = blocks.pop(data.get("index", 0), None)
                if block and block["type"] == "tool_use":
                    yield StreamPart.tool_input_end(block["id"])
                    yield StreamPart.tool_call(block["id"], block["name"], block["arguments"] or "{}")

            elif kind == "message_delta":
                delta = data.get("delta") or {}
                finish_reason = delta.get("stop_reason") or finish_reason
                _merge_usage(usage, data.get("usage") or {})

            elif kind == "error":
                raise _stream_error(data.get("error") or {})

        # Stream ended without content_block_stop for these
        for index in sorted(blocks):
            block = blocks[index]
            if block["type"] == "tool_use":
                logger.warning(f"Anthropic stream ended inside tool_use block {block['id']}")
                yield StreamPart.tool_input_end(block["id"])
                yield StreamPart.tool_call(block["id"], block["name"], block["arguments"] or "{}")

        yield StreamPart.finish(
            finish_reason,
            None if usage.is_empty() else usage,
            response_id,
            model_id,
        )


def _merge_usage(usage: TokenUsage, raw: dict[str, Any]) -> None:
    if raw.get("input_tokens") is not None:
        usage.prompt_tokens = raw["input_tokens"]
    if raw.get("output_tokens") is not None:
        usage.completion_tokens = raw["output_tokens"]
    if raw.get("cache_read_input_tokens") is not None:
        usage.cached_input_tokens = raw["cache_read_input_tokens"]
    if usage.prompt_tokens is not None and usage.completion_tokens is not None:
        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens


def _stream_error(error: dict[str, Any]) -> LLMError:
    error_type = error.get("type", "")
    message = error.get("message") or error_type or "Anthropic stream error"
    return LLMError(
        message,
        code=RATE_LIMIT if error_type == "rate_limit_error" else API_ERROR,
        retryable=error_type in _RETRYABLE_ERROR_TYPES,
    )
