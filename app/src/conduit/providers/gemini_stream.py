"""
Gemini transport: native generateContent streaming (`?alt=sse`).

Every SSE data line is a full GenerateContentResponse chunk. Parts marked
`thought: true` are reasoning; functionCall parts are whole tool calls,
so only TOOL_CALL is emitted for them.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator

from conduit.llm.errors import LLMError
from conduit.llm.sse import SSEEvent, SSEEventType
from conduit.llm.types import TokenUsage
from conduit.providers.base import HTTPStreamTransport, StreamPart

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}


class GeminiTransport(HTTPStreamTransport):
    async def translate(self, events: AsyncIterator[SSEEvent]) -> AsyncIterator[StreamPart]:
        finish_reason: str | None = None
        usage: TokenUsage | None = None
        response_id: str | None = None
        model_id: str | None = None
        saw_tool_call = False

        async for event in events:
            if event.type != SSEEventType.DATA:
                continue
            data = event.data
            if not isinstance(data, dict):
                logger.warning(f"Skipping non-JSON Gemini chunk: {event.raw!r}")
                continue

            if "error" in data:
                error = data["error"] or {}
                raise LLMError.from_status(
                    int(error.get("code") or 500), error.get("message", "Gemini stream error")
                )

            response_id = response_id or data.get("responseId")
            model_id = model_id or data.get("modelVersion")
            if data.get("usageMetadata"):
                usage = _usage(data["usageMetadata"])

            for candidate in (data.get("candidates") or [])[:1]:
                for part in (candidate.get("content") or {}).get("parts") or []:
                    if "functionCall" in part:
                        call = part["functionCall"] or {}
                        saw_tool_call = True
                        yield StreamPart.tool_call(
                            call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                            call.get("name", ""),
                            json.dumps(call.get("args") or {}),
                        )
                    elif part.get("text"):
                        if part.get("thought"):
                            yield StreamPart.reasoning_delta(part["text"])
                        else:
                            yield StreamPart.text_delta(part["text"])

                raw_reason = candidate.get("finishReason")
                if raw_reason:
                    finish_reason = _FINISH_REASONS.get(raw_reason, raw_reason.lower())

        if saw_tool_call and finish_reason in (None, "stop"):
            finish_reason = "tool_calls"
        yield StreamPart.finish(finish_reason, usage, response_id, model_id)


def _usage(raw: dict[str, Any]) -> TokenUsage:
    return TokenUsage(
        prompt_tokens=raw.get("promptTokenCount"),
        completion_tokens=raw.get("candidatesTokenCount"),
        total_tokens=raw.get("totalTokenCount"),
        cached_input_tokens=raw.get("cachedContentTokenCount"),
        reasoning_tokens=raw.get("thoughtsTokenCount"),
    )
