"""
Custom transport: a provider described entirely by its profile.

The request body comes from the profile's template (see
llm.request.fill_template). The response is read with field paths:

    choice   = get_by_path(chunk, choice_path)          # "choices[0]"
    delta    = get_by_path(choice, delta_path)          # "delta"
    content  = get_by_path(delta, content_field)        # "content"
    calls    = get_by_path(delta, tool_calls_field)     # "tool_calls"
    usage    = get_by_path(chunk, usage_path)           # "usage"

Tool calls are keyed by their index field (position when absent).
Argument objects (args_is_object) are serialized once at the end.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator

from conduit.llm.errors import LLMError
from conduit.llm.json_path import get_by_path
from conduit.llm.sse import SSEConfig, SSEEvent, SSEEventType
from conduit.llm.types import TokenUsage
from conduit.providers.base import HTTPStreamTransport, StreamPart, error_message
from conduit.providers.profiles import CustomResponseConfig

logger = logging.getLogger(__name__)


class CustomTransport(HTTPStreamTransport):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.response_config = self.profile.custom_response or CustomResponseConfig()

    @property
    def sse_config(self) -> SSEConfig:  # type: ignore[override]
        return self.response_config.sse

    async def translate(self, events: AsyncIterator[SSEEvent]) -> AsyncIterator[StreamPart]:
        rc = self.response_config
        tool_calls: dict[Any, dict[str, str]] = {}
        finish_reason: str | None = None
        usage: TokenUsage | None = None
        response_id: str | None = None
        model_id: str | None = None

        async for event in events:
            if event.type != SSEEventType.DATA:
                continue
            chunk = event.data
            if not isinstance(chunk, dict):
                logger.warning(f"Skipping non-JSON chunk from {self.profile.id}: {event.raw!r}")
                continue
            if chunk.get("error"):
                raise LLMError(error_message(json.dumps(chunk)))

            response_id = response_id or _as_str(get_by_path(chunk, rc.id_field))
            model_id = model_id or _as_str(get_by_path(chunk, rc.model_field))
            raw_usage = get_by_path(chunk, rc.usage_path)
            if isinstance(raw_usage, dict):
                usage = TokenUsage(
                    prompt_tokens=get_by_path(raw_usage, rc.prompt_tokens_field),
                    completion_tokens=get_by_path(raw_usage, rc.completion_tokens_field),
                    total_tokens=get_by_path(raw_usage, rc.total_tokens_field),
                )

            choice = get_by_path(chunk, rc.choice_path) if rc.choice_path else chunk
            if not isinstance(choice, dict):
                continue
            delta = get_by_path(choice, rc.delta_path) if rc.delta_path else choice

            if isinstance(delta, dict):
                if rc.reasoning_field:
                    reasoning = get_by_path(delta, rc.reasoning_field)
                    if isinstance(reasoning, str) and reasoning:
                        yield StreamPart.reasoning_delta(reasoning)

                content = get_by_path(delta, rc.content_field)
                if isinstance(content, str) and content:
                    yield StreamPart.text_delta(content)

                raw_calls = get_by_path(delta, rc.tool_calls_field)
                if isinstance(raw_calls, list):
                    for position, raw in enumerate(raw_calls):
                        if not isinstance(raw, dict):
                            continue
                        for part in self._tool_call_delta(raw, position, tool_calls):
                            yield part

            reason = get_by_path(choice, rc.finish_reason_field)
            if isinstance(reason, str) and reason:
                finish_reason = reason

        for entry in tool_calls.values():
            yield StreamPart.tool_input_end(entry["id"])
            yield StreamPart.tool_call(entry["id"], entry["name"], entry["arguments"] or "{}")

        yield StreamPart.finish(finish_reason, usage, response_id, model_id)

    def _tool_call_delta(
        self, raw: dict[str, Any], position: int, tool_calls: dict[Any, dict[str, str]]
    ) -> list[StreamPart]:
        rc = self.response_config
        index = get_by_path(raw, rc.tool_index_field)
        key = index if isinstance(index, int) else position
        call_id = _as_str(get_by_path(raw, rc.tool_id_field))
        name = _as_str(get_by_path(raw, rc.tool_name_field))
        args = get_by_path(raw, rc.tool_args_field)

        parts: list[StreamPart] = []
        entry = tool_calls.get(key)
        if entry is None:
            if not call_id:
                call_id = f"call_{uuid.uuid4().hex[:12]}" if rc.auto_generate_id else f"call_{key}"
            entry = {"id": call_id, "name": name or "", "arguments": ""}
            tool_calls[key] = entry
            parts.append(StreamPart.tool_input_start(entry["id"], entry["name"]))
        elif name and not entry["name"]:
            entry["name"] = name

        if rc.args_is_object or isinstance(args, dict):
            # Whole object each time; keep the latest
            if isinstance(args, dict):
                entry["arguments"] = json.dumps(args)
        elif isinstance(args, str) and args:
            entry["arguments"] += args
            parts.append(StreamPart.tool_input_delta(entry["id"], entry["name"], args))
        return parts


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)
