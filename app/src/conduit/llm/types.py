"""
LLM Types: the provider-independent data model.

Inbound: ConversationMessage (+ parts, tool calls), ToolDefinition.
Outbound: StreamEvent on three channels, StreamingResult as the return
value of StreamingService.generate().

Everything here is transient: messages are owned upstream, events are
delivered once and never stored.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from conduit.llm.errors import LLMError

logger = logging.getLogger(__name__)

# Outbound channels
STREAM_CHANNEL = "llm:stream"
ERROR_CHANNEL = "llm:error"
DONE_CHANNEL = "llm:done"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ═══════════════════════════════════════════════════════════════════════════════
# CONVERSATION
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class TextPart:
    text: str
    type: str = "text"


@dataclass
class ImageSource:
    type: str  # "base64" | "url"
    data: str
    media_type: str | None = None


@dataclass
class ImagePart:
    source: ImageSource
    type: str = "image"


ContentPart = Union[TextPart, ImagePart]


def coerce_part(part: Any) -> ContentPart | None:
    """Turn a part object or dict into a typed part. Unknown shapes -> None."""
    if isinstance(part, (TextPart, ImagePart)):
        return part
    if not isinstance(part, dict):
        return None

    kind = part.get("type")
    if kind == "text":
        text = part.get("text")
        return TextPart(text=text if isinstance(text, str) else "")
    if kind == "image":
        source = part.get("source")
        if isinstance(source, ImageSource):
            return ImagePart(source=source)
        if isinstance(source, dict) and isinstance(source.get("data"), str):
            return ImagePart(
                source=ImageSource(
                    type=source.get("type") or "base64",
                    data=source["data"],
                    media_type=source.get("media_type"),
                )
            )
    return None


def coerce_content(content: Any) -> str | list[ContentPart]:
    """Plain text or a list of parts. Anything else degrades to ""."""
    if isinstance(content, str):
        return content
    if isinstance(content, (list, tuple)):
        parts = []
        for item in content:
            part = coerce_part(item)
            if part is not None:
                parts.append(part)
        return parts
    if content is not None:
        logger.debug(f"Malformed message content ({type(content).__name__}) -> empty text")
    return ""


def content_text(content: Any) -> str:
    """Text parts only, concatenated."""
    coerced = coerce_content(content)
    if isinstance(coerced, str):
        return coerced
    return "".join(p.text for p in coerced if isinstance(p, TextPart))


@dataclass
class ToolCall:
    """A tool call recorded on an assistant turn. Arguments stay as text."""

    id: str
    name: str
    arguments: str = "{}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        # Accepts the OpenAI {"id", "function": {"name", "arguments"}} shape
        # as well as a flat {"id", "name", "arguments"}.
        fn = data.get("function") if isinstance(data.get("function"), dict) else data
        arguments = fn.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=str(data.get("id") or ""),
            name=str(fn.get("name") or ""),
            arguments=arguments,
        )


@dataclass
class ConversationMessage:
    role: str
    content: Any = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMessage:
        calls = []
        for raw in data.get("tool_calls") or []:
            if isinstance(raw, ToolCall):
                calls.append(raw)
            elif isinstance(raw, dict):
                calls.append(ToolCall.from_dict(raw))
        return cls(
            role=str(data.get("role", "")),
            content=data.get("content", ""),
            tool_calls=calls,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


@dataclass
class ToolDefinition:
    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolDefinition:
        fn = data.get("function") if isinstance(data.get("function"), dict) else data
        return cls(
            name=fn.get("name", ""),
            description=fn.get("description", ""),
            parameters=fn.get("parameters")
            or fn.get("input_schema")
            or {"type": "object", "properties": {}},
        )


# ═══════════════════════════════════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class TokenUsage:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    cached_input_tokens: int | None = None
    reasoning_tokens: int | None = None

    def to_dict(self) -> dict[str, int]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    def is_empty(self) -> bool:
        return not self.to_dict()


@dataclass
class ResponseMetadata:
    id: str | None = None
    model_id: str | None = None
    timestamp: str | None = None  # ISO-8601
    finish_reason: str | None = None

    def to_dict(self) -> dict[str, str]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class StreamingResult:
    content: str
    reasoning: str | None = None
    usage: TokenUsage | None = None
    metadata: ResponseMetadata | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# CANONICAL EVENTS
# ═══════════════════════════════════════════════════════════════════════════════


class StreamEventType(str, Enum):
    TEXT = "text"
    REASONING = "reasoning"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL_DELTA_END = "tool_call_delta_end"
    TOOL_CALL_AVAILABLE = "tool_call_available"
    ERROR = "error"
    DONE = "done"


@dataclass
class StreamEvent:
    """
    One canonical event.

    Content events go to llm:stream; error and done have their own channels.
    Payloads:
      text / reasoning:        {type, content}
      tool_call_start:         {type, id, name}
      tool_call_delta:         {type, id, name, arguments_delta}
      tool_call_delta_end:     {type, id}
      tool_call_available:     {type, id, name, arguments}
      error (llm:error):       {message, code, retryable}
      done (llm:done):         {usage?, metadata?}
    """

    type: StreamEventType
    content: str = ""
    id: str = ""
    name: str = ""
    arguments_delta: str = ""
    arguments: dict[str, Any] | None = None
    error: LLMError | None = None
    usage: TokenUsage | None = None
    metadata: ResponseMetadata | None = None

    @classmethod
    def text(cls, content: str) -> StreamEvent:
        return cls(type=StreamEventType.TEXT, content=content)

    @classmethod
    def reasoning(cls, content: str) -> StreamEvent:
        return cls(type=StreamEventType.REASONING, content=content)

    @classmethod
    def tool_call_start(cls, call_id: str, name: str) -> StreamEvent:
        return cls(type=StreamEventType.TOOL_CALL_START, id=call_id, name=name)

    @classmethod
    def tool_call_delta(cls, call_id: str, name: str, delta: str) -> StreamEvent:
        return cls(
            type=StreamEventType.TOOL_CALL_DELTA,
            id=call_id,
            name=name,
            arguments_delta=delta,
        )

    @classmethod
    def tool_call_delta_end(cls, call_id: str) -> StreamEvent:
        return cls(type=StreamEventType.TOOL_CALL_DELTA_END, id=call_id)

    @classmethod
    def tool_call_available(
        cls, call_id: str, name: str, arguments: dict[str, Any]
    ) -> StreamEvent:
        return cls(
            type=StreamEventType.TOOL_CALL_AVAILABLE,
            id=call_id,
            name=name,
            arguments=arguments,
        )

    @classmethod
    def failure(cls, error: LLMError) -> StreamEvent:
        return cls(type=StreamEventType.ERROR, error=error)

    @classmethod
    def done(
        cls,
        usage: TokenUsage | None = None,
        metadata: ResponseMetadata | None = None,
    ) -> StreamEvent:
        return cls(type=StreamEventType.DONE, usage=usage, metadata=metadata)

    @property
    def channel(self) -> str:
        if self.type == StreamEventType.ERROR:
            return ERROR_CHANNEL
        if self.type == StreamEventType.DONE:
            return DONE_CHANNEL
        return STREAM_CHANNEL

    def to_payload(self) -> dict[str, Any]:
        kind = self.type
        if kind in (StreamEventType.TEXT, StreamEventType.REASONING):
            return {"type": kind.value, "content": self.content}
        if kind == StreamEventType.TOOL_CALL_START:
            return {"type": kind.value, "id": self.id, "name": self.name}
        if kind == StreamEventType.TOOL_CALL_DELTA:
            return {
                "type": kind.value,
                "id": self.id,
                "name": self.name,
                "arguments_delta": self.arguments_delta,
            }
        if kind == StreamEventType.TOOL_CALL_DELTA_END:
            return {"type": kind.value, "id": self.id}
        if kind == StreamEventType.TOOL_CALL_AVAILABLE:
            return {
                "type": kind.value,
                "id": self.id,
                "name": self.name,
                "arguments": self.arguments or {},
            }
        if kind == StreamEventType.ERROR:
            return self.error.to_payload() if self.error else {}

        payload: dict[str, Any] = {}
        if self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        if self.metadata is not None:
            payload["metadata"] = self.metadata.to_dict()
        return payload
