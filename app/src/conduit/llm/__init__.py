"""
LLM Package: provider-independent conversation model and streaming.

This package provides:
- ConversationMessage / ToolDefinition: what callers send in
- StreamEvent: canonical events published on llm:stream / llm:error / llm:done
- StreamingResult: the return value of StreamingService.generate()
- LLMError: the one error kind that leaves the package

The orchestrator itself lives in conduit.llm.streaming.
"""

from conduit.llm.errors import LLMError
from conduit.llm.types import (
    ConversationMessage,
    ImagePart,
    ImageSource,
    StreamEvent,
    StreamEventType,
    StreamingResult,
    TextPart,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    "LLMError",
    "ConversationMessage",
    "ImagePart",
    "ImageSource",
    "StreamEvent",
    "StreamEventType",
    "StreamingResult",
    "TextPart",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
]
