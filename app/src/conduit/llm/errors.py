"""
LLMError: the one error kind that leaves this package.

Transports raise whatever their stack raises (httpx, openai SDK, asyncio
timeouts) or an LLMError when the provider itself reports a failure.
The orchestrator normalizes everything once with LLMError.from_error().
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import openai

from conduit.llm.retry import RetryTimeoutError, is_retryable_error

# Stable codes the desktop client switches on
TIMEOUT = "timeout"
NETWORK_ERROR = "network_error"
RATE_LIMIT = "rate_limit"
AUTH_ERROR = "auth_error"
API_ERROR = "api_error"
STREAM_ERROR = "stream_error"
TOOL_CALL_PARSE_ERROR = "tool_call_parse_error"
ABORTED = "aborted"
UNKNOWN = "unknown"

_RETRYABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504, 529}


class LLMError(Exception):
    def __init__(
        self,
        message: str,
        code: str = UNKNOWN,
        retryable: bool = False,
        status: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.status = status
        # Output already streamed when the error ended the call
        self.partial_content = ""
        self.partial_reasoning = ""

    def __repr__(self) -> str:
        return f"LLMError(code={self.code!r}, retryable={self.retryable}, message={self.message!r})"

    def to_payload(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "retryable": self.retryable}

    @classmethod
    def from_status(cls, status: int, message: str) -> LLMError:
        """Provider answered with a non-success HTTP status."""
        if status in (401, 403):
            code = AUTH_ERROR
        elif status == 429:
            code = RATE_LIMIT
        else:
            code = API_ERROR
        return cls(
            f"HTTP {status}: {message}" if message else f"HTTP {status}",
            code=code,
            retryable=status in _RETRYABLE_STATUSES,
            status=status,
        )

    @classmethod
    def from_error(cls, error: BaseException) -> LLMError:
        if isinstance(error, LLMError):
            return error

        # openai.APITimeoutError subclasses APIConnectionError; check it first
        if isinstance(
            error,
            (openai.APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError, RetryTimeoutError),
        ):
            return cls(str(error) or "Request timed out", code=TIMEOUT, retryable=True)

        if isinstance(error, (openai.APIConnectionError, httpx.TransportError)):
            return cls(str(error) or "Network error", code=NETWORK_ERROR, retryable=True)

        if isinstance(error, openai.APIStatusError):
            return cls.from_status(error.status_code, _openai_message(error))

        if isinstance(error, httpx.HTTPStatusError):
            return cls.from_status(error.response.status_code, str(error))

        if isinstance(error, json.JSONDecodeError):
            return cls(f"Malformed stream payload: {error}", code=STREAM_ERROR)

        message = str(error) or type(error).__name__
        return cls(message, code=UNKNOWN, retryable=is_retryable_error(error))


def _openai_message(error: openai.APIStatusError) -> str:
    body = error.body
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    return error.message
