"""
Streaming HTTP API: /v1/llm/generate as Server-Sent Events.

Each canonical channel becomes an SSE event name:

    event: llm:stream
    data: {"type": "text", "content": "Hel"}

    event: llm:done
    data: {"usage": {...}, "metadata": {...}}

Request body:
    {
      "config": {"provider": "anthropic", "model": "...", "maxTokens": 4096, ...},
      "messages": [{"role": "user", "content": "hello"}],
      "tools": [...],            # optional
      "system_prompt": "...",    # optional
      "active_tools": ["..."]    # optional
    }

A client that disconnects destroys the sink and aborts the call.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

import conduit.core.config as config_module
from conduit.core.config import LLMConfig
from conduit.core.credentials import CredentialStore, credentials as default_credentials
from conduit.llm.errors import LLMError
from conduit.llm.sink import QueueSink
from conduit.llm.streaming import StreamingService, TransportFactory
from conduit.providers.profiles import BUILTIN_PROFILES

logger = logging.getLogger(__name__)

# generate() tasks still winding down after their client disconnected
_abandoned_calls: set[asyncio.Task] = set()


def create_router(
    credential_store: CredentialStore | None = None,
    transport_factory: TransportFactory | None = None,
) -> APIRouter:
    """Create the streaming router; both arguments default to the process-wide ones."""

    router = APIRouter()
    store = credential_store or default_credentials

    @router.post("/v1/llm/generate", response_model=None)
    async def generate(request: Request):
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return _bad_request("Request body is not valid JSON")
        if not isinstance(body, dict):
            return _bad_request("Request body must be a JSON object")

        messages = body.get("messages", [])
        if not isinstance(messages, list):
            return _bad_request("messages must be an array")

        try:
            llm_config = LLMConfig.from_dict(body.get("config") or {}, base=config_module.config.llm)
        except (TypeError, ValueError) as e:
            return _bad_request(f"Invalid config: {e}")

        sink = QueueSink()
        abort = asyncio.Event()
        service = StreamingService(sink, credential_store=store, transport_factory=transport_factory)
        call = {
            "llm_config": llm_config,
            "messages": messages,
            "tools": body.get("tools"),
            "system_prompt": body.get("system_prompt") or body.get("systemPrompt"),
            "active_tools": body.get("active_tools") or body.get("activeTools"),
        }

        return StreamingResponse(
            _stream_events(service, sink, abort, call),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @router.get("/v1/llm/providers")
    async def list_providers() -> JSONResponse:
        """Built-in provider profiles."""
        return JSONResponse(
            {
                "providers": [
                    {
                        "id": profile.id,
                        "family": profile.family.value,
                        "base_url": profile.base_url,
                        "default_model": profile.default_model,
                        "supports_reasoning": profile.supports_reasoning,
                        "has_credentials": bool(store.get(profile.id)),
                    }
                    for profile in BUILTIN_PROFILES.values()
                ]
            }
        )

    @router.put("/v1/llm/credentials/{provider}")
    async def set_credentials(provider: str, request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return _bad_request("Request body is not valid JSON")
        api_key = (body.get("api_key") or body.get("apiKey")) if isinstance(body, dict) else None
        if not api_key:
            return _bad_request("api_key is required")
        store.set(provider, api_key)
        return JSONResponse({"status": "ok", "provider": provider})

    @router.delete("/v1/llm/credentials/{provider}")
    async def clear_credentials(provider: str) -> JSONResponse:
        store.clear(provider)
        return JSONResponse({"status": "ok", "provider": provider})

    return router


# ─── Streaming Response ──────────────────────────────────────────


async def _stream_events(
    service: StreamingService,
    sink: QueueSink,
    abort: asyncio.Event,
    call: dict[str, Any],
) -> AsyncGenerator[str, None]:
    """Run generate() in a task and relay the sink as SSE."""

    async def run() -> None:
        try:
            await service.generate(abort_signal=abort, **call)
        except LLMError as e:
            # Already published on llm:error
            logger.debug(f"generate() ended with {e.code}")
        finally:
            sink.close()

    task = asyncio.create_task(run())
    try:
        async for channel, payload in sink.events():
            yield _sse(channel, payload)
    finally:
        if not task.done():
            # Client went away mid-stream
            logger.info("Stream client disconnected, aborting call")
            sink.destroy()
            abort.set()
            _abandoned_calls.add(task)
            task.add_done_callback(_on_abandoned_call_done)


def _on_abandoned_call_done(task: asyncio.Task) -> None:
    _abandoned_calls.discard(task)
    if task.cancelled():
        logger.debug("Abandoned generate() call cancelled")
    elif task.exception():
        logger.error(
            f"Abandoned generate() call failed: {task.exception()}",
            exc_info=task.exception(),
        )


# ─── Helpers ─────────────────────────────────────────────────────


def _sse(channel: str, payload: dict[str, Any]) -> str:
    """Format one canonical event as an SSE frame."""
    return f"event: {channel}\ndata: {json.dumps(payload, default=str)}\n\n"


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        {"error": {"message": message, "type": "invalid_request_error"}},
        status_code=400,
    )
