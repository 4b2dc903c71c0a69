"""
Streaming Service: single entry point for every LLM call.

    service = StreamingService(sink)
    result = await service.generate(llm_config, messages, tools=tools)

One call walks:

    building_request -> invoking -> streaming -> finalizing -> done
    (any state before done) -> error

- building_request: profile, normalized messages, tools, params
- invoking: open the provider stream (the only retried step)
- streaming: provider parts -> canonical events on the sink
- finalizing: aggregate text, reasoning, usage, metadata
- done / error: exactly one terminal event

Canonical events per tool call id always arrive as
start -> delta* -> delta_end -> available (at most once), whatever the
provider delivered. A call still open when the stream ends is closed
with the arguments streamed so far; an aborted call only gets its
delta_end. Malformed argument JSON gets one repair attempt; a
failure there is reported on the error channel and the stream goes on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

import httpx

import conduit.core.config as config_module
from conduit.core.config import LLMConfig
from conduit.core.credentials import CredentialStore, credentials as default_credentials
from conduit.core.logging import PhaseTimer
from conduit.core.metrics import metrics
from conduit.llm.errors import ABORTED, TOOL_CALL_PARSE_ERROR, LLMError
from conduit.llm.repair import repair_tool_call_json
from conduit.llm.request import build_request
from conduit.llm.retry import RetryPolicy, with_retry
from conduit.llm.sink import EventSink
from conduit.llm.thinking import ParsedText, ThinkingStrategy, ThinkingStrategyFactory
from conduit.llm.types import (
    ConversationMessage,
    ResponseMetadata,
    StreamEvent,
    StreamingResult,
    TokenUsage,
    ToolDefinition,
)
from conduit.providers.base import ProviderTransport, StreamPart, StreamPartType
from conduit.providers.profiles import ProviderProfile, build_profile
from conduit.providers.registry import get_transport

logger = logging.getLogger(__name__)

ABORTED_FINISH_REASON = "aborted"

TransportFactory = Callable[
    [ProviderProfile, str, float, "httpx.AsyncClient | None"], ProviderTransport
]


class StreamState(str, Enum):
    BUILDING_REQUEST = "building_request"
    INVOKING = "invoking"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


@dataclass
class _ToolTrack:
    id: str
    name: str
    arguments: str = ""
    deltas: int = 0
    ended: bool = False
    completed: bool = False
    available: bool = False


@dataclass
class _Accumulator:
    """Everything streamed so far in one call."""

    raw_text: str = ""  # provider text before strategy parsing
    content: str = ""  # text actually emitted as content
    reasoning: str = ""
    native_reasoning: bool = False
    tools: dict[str, _ToolTrack] = field(default_factory=dict)
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    response_id: str | None = None
    model_id: str | None = None
    first_output_at: float | None = None

    @property
    def has_output(self) -> bool:
        return bool(self.raw_text or self.reasoning or self.tools)


class StreamingService:
    """
    Runs generate() calls and publishes their canonical events to a sink.

    Args:
        sink: Destination for llm:stream / llm:error / llm:done events
        credential_store: API keys by provider id (process-wide store by default)
        transport_factory: Builds the transport for a profile (registry by default)
        http_client: Shared httpx client handed to every transport
    """

    def __init__(
        self,
        sink: EventSink,
        credential_store: CredentialStore | None = None,
        transport_factory: TransportFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.sink = sink
        self.credentials = credential_store or default_credentials
        self.transport_factory = transport_factory or get_transport
        self.http_client = http_client

    async def generate(
        self,
        llm_config: LLMConfig,
        messages: list[ConversationMessage | dict[str, Any]],
        tools: Iterable[ToolDefinition | dict[str, Any]] | None = None,
        system_prompt: str | None = None,
        abort_signal: asyncio.Event | None = None,
        active_tools: Iterable[str] | None = None,
    ) -> StreamingResult:
        request_id = uuid.uuid4().hex[:8]
        timer = PhaseTimer()
        acc = _Accumulator()
        strategy = ThinkingStrategyFactory.create(llm_config.model)
        strategy.reset()
        labels = {"provider": llm_config.provider, "model": llm_config.model}
        transport: ProviderTransport | None = None
        state = StreamState.BUILDING_REQUEST

        def enter(next_state: StreamState) -> None:
            nonlocal state
            timer.mark(state.value)
            state = next_state
            logger.debug(
                f"[{request_id}] -> {state.value}",
                extra={"request_id": request_id, "state": state.value},
            )

        try:
            profile = build_profile(llm_config)
            request = build_request(
                llm_config, profile, messages, tools, system_prompt, active_tools
            )
            api_key = llm_config.api_key or self.credentials.get(profile.id)
            transport = self.transport_factory(
                profile, api_key, llm_config.timeout, self.http_client
            )

            enter(StreamState.INVOKING)
            metrics.inc("llm.calls", labels=labels)
            logger.info(
                f"[{request_id}] LLM call: provider={profile.id} model={request.model}",
                extra={"request_id": request_id, "provider": profile.id, "model": request.model},
            )
            parts, aborted = await _await_or_abort(
                with_retry(lambda: transport.open(request), self._retry_policy(llm_config, labels)),
                abort_signal,
            )
            if aborted:
                raise LLMError("Request aborted", code=ABORTED)

            enter(StreamState.STREAMING)
            aborted = await self._consume(parts, acc, strategy, abort_signal, timer, labels)
            self._settle_tools(acc, labels, aborted)
            if aborted:
                if not acc.has_output:
                    raise LLMError("Request aborted", code=ABORTED)
                logger.info(f"[{request_id}] Aborted after partial output, finalizing")
                acc.finish_reason = ABORTED_FINISH_REASON

            enter(StreamState.FINALIZING)
            result = self._finalize(acc, strategy, request.model)
            self._emit(StreamEvent.done(result.usage, result.metadata))

            enter(StreamState.DONE)
            duration_ms = timer.total() * 1000
            metrics.observe("llm.duration_ms", duration_ms, labels=labels)
            logger.info(
                f"[{request_id}] LLM call done ({result.metadata.finish_reason}): {timer.summary()}",
                extra={"request_id": request_id, "duration_ms": round(duration_ms, 1)},
            )
            return result

        except Exception as exc:
            error = LLMError.from_error(exc)
            error.partial_content = acc.content
            error.partial_reasoning = acc.reasoning
            failed_in = state
            enter(StreamState.ERROR)
            metrics.inc("llm.errors", labels={**labels, "code": error.code})
            logger.error(
                f"[{request_id}] LLM error in {failed_in.value} [{error.code}]: {error.message}",
                exc_info=error.code != ABORTED,
                extra={"request_id": request_id, "code": error.code},
            )
            self._emit(StreamEvent.failure(error))
            if error is exc:
                raise
            raise error from exc

        finally:
            if transport is not None:
                await transport.aclose()

    # ─── Streaming ───────────────────────────────────────────────

    async def _consume(
        self,
        parts,
        acc: _Accumulator,
        strategy: ThinkingStrategy,
        abort_signal: asyncio.Event | None,
        timer: PhaseTimer,
        labels: dict[str, str],
    ) -> bool:
        """Drain the part stream. Returns True when aborted."""
        iterator = parts.__aiter__()
        aborted = False
        try:
            while True:
                try:
                    part, aborted = await _await_or_abort(iterator.__anext__(), abort_signal)
                except StopAsyncIteration:
                    break
                if aborted:
                    break
                if acc.first_output_at is None and part.type != StreamPartType.FINISH:
                    acc.first_output_at = timer.total()
                    metrics.observe("llm.ttft_ms", acc.first_output_at * 1000, labels=labels)
                self._handle_part(part, acc, strategy, labels)
        finally:
            if hasattr(iterator, "aclose"):
                await iterator.aclose()

        if strategy.has_custom_parser and not acc.native_reasoning:
            self._emit_parsed(strategy.flush(), acc)
        return aborted

    def _handle_part(
        self,
        part: StreamPart,
        acc: _Accumulator,
        strategy: ThinkingStrategy,
        labels: dict[str, str],
    ) -> None:
        kind = part.type

        if kind == StreamPartType.TEXT_DELTA:
            if not part.text:
                return
            acc.raw_text += part.text
            if strategy.has_custom_parser and not acc.native_reasoning:
                self._emit_parsed(strategy.parse_stream_text(part.text), acc)
            else:
                acc.content += part.text
                self._emit(StreamEvent.text(part.text))

        elif kind == StreamPartType.REASONING_DELTA:
            if not part.text:
                return
            if not acc.native_reasoning:
                # Native reasoning wins; release whatever the tag parser held back
                acc.native_reasoning = True
                if strategy.has_custom_parser:
                    self._emit_parsed(strategy.flush(), acc)
            acc.reasoning += part.text
            self._emit(StreamEvent.reasoning(part.text))

        elif kind == StreamPartType.TOOL_INPUT_START:
            self._tool_track(part.id, part.name, acc)

        elif kind == StreamPartType.TOOL_INPUT_DELTA:
            track = self._tool_track(part.id, part.name, acc)
            if track.ended:
                logger.debug(f"Ignoring argument delta after end for tool call {part.id}")
                return
            if part.text:
                track.deltas += 1
                track.arguments += part.text
                self._emit(StreamEvent.tool_call_delta(track.id, track.name, part.text))

        elif kind == StreamPartType.TOOL_INPUT_END:
            self._end_tool(self._tool_track(part.id, part.name, acc))

        elif kind == StreamPartType.TOOL_CALL:
            self._complete_tool(part, acc, labels)

        elif kind == StreamPartType.ERROR:
            raise part.error or LLMError("Provider reported an error")

        elif kind == StreamPartType.FINISH:
            acc.finish_reason = part.finish_reason or acc.finish_reason
            acc.usage = part.usage or acc.usage
            acc.response_id = part.response_id or acc.response_id
            acc.model_id = part.model_id or acc.model_id

    def _emit_parsed(self, parsed: ParsedText, acc: _Accumulator) -> None:
        if parsed.thinking:
            acc.reasoning += parsed.thinking
            self._emit(StreamEvent.reasoning(parsed.thinking))
        if parsed.content:
            acc.content += parsed.content
            self._emit(StreamEvent.text(parsed.content))

    # ─── Tool calls ──────────────────────────────────────────────

    def _tool_track(self, call_id: str, name: str, acc: _Accumulator) -> _ToolTrack:
        """Track for call_id, emitting tool_call_start the first time it is seen."""
        track = acc.tools.get(call_id)
        if track is None:
            track = _ToolTrack(id=call_id, name=name)
            acc.tools[call_id] = track
            self._emit(StreamEvent.tool_call_start(call_id, name))
        elif name and not track.name:
            track.name = name
        return track

    def _end_tool(self, track: _ToolTrack) -> None:
        if not track.ended:
            track.ended = True
            self._emit(StreamEvent.tool_call_delta_end(track.id))

    def _complete_tool(self, part: StreamPart, acc: _Accumulator, labels: dict[str, str]) -> None:
        track = self._tool_track(part.id, part.name, acc)
        if track.available:
            logger.debug(f"Duplicate tool call {part.id} ignored")
            return
        track.completed = True

        arguments_text = part.arguments or ""
        if not track.deltas and not track.ended and arguments_text:
            # Whole call delivered at once: give the UI its single delta
            track.deltas = 1
            self._emit(StreamEvent.tool_call_delta(track.id, track.name, arguments_text))
        self._end_tool(track)

        arguments = _parse_arguments(arguments_text)
        if arguments is None:
            repaired = repair_tool_call_json(arguments_text)
            if repaired is not None:
                arguments = _parse_arguments(repaired)
            if arguments is not None:
                metrics.inc("llm.tool_repairs", labels=labels)
                logger.warning(f"Repaired malformed arguments for tool {track.name} ({track.id})")

        if arguments is None:
            logger.warning(
                f"Unparseable arguments for tool {track.name} ({track.id}): {arguments_text[:100]}"
            )
            self._emit(
                StreamEvent.failure(
                    LLMError(
                        f"Failed to parse arguments for tool call {track.name} ({track.id})",
                        code=TOOL_CALL_PARSE_ERROR,
                    )
                )
            )
            return

        track.available = True
        self._emit(StreamEvent.tool_call_available(track.id, track.name, arguments))

    def _settle_tools(self, acc: _Accumulator, labels: dict[str, str], aborted: bool) -> None:
        """Close tool calls the provider left open before the stream ended."""
        for track in acc.tools.values():
            if track.completed:
                continue
            if aborted:
                self._end_tool(track)
                continue
            logger.warning(f"Tool call {track.name} ({track.id}) was never completed by the provider")
            self._complete_tool(
                StreamPart.tool_call(track.id, track.name, track.arguments), acc, labels
            )

    # ─── Finalize / emit ─────────────────────────────────────────

    def _finalize(
        self, acc: _Accumulator, strategy: ThinkingStrategy, requested_model: str
    ) -> StreamingResult:
        content = acc.content
        reasoning = acc.reasoning
        if strategy.has_custom_parser and not acc.native_reasoning:
            parsed = strategy.extract_thinking(acc.raw_text)
            content = parsed.content
            if parsed.thinking:
                reasoning = parsed.thinking

        metadata = ResponseMetadata(
            id=acc.response_id,
            model_id=acc.model_id or requested_model,
            timestamp=datetime.now(timezone.utc).isoformat(),
            finish_reason=acc.finish_reason,
        )
        return StreamingResult(
            content=content,
            reasoning=reasoning or None,
            usage=acc.usage,
            metadata=metadata,
        )

    def _emit(self, event: StreamEvent) -> None:
        if self.sink.is_destroyed():
            return
        try:
            self.sink.send(event.channel, event.to_payload())
        except Exception:
            logger.warning(f"Sink rejected {event.type.value} event", exc_info=True)

    def _retry_policy(self, llm_config: LLMConfig, labels: dict[str, str]) -> RetryPolicy:
        retry_config = config_module.config.retry

        def on_retry(attempt: int, error: BaseException, delay_ms: float) -> None:
            metrics.inc("llm.retries", labels=labels)

        return RetryPolicy(
            max_retries=llm_config.max_retries,
            initial_delay_ms=retry_config.initial_delay_ms,
            max_delay_ms=retry_config.max_delay_ms,
            backoff_multiplier=retry_config.backoff_multiplier,
            timeout_ms=llm_config.timeout * 1000 if llm_config.timeout else None,
            is_retryable=lambda error: LLMError.from_error(error).retryable,
            on_retry=on_retry,
        )


def _parse_arguments(text: str) -> dict[str, Any] | None:
    if not text.strip():
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


async def _await_or_abort(awaitable, abort_signal: asyncio.Event | None) -> tuple[Any, bool]:
    """
    Await unless abort_signal fires first.

    Returns (result, False), or (None, True) when aborted; the pending
    awaitable is cancelled in that case.
    """
    if abort_signal is None:
        return await awaitable, False

    if abort_signal.is_set():
        if hasattr(awaitable, "close"):
            awaitable.close()
        return None, True

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort_signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task.done():
        return task.result(), False

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    return None, True
