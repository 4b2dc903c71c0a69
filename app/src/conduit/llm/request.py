"""
Request builder: one generate() call -> one provider-native request.

Runs normalization, tool translation, generation parameters, the
extended-reasoning toggle and prompt-cache annotation. Credentials are
not part of the request; transports add them when sending.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from conduit.core.config import LLMConfig
from conduit.llm.messages import NormalizedRequest, normalize
from conduit.llm.prompt_cache import annotate_prompt_cache
from conduit.llm.tools import translate_tool_choice, translate_tools
from conduit.llm.types import ConversationMessage, ToolDefinition
from conduit.providers.profiles import ProtocolFamily, ProviderProfile

logger = logging.getLogger(__name__)

ANTHROPIC_MIN_THINKING_BUDGET = 1024
OPENAI_REASONING_EFFORT = "medium"

_WHOLE_PLACEHOLDER = re.compile(r"^\{\{(\w+)\}\}$")
_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass
class NativeRequest:
    family: ProtocolFamily
    url: str
    body: dict[str, Any]
    model: str = ""
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


def build_request(
    llm_config: LLMConfig,
    profile: ProviderProfile,
    messages: list[ConversationMessage | dict[str, Any]],
    tools: Iterable[ToolDefinition | dict[str, Any]] | None = None,
    system_prompt: str | None = None,
    active_tools: Iterable[str] | None = None,
) -> NativeRequest:
    model = llm_config.model or profile.default_model
    normalized = normalize(messages, system_prompt, profile)
    native_tools = translate_tools(tools, profile, active_tools)

    family = profile.family
    if family == ProtocolFamily.OPENAI:
        body = _openai_body(llm_config, profile, model, normalized, native_tools)
    elif family == ProtocolFamily.ANTHROPIC:
        body = _anthropic_body(llm_config, profile, model, normalized, native_tools)
    elif family == ProtocolFamily.GEMINI:
        body = _gemini_body(llm_config, profile, normalized, native_tools)
    elif family == ProtocolFamily.CUSTOM:
        body = _custom_body(llm_config, profile, model, normalized, native_tools)
    else:
        raise ValueError(f"Unsupported protocol family: {family}")

    headers = {**profile.headers, **llm_config.headers}
    request = NativeRequest(
        family=family,
        url=profile.url(model),
        body=body,
        model=model,
        method=profile.custom_request.method if profile.custom_request else "POST",
        headers=headers,
        params={"alt": "sse"} if family == ProtocolFamily.GEMINI else {},
    )
    logger.debug(
        f"Built {family.value} request: model={model} messages={len(normalized.messages)} "
        f"tools={len(native_tools)}"
    )
    return request


def _set_if(body: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        body[key] = value


# ═══════════════════════════════════════════════════════════════════════════════
# FAMILY BODIES
# ═══════════════════════════════════════════════════════════════════════════════


def _openai_body(
    cfg: LLMConfig,
    profile: ProviderProfile,
    model: str,
    normalized: NormalizedRequest,
    tools: list[dict[str, Any]],
) -> dict[str, Any]:
    """Keyword arguments for client.chat.completions.create()."""
    messages = normalized.messages
    if normalized.system:
        messages = [{"role": "system", "content": normalized.system}] + messages

    body: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": cfg.max_tokens,
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    _set_if(body, "temperature", cfg.temperature)
    _set_if(body, "top_p", cfg.top_p)
    _set_if(body, "frequency_penalty", cfg.frequency_penalty)
    _set_if(body, "presence_penalty", cfg.presence_penalty)
    _set_if(body, "seed", cfg.seed)
    _set_if(body, "logit_bias", cfg.logit_bias)
    if cfg.stop_sequences:
        body["stop"] = list(cfg.stop_sequences)

    if tools:
        body["tools"] = tools
        _set_if(body, "tool_choice", translate_tool_choice(cfg.tool_choice, profile))
        _set_if(body, "parallel_tool_calls", cfg.parallel_tool_calls)

    if cfg.enable_thinking:
        body["reasoning_effort"] = OPENAI_REASONING_EFFORT
    if cfg.top_k is not None:
        # Not part of the OpenAI schema; compatible servers read it from the body
        body["extra_body"] = {"top_k": cfg.top_k}
    return body


def _anthropic_body(
    cfg: LLMConfig,
    profile: ProviderProfile,
    model: str,
    normalized: NormalizedRequest,
    tools: list[dict[str, Any]],
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": model,
        "messages": normalized.messages,
        "max_tokens": cfg.max_tokens,
        "stream": True,
    }
    if normalized.system:
        body["system"] = normalized.system
    if cfg.stop_sequences:
        body["stop_sequences"] = list(cfg.stop_sequences)
    if tools:
        body["tools"] = tools
        _set_if(body, "tool_choice", translate_tool_choice(cfg.tool_choice, profile))

    if cfg.enable_thinking:
        budget = max(cfg.thinking_budget, ANTHROPIC_MIN_THINKING_BUDGET)
        body["thinking"] = {"type": "enabled", "budget_tokens": budget}
        # budget_tokens must stay below max_tokens
        if body["max_tokens"] <= budget:
            body["max_tokens"] = budget + cfg.max_tokens
        # sampling parameters are rejected while thinking is enabled
    else:
        _set_if(body, "temperature", cfg.temperature)
        _set_if(body, "top_p", cfg.top_p)
        _set_if(body, "top_k", cfg.top_k)

    annotate_prompt_cache(profile, body["messages"], body.get("system"), body.get("tools"))
    return body


def _gemini_body(
    cfg: LLMConfig,
    profile: ProviderProfile,
    normalized: NormalizedRequest,
    tools: list[dict[str, Any]],
) -> dict[str, Any]:
    body: dict[str, Any] = {"contents": normalized.messages}
    if normalized.system:
        body["systemInstruction"] = normalized.system
    if tools:
        body["tools"] = tools
        _set_if(body, "toolConfig", translate_tool_choice(cfg.tool_choice, profile))

    generation: dict[str, Any] = {"maxOutputTokens": cfg.max_tokens}
    _set_if(generation, "temperature", cfg.temperature)
    _set_if(generation, "topP", cfg.top_p)
    _set_if(generation, "topK", cfg.top_k)
    _set_if(generation, "seed", cfg.seed)
    _set_if(generation, "presencePenalty", cfg.presence_penalty)
    _set_if(generation, "frequencyPenalty", cfg.frequency_penalty)
    if cfg.stop_sequences:
        generation["stopSequences"] = list(cfg.stop_sequences)
    if cfg.enable_thinking:
        generation["thinkingConfig"] = {
            "includeThoughts": True,
            "thinkingBudget": cfg.thinking_budget,
        }
    body["generationConfig"] = generation
    return body


def _custom_body(
    cfg: LLMConfig,
    profile: ProviderProfile,
    model: str,
    normalized: NormalizedRequest,
    tools: list[dict[str, Any]],
) -> dict[str, Any]:
    request_config = profile.custom_request
    if request_config is None:
        raise ValueError(f"Custom provider {profile.id!r} has no request configuration")

    values: dict[str, Any] = {
        "model": model,
        "messages": normalized.messages,
        "system": normalized.system,
        "tools": tools or None,
        "tool_choice": translate_tool_choice(cfg.tool_choice, profile) if tools else None,
        "max_tokens": cfg.max_tokens,
        "temperature": cfg.temperature,
        "top_p": cfg.top_p,
        "top_k": cfg.top_k,
        "frequency_penalty": cfg.frequency_penalty,
        "presence_penalty": cfg.presence_penalty,
        "stop": list(cfg.stop_sequences) or None,
        "seed": cfg.seed,
    }
    body = fill_template(request_config.body_template, values)
    if not isinstance(body, dict):
        raise ValueError(f"Custom provider {profile.id!r} body template must be an object")

    if cfg.enable_thinking and request_config.thinking_params:
        body.update(fill_template(request_config.thinking_params, values))
    if normalized.system and "{{system}}" not in str(request_config.body_template):
        logger.debug(f"Custom provider {profile.id!r} template has no {{{{system}}}} slot")
    return body


_MISSING = object()


def fill_template(template: Any, values: dict[str, Any]) -> Any:
    """
    Substitute {{name}} placeholders in a JSON template.

    A string that is exactly one placeholder takes the value with its type
    (lists stay lists); an object key whose placeholder resolves to None is
    dropped. Placeholders inside longer strings are substituted as text.
    """
    filled = _fill(template, values)
    return None if filled is _MISSING else filled


def _fill(template: Any, values: dict[str, Any]) -> Any:
    if isinstance(template, str):
        whole = _WHOLE_PLACEHOLDER.match(template.strip())
        if whole and whole.group(1) in values:
            value = values[whole.group(1)]
            return _MISSING if value is None else copy.deepcopy(value)
        return _PLACEHOLDER.sub(
            lambda m: _inline(values.get(m.group(1), m.group(0))), template
        )
    if isinstance(template, dict):
        result: dict[str, Any] = {}
        for key, value in template.items():
            filled = _fill(value, values)
            if filled is not _MISSING:
                result[key] = filled
        return result
    if isinstance(template, list):
        return [item for item in (_fill(v, values) for v in template) if item is not _MISSING]
    return copy.deepcopy(template)


def _inline(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
