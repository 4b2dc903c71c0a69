"""
Conduit Configuration: process defaults plus per-call LLM settings.

Reads from environment variables with sensible defaults.
A generate() call receives its own LLMConfig, usually built with
LLMConfig.from_dict() on top of these defaults, and never mutates it.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _optional_float(name: str) -> float | None:
    value = os.getenv(name, "")
    return float(value) if value else None


def _optional_int(name: str) -> int | None:
    value = os.getenv(name, "")
    return int(value) if value else None


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class LLMConfig:
    """Provider/model selection, generation and transport settings for one call."""

    provider: str = "openai"
    model: str = "gpt-4o"
    api_key: str = ""
    base_url: str = ""

    # Generation
    max_tokens: int = 8192
    temperature: float | None = 0.7
    top_p: float | None = None
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop_sequences: tuple[str, ...] = ()
    seed: int | None = None
    tool_choice: str = "auto"
    parallel_tool_calls: bool | None = None
    logit_bias: dict[str, float] | None = None

    # Extended reasoning
    enable_thinking: bool = False
    thinking_budget: int = 1024

    # Transport
    timeout: float = 120.0  # seconds, per attempt
    max_retries: int = 3
    headers: dict[str, str] = field(default_factory=dict)

    # Fully-custom provider description (see providers.profiles)
    custom: dict[str, Any] | None = None

    @classmethod
    def from_env(cls) -> LLMConfig:
        stop = os.getenv("CONDUIT_LLM_STOP", "")
        headers = os.getenv("CONDUIT_LLM_HEADERS", "")
        return cls(
            provider=os.getenv("CONDUIT_LLM_PROVIDER", "openai"),
            model=os.getenv("CONDUIT_LLM_MODEL", "gpt-4o"),
            api_key=os.getenv("CONDUIT_LLM_API_KEY", ""),
            base_url=os.getenv("CONDUIT_LLM_BASE_URL", ""),
            max_tokens=int(os.getenv("CONDUIT_LLM_MAX_TOKENS", "8192")),
            temperature=float(os.getenv("CONDUIT_LLM_TEMPERATURE", "0.7")),
            top_p=_optional_float("CONDUIT_LLM_TOP_P"),
            top_k=_optional_int("CONDUIT_LLM_TOP_K"),
            frequency_penalty=_optional_float("CONDUIT_LLM_FREQUENCY_PENALTY"),
            presence_penalty=_optional_float("CONDUIT_LLM_PRESENCE_PENALTY"),
            stop_sequences=tuple(s for s in stop.split(",") if s),
            seed=_optional_int("CONDUIT_LLM_SEED"),
            tool_choice=os.getenv("CONDUIT_LLM_TOOL_CHOICE", "auto"),
            enable_thinking=_env_bool("CONDUIT_LLM_ENABLE_THINKING"),
            thinking_budget=int(os.getenv("CONDUIT_LLM_THINKING_BUDGET", "1024")),
            timeout=float(os.getenv("CONDUIT_LLM_TIMEOUT", "120")),
            max_retries=int(os.getenv("CONDUIT_LLM_MAX_RETRIES", "3")),
            headers=json.loads(headers) if headers else {},
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: LLMConfig | None = None) -> LLMConfig:
        """Overlay a request payload onto defaults. Unknown keys are ignored.

        Accepts both snake_case and the camelCase spellings the desktop
        client sends (maxTokens, topP, enableThinking, ...).
        """
        base = base or config.llm
        known = {f.name for f in fields(cls)}
        overrides: dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = _CAMEL_ALIASES.get(key, key)
            if name not in known:
                continue
            if name == "stop_sequences" and value is not None:
                value = tuple(value)
            overrides[name] = value
        return replace(base, **overrides)


_CAMEL_ALIASES = {
    "apiKey": "api_key",
    "baseUrl": "base_url",
    "maxTokens": "max_tokens",
    "topP": "top_p",
    "topK": "top_k",
    "frequencyPenalty": "frequency_penalty",
    "presencePenalty": "presence_penalty",
    "stopSequences": "stop_sequences",
    "toolChoice": "tool_choice",
    "parallelToolCalls": "parallel_tool_calls",
    "logitBias": "logit_bias",
    "enableThinking": "enable_thinking",
    "thinkingBudget": "thinking_budget",
    "maxRetries": "max_retries",
    "customConfig": "custom",
}


@dataclass(frozen=True)
class RetryConfig:
    """Backoff settings for opening a provider stream."""

    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0

    @classmethod
    def from_env(cls) -> RetryConfig:
        return cls(
            initial_delay_ms=int(os.getenv("CONDUIT_RETRY_INITIAL_DELAY_MS", "1000")),
            max_delay_ms=int(os.getenv("CONDUIT_RETRY_MAX_DELAY_MS", "30000")),
            backoff_multiplier=float(os.getenv("CONDUIT_RETRY_MULTIPLIER", "2.0")),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Sidecar HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8765

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("CONDUIT_HOST", "127.0.0.1"),
            port=int(os.getenv("CONDUIT_PORT", "8765")),
        )


@dataclass(frozen=True)
class ConduitConfig:
    """Root configuration."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> ConduitConfig:
        return cls(
            llm=LLMConfig.from_env(),
            retry=RetryConfig.from_env(),
            server=ServerConfig.from_env(),
        )


# Singleton: import this wherever you need config
config = ConduitConfig.from_env()


def reload_config() -> ConduitConfig:
    """Re-read the environment and replace the module singleton."""
    global config
    config = ConduitConfig.from_env()
    return config
