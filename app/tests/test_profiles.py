"""Tests for provider profiles and the transport registry."""

import pytest

from conduit.core.config import LLMConfig
from conduit.llm.messages import normalize
from conduit.providers.anthropic_stream import AnthropicTransport
from conduit.providers.base import ProviderTransport
from conduit.providers.custom_stream import CustomTransport
from conduit.providers.gemini_stream import GeminiTransport
from conduit.providers.openai_stream import OpenAITransport
from conduit.providers.profiles import (
    BUILTIN_PROFILES,
    AuthType,
    ProtocolFamily,
    ProviderProfile,
    SystemMessageMode,
    build_profile,
)
from conduit.providers.registry import get_transport


def test_transport_is_abstract():
    with pytest.raises(TypeError):
        ProviderTransport(BUILTIN_PROFILES["openai"])  # type: ignore


def test_builtin_families():
    assert BUILTIN_PROFILES["openai"].family == ProtocolFamily.OPENAI
    assert BUILTIN_PROFILES["anthropic"].system_mode == SystemMessageMode.PARAMETER
    assert BUILTIN_PROFILES["gemini"].url("gemini-2.5-pro").endswith(
        "/models/gemini-2.5-pro:streamGenerateContent"
    )


@pytest.mark.parametrize(
    "auth, expected",
    [
        ({"type": "bearer"}, ({"Authorization": "Bearer k"}, {})),
        ({"type": "api-key", "headerName": "api-key"}, ({"api-key": "k"}, {})),
        (
            {"type": "header", "headerName": "X-Auth", "headerTemplate": "Token {{apiKey}}"},
            ({"X-Auth": "Token k"}, {}),
        ),
        ({"type": "query", "queryParam": "token"}, ({}, {"token": "k"})),
        ({"type": "none"}, ({}, {})),
    ],
)
def test_auth_params(auth, expected):
    profile = ProviderProfile.from_dict({"baseUrl": "http://x", "auth": auth})
    assert profile.auth_params("k") == expected


def test_auth_params_without_key():
    assert BUILTIN_PROFILES["openai"].auth_params("") == ({}, {})


def test_custom_profile_from_camel_and_snake_case():
    camel = ProviderProfile.from_dict(
        {
            "id": "ollama",
            "baseUrl": "http://localhost:11434/v1/",
            "messageFormat": {"systemMessageMode": "first-user", "toolResultRole": "user"},
            "response": {
                "sse": {"dataPrefix": "data:", "doneMarker": "[END]"},
                "streaming": {"reasoningField": "reasoning_content"},
                "toolCall": {"autoGenerateId": True},
            },
        }
    )
    snake = ProviderProfile.from_dict(
        {
            "id": "ollama",
            "base_url": "http://localhost:11434/v1/",
            "message_format": {"system_message_mode": "first-user", "tool_result_role": "user"},
            "response": {
                "sse": {"data_prefix": "data:", "done_marker": "[END]"},
                "streaming": {"reasoning_field": "reasoning_content"},
                "tool_call": {"auto_generate_id": True},
            },
        }
    )
    assert camel == snake
    assert camel.family == ProtocolFamily.CUSTOM
    assert camel.system_mode == SystemMessageMode.FIRST_USER
    assert camel.url() == "http://localhost:11434/v1/chat/completions"
    assert camel.supports_reasoning is True
    assert camel.custom_response.sse.done_marker == "[END]"
    assert camel.custom_response.auto_generate_id is True
    assert camel.vision.enabled is False


def test_native_mode_reuses_builtin_profile():
    profile = ProviderProfile.from_dict(
        {"id": "proxy", "mode": "anthropic", "baseUrl": "https://proxy.local/v1"}
    )
    assert profile.family == ProtocolFamily.ANTHROPIC
    assert profile.id == "proxy"
    assert profile.url() == "https://proxy.local/v1/messages"
    assert profile.auth.type == AuthType.API_KEY


def test_native_mode_honors_message_format_and_vision():
    profile = ProviderProfile.from_dict(
        {
            "id": "strict-proxy",
            "mode": "openai",
            "baseUrl": "https://proxy.local/v1",
            "messageFormat": {"systemMessageMode": "first-user"},
            "vision": {"enabled": False},
        }
    )
    assert profile.family == ProtocolFamily.OPENAI
    assert profile.message_format.system_message_mode == SystemMessageMode.FIRST_USER
    assert profile.message_format.tool_result_role == "tool"
    assert profile.vision.enabled is False
    assert BUILTIN_PROFILES["openai"].message_format.system_message_mode == SystemMessageMode.MESSAGE

    result = normalize(
        [{"role": "system", "content": "S"}, {"role": "user", "content": "hi"}], None, profile
    )
    assert result.messages == [{"role": "user", "content": "S\n\nhi"}]


def test_native_mode_without_overrides_keeps_builtin_format():
    profile = ProviderProfile.from_dict({"mode": "gemini"})
    assert profile.message_format == BUILTIN_PROFILES["gemini"].message_format
    assert profile.vision == BUILTIN_PROFILES["gemini"].vision


def test_build_profile():
    assert build_profile(LLMConfig(provider="Gemini")).family == ProtocolFamily.GEMINI
    overridden = build_profile(LLMConfig(provider="openai", base_url="http://localhost:8000/v1"))
    assert overridden.base_url == "http://localhost:8000/v1"
    assert BUILTIN_PROFILES["openai"].base_url == "https://api.openai.com/v1"


def test_build_profile_custom_uses_provider_as_id():
    profile = build_profile(LLMConfig(provider="lmstudio", custom={"baseUrl": "http://x"}))
    assert profile.id == "lmstudio"
    assert profile.family == ProtocolFamily.CUSTOM


def test_build_profile_unknown_provider():
    with pytest.raises(ValueError, match="Unknown LLM provider"):
        build_profile(LLMConfig(provider="nope"))


@pytest.mark.parametrize(
    "family, expected",
    [
        ("openai", OpenAITransport),
        ("anthropic", AnthropicTransport),
        ("gemini", GeminiTransport),
    ],
)
def test_get_transport(family, expected):
    transport = get_transport(BUILTIN_PROFILES[family], api_key="k")
    assert isinstance(transport, expected)


def test_get_transport_custom():
    profile = ProviderProfile.from_dict({"baseUrl": "http://x"})
    assert isinstance(get_transport(profile), CustomTransport)
