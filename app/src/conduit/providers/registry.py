"""
Transport Registry: factory returning the transport for a profile's family.

Add a new family? Just add an elif.
"""

from __future__ import annotations

import httpx

from conduit.providers.base import ProviderTransport
from conduit.providers.profiles import ProtocolFamily, ProviderProfile


def get_transport(
    profile: ProviderProfile,
    api_key: str = "",
    timeout: float = 120.0,
    http_client: httpx.AsyncClient | None = None,
) -> ProviderTransport:
    family = profile.family
    if family == ProtocolFamily.OPENAI:
        from conduit.providers.openai_stream import OpenAITransport

        return OpenAITransport(profile, api_key, timeout, http_client)
    elif family == ProtocolFamily.ANTHROPIC:
        from conduit.providers.anthropic_stream import AnthropicTransport

        return AnthropicTransport(profile, api_key, timeout, http_client)
    elif family == ProtocolFamily.GEMINI:
        from conduit.providers.gemini_stream import GeminiTransport

        return GeminiTransport(profile, api_key, timeout, http_client)
    elif family == ProtocolFamily.CUSTOM:
        from conduit.providers.custom_stream import CustomTransport

        return CustomTransport(profile, api_key, timeout, http_client)
    raise ValueError(f"Unknown protocol family: {family}")
