"""
Conduit Providers: provider profiles and one transport per protocol family.

Built-in profiles cover OpenAI, Anthropic and Gemini; anything else is a
custom profile described by configuration. Swap providers by changing config.
"""

from conduit.providers.base import ProviderTransport, StreamPart, StreamPartType
from conduit.providers.profiles import ProtocolFamily, ProviderProfile, build_profile
from conduit.providers.registry import get_transport

__all__ = [
    "ProviderTransport",
    "StreamPart",
    "StreamPartType",
    "ProtocolFamily",
    "ProviderProfile",
    "build_profile",
    "get_transport",
]
