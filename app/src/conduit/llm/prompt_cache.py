"""
Prompt-cache annotation.

Anthropic caches the request prefix up to each `cache_control` marker.
The stable prefix of an agent conversation is the system prompt, the tool
list and every turn before the newest one, so markers go on:

- the last system block
- the last tool definition
- the last content block of the turn before the final turn

Anthropic allows at most four markers per request. Other families cache
implicitly and are left untouched.
"""

from __future__ import annotations

import logging
from typing import Any

from conduit.providers.profiles import ProtocolFamily, ProviderProfile

logger = logging.getLogger(__name__)

EPHEMERAL = {"type": "ephemeral"}
MAX_BREAKPOINTS = 4


def annotate_prompt_cache(
    profile: ProviderProfile,
    messages: list[dict[str, Any]],
    system: Any = None,
    tools: list[dict[str, Any]] | None = None,
) -> int:
    """Mark cache breakpoints in place. Returns the number of markers placed."""
    if profile.family != ProtocolFamily.ANTHROPIC:
        return 0

    placed = 0
    if isinstance(system, list) and system and isinstance(system[-1], dict):
        system[-1]["cache_control"] = dict(EPHEMERAL)
        placed += 1

    if tools and isinstance(tools[-1], dict):
        tools[-1]["cache_control"] = dict(EPHEMERAL)
        placed += 1

    if len(messages) >= 2 and placed < MAX_BREAKPOINTS:
        target = messages[-2]
        content = target.get("content")
        if isinstance(content, str) and content:
            target["content"] = [
                {"type": "text", "text": content, "cache_control": dict(EPHEMERAL)}
            ]
            placed += 1
        elif isinstance(content, list) and content and isinstance(content[-1], dict):
            content[-1]["cache_control"] = dict(EPHEMERAL)
            placed += 1

    logger.debug(f"Prompt cache: {placed} breakpoint(s)")
    return placed
