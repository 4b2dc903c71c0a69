"""
Tool schema translation: unified ToolDefinition -> provider-native tools.

Pure functions. Schemas are passed through untouched; validating them is
the provider's job.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from conduit.llm.types import ToolDefinition
from conduit.providers.profiles import ProtocolFamily, ProviderProfile

logger = logging.getLogger(__name__)


def _coerce_tools(tools: Iterable[ToolDefinition | dict[str, Any]] | None) -> list[ToolDefinition]:
    result: list[ToolDefinition] = []
    for tool in tools or []:
        if isinstance(tool, ToolDefinition):
            result.append(tool)
        elif isinstance(tool, dict):
            result.append(ToolDefinition.from_dict(tool))
    return [t for t in result if t.name]


def translate_tools(
    tools: Iterable[ToolDefinition | dict[str, Any]] | None,
    profile: ProviderProfile,
    active_tools: Iterable[str] | None = None,
) -> list[dict[str, Any]]:
    """Native tool list for the profile's family; [] when there are none.

    active_tools, when given, restricts the result to those names.
    """
    definitions = _coerce_tools(tools)
    if active_tools is not None:
        allowed = set(active_tools)
        definitions = [t for t in definitions if t.name in allowed]
    if not definitions:
        return []

    family = profile.family
    if family == ProtocolFamily.ANTHROPIC:
        return [
            {"name": t.name, "description": t.description, "input_schema": t.parameters}
            for t in definitions
        ]
    if family == ProtocolFamily.GEMINI:
        return [
            {
                "functionDeclarations": [
                    {"name": t.name, "description": t.description, "parameters": t.parameters}
                    for t in definitions
                ]
            }
        ]
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            },
        }
        for t in definitions
    ]


def translate_tool_choice(choice: str | None, profile: ProviderProfile) -> Any:
    """'auto' | 'none' | 'required' | <tool name> -> native tool_choice value.

    None means "leave the field out".
    """
    if not choice:
        return None
    family = profile.family

    if family == ProtocolFamily.ANTHROPIC:
        if choice == "auto":
            return {"type": "auto"}
        if choice == "required":
            return {"type": "any"}
        if choice == "none":
            return {"type": "none"}
        return {"type": "tool", "name": choice}

    if family == ProtocolFamily.GEMINI:
        if choice in ("auto", "none"):
            return {"functionCallingConfig": {"mode": choice.upper()}}
        if choice == "required":
            return {"functionCallingConfig": {"mode": "ANY"}}
        return {"functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": [choice]}}

    if choice in ("auto", "none", "required"):
        return choice
    return {"type": "function", "function": {"name": choice}}
