"""
Tool-call argument repair.

Models stream tool arguments as JSON text; a stream that ends early (token
limit, abort, provider hiccup) leaves that text truncated. Repair is a
best-effort completion of the tail, never a general JSON fixer:

    {"a": 1          -> {"a": 1}
    {"a": "x         -> {"a": "x"}
    {"a": [1,2       -> {"a": [1,2]}

Anything still unparseable after completion -> None.
"""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)

_CLOSERS = {"{": "}", "[": "]"}


def repair_tool_call_json(text: str | None) -> str | None:
    """Return parseable JSON text for a possibly truncated argument string."""
    if text is None:
        return None
    candidate = text.strip()
    if not candidate:
        return "{}"
    if _parses(candidate):
        return candidate

    stack: list[str] = []
    in_string = False
    escaped = False
    for char in candidate:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
        elif char in "}]":
            if not stack or _CLOSERS[stack[-1]] != char:
                logger.debug("Unbalanced closer in tool arguments, not repairable")
                return None
            stack.pop()

    repaired = candidate
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired += '"'

    repaired = repaired.rstrip()
    while repaired.endswith(","):
        repaired = repaired[:-1].rstrip()
    if repaired.endswith(":"):
        repaired += " null"

    for opener in reversed(stack):
        repaired += _CLOSERS[opener]

    if _parses(repaired):
        logger.debug(f"Repaired tool arguments ({len(text)} -> {len(repaired)} chars)")
        return repaired
    return None


def _parses(text: str) -> bool:
    try:
        json.loads(text)
    except json.JSONDecodeError:
        return False
    return True
