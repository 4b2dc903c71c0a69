"""
Dotted/bracketed field paths over decoded JSON.

    get_by_path({"choices": [{"delta": {"content": "hi"}}]}, "choices[0].delta.content")
    # -> "hi"

Only the fully-custom provider family uses this: its response shape is
configuration, so field locations arrive as path strings.
"""

from __future__ import annotations

import re
from typing import Any

_INDEX = re.compile(r"^\d+$")
_MISSING = object()


def parse_path(path: str) -> list[str]:
    """'choices[0].delta.content' -> ['choices', '0', 'delta', 'content']"""
    tokens: list[str] = []
    current = ""
    in_bracket = False
    for char in path:
        if char == "[":
            if current:
                tokens.append(current)
                current = ""
            in_bracket = True
        elif char == "]":
            if current:
                tokens.append(current)
                current = ""
            in_bracket = False
        elif char == "." and not in_bracket:
            if current:
                tokens.append(current)
                current = ""
        else:
            current += char
    if current:
        tokens.append(current)
    return tokens


def get_by_path(obj: Any, path: str) -> Any:
    """Value at path, or None when any step is missing. Never raises."""
    value = _lookup(obj, path)
    return None if value is _MISSING else value


def has_path(obj: Any, path: str) -> bool:
    """True when every step exists, even if the final value is null."""
    return _lookup(obj, path) is not _MISSING


def _lookup(obj: Any, path: str) -> Any:
    if obj is None or not path:
        return _MISSING

    current = obj
    for token in parse_path(path):
        if isinstance(current, list):
            if not _INDEX.match(token):
                return _MISSING
            index = int(token)
            if index >= len(current):
                return _MISSING
            current = current[index]
        elif isinstance(current, dict):
            if token not in current:
                return _MISSING
            current = current[token]
        else:
            return _MISSING
    return current


def set_by_path(obj: dict[str, Any], path: str, value: Any) -> None:
    """Assign value at path, creating missing containers on the way.

    A missing container is a list when the following segment is numeric,
    a dict otherwise. Lists are padded with None up to the index.
    """
    if not isinstance(obj, (dict, list)) or not path:
        return

    tokens = parse_path(path)
    if not tokens:
        return
    current: Any = obj
    for token, next_token in zip(tokens, tokens[1:]):
        child = _child(current, token)
        if not isinstance(child, (dict, list)):
            child = [] if _INDEX.match(next_token) else {}
            if not _assign(current, token, child):
                return
        current = child

    _assign(current, tokens[-1], value)


def join_path(*paths: str | None) -> str:
    """join_path('choices[0]', 'delta.content') -> 'choices[0].delta.content'"""
    return ".".join(p for p in paths if p)


def _child(container: Any, token: str) -> Any:
    if isinstance(container, dict):
        return container.get(token)
    if isinstance(container, list) and _INDEX.match(token):
        index = int(token)
        return container[index] if index < len(container) else None
    return None


def _assign(container: Any, token: str, value: Any) -> bool:
    if isinstance(container, dict):
        container[token] = value
        return True
    if isinstance(container, list) and _INDEX.match(token):
        index = int(token)
        if index >= len(container):
            container.extend([None] * (index + 1 - len(container)))
        container[index] = value
        return True
    return False
