"""Tests for dotted/bracketed JSON paths."""

from conduit.llm.json_path import get_by_path, has_path, join_path, parse_path, set_by_path


CHUNK = {
    "choices": [{"delta": {"content": "hi", "tool_calls": [{"function": {"name": "read"}}]}}],
    "usage": {"prompt_tokens": 3},
}


def test_parse_path():
    assert parse_path("choices[0].delta.content") == ["choices", "0", "delta", "content"]
    assert parse_path("a.b[2][3]") == ["a", "b", "2", "3"]
    assert parse_path("") == []


def test_get_by_path():
    assert get_by_path(CHUNK, "choices[0].delta.content") == "hi"
    assert get_by_path(CHUNK, "choices[0].delta.tool_calls[0].function.name") == "read"
    assert get_by_path(CHUNK, "usage.prompt_tokens") == 3


def test_get_by_path_misses_return_none():
    assert get_by_path(CHUNK, "choices[5].delta") is None
    assert get_by_path(CHUNK, "choices.delta") is None  # non-numeric index into list
    assert get_by_path(CHUNK, "usage.prompt_tokens.deeper") is None
    assert get_by_path(None, "a") is None
    assert get_by_path(CHUNK, "") is None


def test_has_path():
    assert has_path(CHUNK, "usage")
    assert not has_path(CHUNK, "usage.total_tokens")


def test_has_path_counts_null_values_as_present():
    obj = {"a": {"b": None}}
    assert has_path(obj, "a.b")
    assert get_by_path(obj, "a.b") is None
    assert not has_path(obj, "a.c")
    assert not has_path(None, "a")


def test_set_by_path_creates_intermediates():
    obj: dict = {}
    set_by_path(obj, "a.b[2].c", 1)
    assert obj == {"a": {"b": [None, None, {"c": 1}]}}


def test_set_by_path_overwrites_existing():
    obj = {"a": {"b": 1}}
    set_by_path(obj, "a.b", 2)
    assert obj == {"a": {"b": 2}}


def test_join_path():
    assert join_path("choices[0]", "delta", "content") == "choices[0].delta.content"
    assert join_path("", "delta", None) == "delta"
