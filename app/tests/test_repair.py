"""Tests for tool-call argument repair."""

import json

import pytest

from conduit.llm.repair import repair_tool_call_json


@pytest.mark.parametrize(
    "broken, expected",
    [
        ('{"a": 1', {"a": 1}),
        ('{"a": "x', {"a": "x"}),
        ('{"a": [1,2', {"a": [1, 2]}),
        ('{"a": {"b": [1, {"c": "d', {"a": {"b": [1, {"c": "d"}]}}),
        ('{"a": 1,', {"a": 1}),
        ('{"path": "C:\\\\dir\\', {"path": "C:\\dir"}),
        ('{"a":', {"a": None}),
    ],
)
def test_repairs_truncated_arguments(broken, expected):
    repaired = repair_tool_call_json(broken)
    assert repaired is not None
    assert json.loads(repaired) == expected


def test_valid_json_is_returned_as_is():
    assert repair_tool_call_json('{"a": 1}') == '{"a": 1}'


def test_empty_arguments_become_empty_object():
    assert repair_tool_call_json("") == "{}"
    assert repair_tool_call_json("   ") == "{}"


@pytest.mark.parametrize(
    "hopeless",
    ['{"a": 1}}', '{"a" 1', "not json at all", "{not json at all", '{"a": tru'],
)
def test_unrepairable_returns_none(hopeless):
    assert repair_tool_call_json(hopeless) is None


def test_none_input():
    assert repair_tool_call_json(None) is None
