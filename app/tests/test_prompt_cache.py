"""Tests for Anthropic prompt-cache breakpoints."""

from conduit.llm.prompt_cache import EPHEMERAL, annotate_prompt_cache
from conduit.providers.profiles import BUILTIN_PROFILES

ANTHROPIC = BUILTIN_PROFILES["anthropic"]


def _conversation():
    return [
        {"role": "user", "content": "first question"},
        {"role": "assistant", "content": [{"type": "text", "text": "first answer"}]},
        {"role": "user", "content": "follow-up"},
    ]


def test_marks_system_tools_and_previous_turn():
    system = [{"type": "text", "text": "S"}]
    tools = [{"name": "a"}, {"name": "b"}]
    messages = _conversation()

    placed = annotate_prompt_cache(ANTHROPIC, messages, system, tools)

    assert placed == 3
    assert system[-1]["cache_control"] == EPHEMERAL
    assert "cache_control" not in tools[0]
    assert tools[-1]["cache_control"] == EPHEMERAL
    assert messages[1]["content"][-1]["cache_control"] == EPHEMERAL
    assert messages[2] == {"role": "user", "content": "follow-up"}


def test_string_content_becomes_a_marked_text_block():
    messages = [
        {"role": "user", "content": "earlier"},
        {"role": "user", "content": "latest"},
    ]
    annotate_prompt_cache(ANTHROPIC, messages)
    assert messages[0]["content"] == [
        {"type": "text", "text": "earlier", "cache_control": {"type": "ephemeral"}}
    ]


def test_single_turn_has_no_message_breakpoint():
    messages = [{"role": "user", "content": "only"}]
    assert annotate_prompt_cache(ANTHROPIC, messages) == 0
    assert messages == [{"role": "user", "content": "only"}]


def test_markers_are_independent_copies():
    system = [{"type": "text", "text": "S"}]
    tools = [{"name": "a"}]
    annotate_prompt_cache(ANTHROPIC, _conversation(), system, tools)
    system[-1]["cache_control"]["type"] = "changed"
    assert tools[-1]["cache_control"] == {"type": "ephemeral"}


def test_other_families_untouched():
    for family_id in ("openai", "gemini"):
        messages = _conversation()
        system = [{"type": "text", "text": "S"}]
        assert annotate_prompt_cache(BUILTIN_PROFILES[family_id], messages, system) == 0
        assert messages == _conversation()
        assert "cache_control" not in system[0]
