"""Tests for message normalization across protocol families."""

import json
from dataclasses import replace

import pytest

from conduit.llm.messages import decode_tool_call, encode_tool_call, normalize
from conduit.llm.types import ConversationMessage, ImagePart, ImageSource, TextPart, ToolCall
from conduit.providers.profiles import (
    BUILTIN_PROFILES,
    MessageFormat,
    ProviderProfile,
    SystemMessageMode,
    VisionConfig,
)

OPENAI = BUILTIN_PROFILES["openai"]
ANTHROPIC = BUILTIN_PROFILES["anthropic"]
GEMINI = BUILTIN_PROFILES["gemini"]


def custom_profile(**message_format) -> ProviderProfile:
    return ProviderProfile.from_dict(
        {
            "id": "local",
            "mode": "custom",
            "baseUrl": "http://localhost:1234/v1",
            "messageFormat": message_format,
        }
    )


def user(content):
    return ConversationMessage(role="user", content=content)


def assistant(content="", tool_calls=None):
    return ConversationMessage(role="assistant", content=content, tool_calls=tool_calls or [])


def tool(content, call_id="call_1", name=None):
    return ConversationMessage(role="tool", content=content, tool_call_id=call_id, name=name)


READ_CALL = ToolCall(id="call_1", name="read_file", arguments='{"path": "a.py"}')


# ─── System placement ────────────────────────────────────────


def test_system_turns_joined_after_prompt():
    messages = [
        ConversationMessage(role="system", content="Be terse."),
        user("hi"),
        ConversationMessage(role="system", content=[{"type": "text", "text": "Use tools."}]),
    ]
    result = normalize(messages, "You are an editor assistant.", OPENAI)
    assert result.messages[0] == {
        "role": "system",
        "content": "You are an editor assistant.\n\nBe terse.\n\nUse tools.",
    }
    assert result.messages[1] == {"role": "user", "content": "hi"}
    assert result.system is None


def test_anthropic_system_is_out_of_band():
    result = normalize([user("hi")], "S", ANTHROPIC)
    assert result.system == [{"type": "text", "text": "S"}]
    assert all(m["role"] != "system" for m in result.messages)


def test_message_mode_is_coerced_to_parameter_for_anthropic_and_gemini():
    fmt = MessageFormat(system_message_mode=SystemMessageMode.MESSAGE)
    for profile in (replace(ANTHROPIC, message_format=fmt), replace(GEMINI, message_format=fmt)):
        result = normalize([user("hi")], "S", profile)
        assert result.system is not None
        assert len(result.messages) == 1


def test_gemini_system_instruction():
    result = normalize([user("hi")], "S", GEMINI)
    assert result.system == {"parts": [{"text": "S"}]}
    assert result.messages == [{"role": "user", "parts": [{"text": "hi"}]}]


def test_custom_parameter_mode_returns_plain_string():
    result = normalize([user("hi")], "S", custom_profile(systemMessageMode="parameter"))
    assert result.system == "S"
    assert result.messages == [{"role": "user", "content": "hi"}]


def test_custom_first_user_prefixes_first_user_turn():
    profile = custom_profile(systemMessageMode="first-user")
    messages = [
        {"role": "system", "content": "S"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "again"},
    ]
    result = normalize(messages, None, profile)
    assert result.messages[0] == {"role": "user", "content": "S\n\nhi"}
    assert result.messages[2] == {"role": "user", "content": "again"}
    assert result.system is None


def test_first_user_without_user_turn_adds_leading_user_turn():
    profile = custom_profile(systemMessageMode="first-user")
    result = normalize([assistant("hello")], "S", profile)
    assert result.messages[0] == {"role": "user", "content": "S"}
    assert result.messages[1]["role"] == "assistant"


def test_first_user_with_multimodal_content_adds_leading_text_part():
    profile = replace(
        OPENAI, message_format=MessageFormat(system_message_mode=SystemMessageMode.FIRST_USER)
    )
    content = [TextPart("look"), ImagePart(ImageSource(type="url", data="https://x/img.png"))]
    result = normalize([user(content)], "S", profile)
    assert result.messages[0]["content"][0] == {"type": "text", "text": "S"}
    assert result.messages[0]["content"][1] == {"type": "text", "text": "look"}


# ─── Multimodal ──────────────────────────────────────────────


def test_openai_base64_image_uses_data_url_with_default_media_type():
    content = [ImagePart(ImageSource(type="base64", data="AAAA"))]
    result = normalize([user(content)], None, OPENAI)
    assert result.messages[0]["content"] == [
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}
    ]


def test_anthropic_image_block():
    content = [
        {"type": "text", "text": "what is this"},
        {"type": "image", "source": {"type": "base64", "data": "AAAA", "media_type": "image/jpeg"}},
    ]
    result = normalize([user(content)], None, ANTHROPIC)
    assert result.messages[0]["content"] == [
        {"type": "text", "text": "what is this"},
        {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": "AAAA"}},
    ]


def test_gemini_inline_data():
    content = [ImagePart(ImageSource(type="base64", data="AAAA", media_type="image/webp"))]
    result = normalize([user(content)], None, GEMINI)
    assert result.messages[0]["parts"] == [
        {"inlineData": {"mimeType": "image/webp", "data": "AAAA"}}
    ]


def test_vision_disabled_concatenates_text_parts():
    content = [TextPart("a"), ImagePart(ImageSource(type="base64", data="AAAA")), TextPart("b")]
    result = normalize([user(content)], None, custom_profile())
    assert result.messages[0] == {"role": "user", "content": "ab"}


def test_custom_image_template():
    profile = replace(
        custom_profile(),
        vision=VisionConfig(enabled=True, image_template={"type": "image", "image": "{{base64}}"}),
    )
    content = [ImagePart(ImageSource(type="base64", data="AAAA"))]
    result = normalize([user(content)], None, profile)
    assert result.messages[0]["content"] == [{"type": "image", "image": "AAAA"}]


# ─── Tool calls and results ──────────────────────────────────


def test_openai_tool_round_trip_shapes():
    messages = [user("read it"), assistant("", [READ_CALL]), tool({"ok": True})]
    result = normalize(messages, None, OPENAI)
    assert result.messages[1] == {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "read_file", "arguments": '{"path": "a.py"}'},
            }
        ],
    }
    assert result.messages[2] == {"role": "tool", "tool_call_id": "call_1", "content": '{"ok": true}'}


def test_anthropic_tool_use_and_merged_results():
    second = ToolCall(id="call_2", name="list_dir", arguments="{}")
    messages = [
        user("go"),
        assistant("Reading.", [READ_CALL, second]),
        tool("file body", "call_1"),
        tool("a.py\nb.py", "call_2"),
    ]
    result = normalize(messages, None, ANTHROPIC)
    assert result.messages[1] == {
        "role": "assistant",
        "content": [
            {"type": "text", "text": "Reading."},
            {"type": "tool_use", "id": "call_1", "name": "read_file", "input": {"path": "a.py"}},
            {"type": "tool_use", "id": "call_2", "name": "list_dir", "input": {}},
        ],
    }
    assert len(result.messages) == 3
    assert result.messages[2] == {
        "role": "user",
        "content": [
            {"type": "tool_result", "tool_use_id": "call_1", "content": "file body"},
            {"type": "tool_result", "tool_use_id": "call_2", "content": "a.py\nb.py"},
        ],
    }


def test_anthropic_unparseable_arguments_become_empty_input():
    bad = ToolCall(id="c", name="x", arguments="not json")
    result = normalize([user("u"), assistant("", [bad])], None, ANTHROPIC)
    assert result.messages[1]["content"][0]["input"] == {}


def test_gemini_function_call_and_response_name_lookup():
    messages = [user("go"), assistant("", [READ_CALL]), tool("file body", "call_1")]
    result = normalize(messages, None, GEMINI)
    assert result.messages[1] == {
        "role": "model",
        "parts": [{"functionCall": {"name": "read_file", "args": {"path": "a.py"}}}],
    }
    assert result.messages[2] == {
        "role": "user",
        "parts": [
            {"functionResponse": {"name": "read_file", "response": {"content": "file body"}}}
        ],
    }


def test_custom_tool_wrappers():
    profile = custom_profile(
        assistantToolCallField="calls",
        toolCallWrapper="fn",
        toolResultRole="user",
        toolResultWrapper="tool_result",
        toolResultIdField="tool_use_id",
    )
    result = normalize([user("go"), assistant("", [READ_CALL]), tool("done")], None, profile)
    assert result.messages[1]["calls"] == [
        {"id": "call_1", "type": "fn", "fn": {"name": "read_file", "arguments": '{"path": "a.py"}'}}
    ]
    assert result.messages[2] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "call_1", "content": "done"}],
    }


def test_custom_function_role_results():
    profile = custom_profile(toolResultRole="function")
    result = normalize([tool("42", name="calc")], None, profile)
    assert result.messages == [{"role": "function", "name": "calc", "content": "42"}]


def test_tool_turn_without_call_id_is_dropped():
    orphan = ConversationMessage(role="tool", content="lost")
    for profile in (OPENAI, ANTHROPIC, GEMINI, custom_profile()):
        result = normalize([user("hi"), orphan], None, profile)
        assert len(result.messages) == 1


def test_empty_assistant_turn_dropped_for_anthropic_and_gemini():
    for profile in (ANTHROPIC, GEMINI):
        result = normalize([user("hi"), assistant(""), user("again")], None, profile)
        assert [m["role"] for m in result.messages] == ["user", "user"]


# ─── Degradation ─────────────────────────────────────────────


@pytest.mark.parametrize("profile", [OPENAI, ANTHROPIC, GEMINI])
def test_normalize_never_raises_on_malformed_input(profile):
    messages = [
        {"role": "user", "content": 42},
        "not a message",
        None,
        {"role": "user", "content": [{"type": "video"}, {"type": "text", "text": "ok"}]},
        {"role": "assistant", "tool_calls": [{"id": "c", "function": {"name": "f", "arguments": "{"}}]},
        {"role": "mystery", "content": "?"},
    ]
    result = normalize(messages, None, profile)
    assert isinstance(result.messages, list)


def test_malformed_content_degrades_to_empty_text():
    result = normalize([{"role": "user", "content": 42}], None, OPENAI)
    assert result.messages == [{"role": "user", "content": ""}]


# ─── encode / decode ─────────────────────────────────────────


@pytest.mark.parametrize(
    "profile",
    [OPENAI, ANTHROPIC, GEMINI, custom_profile(toolCallWrapper="fn")],
    ids=["openai", "anthropic", "gemini", "custom"],
)
def test_tool_call_encode_decode_round_trip(profile):
    call = ToolCall(id="call_9", name="search", arguments='{"q": "sse", "limit": 3}')
    decoded = decode_tool_call(encode_tool_call(call, profile), profile)
    assert decoded.name == call.name
    assert json.loads(decoded.arguments) == json.loads(call.arguments)
