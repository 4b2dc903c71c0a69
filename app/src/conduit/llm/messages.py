"""
Message normalization: unified conversation -> provider-native messages.

    normalized = normalize(messages, system_prompt, profile)
    normalized.messages  # native message array
    normalized.system    # out-of-band system content (PARAMETER mode), else None

Per family:
- OPENAI / CUSTOM: chat-completions style array. CUSTOM reads its tool
  field names, tool-result role and wrappers from profile.message_format.
- ANTHROPIC: content-block lists, tool_use / tool_result blocks, system
  as a list of text blocks.
- GEMINI: `contents` with user/model roles, functionCall /
  functionResponse parts, system as a systemInstruction object.

normalize() never raises. Bad content becomes empty text; a turn that
cannot be converted at all is logged and skipped.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import asdict, dataclass, is_dataclass
from typing import Any, Callable

from conduit.llm.repair import repair_tool_call_json
from conduit.llm.types import (
    ConversationMessage,
    ImagePart,
    MessageRole,
    TextPart,
    ToolCall,
    coerce_content,
    content_text,
)
from conduit.providers.profiles import (
    ProtocolFamily,
    ProviderProfile,
    SystemMessageMode,
)

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MEDIA_TYPE = "image/png"


@dataclass
class NormalizedRequest:
    messages: list[dict[str, Any]]
    system: Any = None


def normalize(
    messages: list[ConversationMessage | dict[str, Any]],
    system_prompt: str | None,
    profile: ProviderProfile,
) -> NormalizedRequest:
    turns = _coerce_messages(messages)
    system_text = collect_system_content(turns, system_prompt)
    converter = _CONVERTERS[profile.family]
    return converter(turns, system_text, profile)


# ═══════════════════════════════════════════════════════════════════════════════
# SHARED HELPERS
# ═══════════════════════════════════════════════════════════════════════════════


def _coerce_messages(messages: Any) -> list[ConversationMessage]:
    turns: list[ConversationMessage] = []
    for raw in messages or []:
        if isinstance(raw, ConversationMessage):
            turns.append(raw)
        elif isinstance(raw, dict):
            try:
                turns.append(ConversationMessage.from_dict(raw))
            except Exception:
                logger.warning("Skipping unreadable message", exc_info=True)
        else:
            logger.debug(f"Skipping non-message entry ({type(raw).__name__})")
    return turns


def collect_system_content(
    messages: list[ConversationMessage], system_prompt: str | None = None
) -> str:
    """Injected prompt first, then every system turn, blank-line separated."""
    content = system_prompt or ""
    for msg in messages:
        if msg.role != MessageRole.SYSTEM.value:
            continue
        text = content_text(msg.content)
        if not text:
            continue
        content = f"{content}\n\n{text}" if content else text
    return content


def render_template(template: Any, variables: dict[str, str]) -> Any:
    """Deep-copy a JSON template replacing {{name}} placeholders in strings."""
    if isinstance(template, str):
        for key, value in variables.items():
            template = template.replace(key, value)
        return template
    if isinstance(template, list):
        return [render_template(item, variables) for item in template]
    if isinstance(template, dict):
        return {key: render_template(value, variables) for key, value in template.items()}
    return copy.deepcopy(template)


def render_image(part: ImagePart, template: dict[str, Any]) -> dict[str, Any]:
    source = part.source
    is_base64 = source.type == "base64"
    media_type = source.media_type or DEFAULT_IMAGE_MEDIA_TYPE
    url = f"data:{media_type};base64,{source.data}" if is_base64 else source.data
    return render_template(
        template,
        {
            "{{url}}": url,
            "{{base64}}": source.data if is_base64 else "",
            "{{mediaType}}": media_type,
        },
    )


def _text_block(text: str, family: ProtocolFamily) -> dict[str, Any]:
    if family == ProtocolFamily.GEMINI:
        return {"text": text}
    return {"type": "text", "text": text}


def _user_content(msg: ConversationMessage, profile: ProviderProfile) -> str | list[dict]:
    """Native user content: multimodal only when the profile supports vision."""
    if not profile.vision.enabled:
        return content_text(msg.content)

    content = coerce_content(msg.content)
    if isinstance(content, str):
        return content
    blocks: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextPart):
            blocks.append(_text_block(part.text, profile.family))
        elif isinstance(part, ImagePart):
            blocks.append(render_image(part, profile.vision.image_template))
    return blocks


def _prefix_system(content: str | list[dict], system_text: str, family: ProtocolFamily):
    if isinstance(content, str):
        return f"{system_text}\n\n{content}" if content else system_text
    return [_text_block(system_text, family)] + content


def _tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, (list, dict)):
        try:
            return json.dumps(content, default=_jsonable)
        except (TypeError, ValueError):
            logger.debug("Tool result not serializable -> empty text")
    return ""


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return str(value)


def parse_arguments(arguments: str | None) -> dict[str, Any]:
    """Argument text -> object. Truncated JSON is repaired; anything else -> {}."""
    text = arguments or "{}"
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        repaired = repair_tool_call_json(text)
        parsed = json.loads(repaired) if repaired is not None else {}
    return parsed if isinstance(parsed, dict) else {}


# ═══════════════════════════════════════════════════════════════════════════════
# TOOL CALL ENCODING (paired encode/decode per family)
# ═══════════════════════════════════════════════════════════════════════════════


def encode_tool_call(call: ToolCall, profile: ProviderProfile) -> dict[str, Any]:
    family = profile.family
    if family == ProtocolFamily.ANTHROPIC:
        return {
            "type": "tool_use",
            "id": call.id,
            "name": call.name,
            "input": parse_arguments(call.arguments),
        }
    if family == ProtocolFamily.GEMINI:
        return {"functionCall": {"name": call.name, "args": parse_arguments(call.arguments)}}

    wrapper = profile.message_format.tool_call_wrapper or "function"
    return {
        "id": call.id,
        "type": wrapper,
        wrapper: {"name": call.name, "arguments": call.arguments or "{}"},
    }


def decode_tool_call(native: dict[str, Any], profile: ProviderProfile) -> ToolCall:
    family = profile.family
    if family == ProtocolFamily.ANTHROPIC:
        return ToolCall(
            id=native.get("id", ""),
            name=native.get("name", ""),
            arguments=json.dumps(native.get("input") or {}),
        )
    if family == ProtocolFamily.GEMINI:
        fn = native.get("functionCall") or {}
        return ToolCall(
            id=fn.get("id", ""),
            name=fn.get("name", ""),
            arguments=json.dumps(fn.get("args") or {}),
        )

    wrapper = profile.message_format.tool_call_wrapper or "function"
    fn = native.get(wrapper) or {}
    arguments = fn.get("arguments", "{}")
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return ToolCall(id=native.get("id", ""), name=fn.get("name", ""), arguments=arguments)


# ═══════════════════════════════════════════════════════════════════════════════
# FAMILY CONVERTERS
# ═══════════════════════════════════════════════════════════════════════════════


def _walk(
    turns: list[ConversationMessage],
    system_text: str,
    profile: ProviderProfile,
    convert_turn: Callable[[ConversationMessage, list[dict[str, Any]]], None],
) -> list[dict[str, Any]]:
    """Run convert_turn over non-system turns, applying first-user placement."""
    result: list[dict[str, Any]] = []
    mode = profile.system_mode
    pending_system = system_text if mode == SystemMessageMode.FIRST_USER else ""

    for msg in turns:
        if msg.role == MessageRole.SYSTEM.value:
            continue
        start = len(result)
        try:
            convert_turn(msg, result)
        except Exception:
            logger.warning(f"Skipping {msg.role} turn that failed to convert", exc_info=True)
            del result[start:]
            continue
        if pending_system and msg.role == MessageRole.USER.value and len(result) > start:
            _prefix_native_user(result[start], pending_system, profile.family)
            pending_system = ""

    if pending_system:
        # No user turn to carry it; keep it as the opening user turn
        result.insert(0, _native_user(pending_system, profile.family))
    return result


def _native_user(text: str, family: ProtocolFamily) -> dict[str, Any]:
    if family == ProtocolFamily.GEMINI:
        return {"role": "user", "parts": [{"text": text}]}
    return {"role": "user", "content": text}


def _prefix_native_user(native: dict[str, Any], system_text: str, family: ProtocolFamily):
    if family == ProtocolFamily.GEMINI:
        native["parts"] = _prefix_system(native.get("parts", []), system_text, family)
    else:
        native["content"] = _prefix_system(native.get("content", ""), system_text, family)


def _to_chat(
    turns: list[ConversationMessage], system_text: str, profile: ProviderProfile
) -> NormalizedRequest:
    """OPENAI and CUSTOM: chat-completions message array."""
    fmt = profile.message_format

    def convert(msg: ConversationMessage, out: list[dict[str, Any]]) -> None:
        if msg.role == MessageRole.USER.value:
            out.append({"role": "user", "content": _user_content(msg, profile)})

        elif msg.role == MessageRole.ASSISTANT.value:
            text = content_text(msg.content)
            native: dict[str, Any] = {"role": "assistant", "content": text}
            if msg.tool_calls:
                native["content"] = text or None
                native[fmt.assistant_tool_call_field] = [
                    encode_tool_call(tc, profile) for tc in msg.tool_calls
                ]
            out.append(native)

        elif msg.role == MessageRole.TOOL.value:
            if not msg.tool_call_id:
                logger.debug("Dropping tool result without tool_call_id")
                return
            out.append(_chat_tool_result(msg, profile))

        else:
            logger.debug(f"Dropping turn with unknown role {msg.role!r}")

    messages = _walk(turns, system_text, profile, convert)
    mode = profile.system_mode
    if system_text and mode == SystemMessageMode.MESSAGE:
        messages.insert(0, {"role": "system", "content": system_text})

    return NormalizedRequest(
        messages=messages,
        system=(system_text or None) if mode == SystemMessageMode.PARAMETER else None,
    )


def _chat_tool_result(msg: ConversationMessage, profile: ProviderProfile) -> dict[str, Any]:
    fmt = profile.message_format
    content = _tool_result_text(msg.content)
    if fmt.tool_result_wrapper:
        return {
            "role": fmt.tool_result_role,
            "content": [
                {
                    "type": fmt.tool_result_wrapper,
                    fmt.tool_result_id_field: msg.tool_call_id,
                    "content": content,
                }
            ],
        }
    if fmt.tool_result_role == "function":
        return {"role": "function", "name": msg.name or msg.tool_call_id, "content": content}
    return {
        "role": fmt.tool_result_role,
        fmt.tool_result_id_field: msg.tool_call_id,
        "content": content,
    }


def _to_anthropic(
    turns: list[ConversationMessage], system_text: str, profile: ProviderProfile
) -> NormalizedRequest:
    def convert(msg: ConversationMessage, out: list[dict[str, Any]]) -> None:
        if msg.role == MessageRole.USER.value:
            out.append({"role": "user", "content": _user_content(msg, profile)})

        elif msg.role == MessageRole.ASSISTANT.value:
            blocks: list[dict[str, Any]] = []
            text = content_text(msg.content)
            if text:
                blocks.append({"type": "text", "text": text})
            blocks.extend(encode_tool_call(tc, profile) for tc in msg.tool_calls)
            if blocks:
                out.append({"role": "assistant", "content": blocks})

        elif msg.role == MessageRole.TOOL.value:
            if not msg.tool_call_id:
                logger.debug("Dropping tool result without tool_call_id")
                return
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": _tool_result_text(msg.content),
            }
            # Consecutive results share one user turn
            if out and _is_block_run(out[-1], "content", lambda b: b.get("type") == "tool_result"):
                out[-1]["content"].append(block)
            else:
                out.append({"role": "user", "content": [block]})

    messages = _walk(turns, system_text, profile, convert)
    system = None
    if system_text and profile.system_mode == SystemMessageMode.PARAMETER:
        system = [{"type": "text", "text": system_text}]
    return NormalizedRequest(messages=messages, system=system)


def _to_gemini(
    turns: list[ConversationMessage], system_text: str, profile: ProviderProfile
) -> NormalizedRequest:
    call_names: dict[str, str] = {}

    def convert(msg: ConversationMessage, out: list[dict[str, Any]]) -> None:
        if msg.role == MessageRole.USER.value:
            content = _user_content(msg, profile)
            parts = [{"text": content}] if isinstance(content, str) else content
            out.append({"role": "user", "parts": parts})

        elif msg.role == MessageRole.ASSISTANT.value:
            parts: list[dict[str, Any]] = []
            text = content_text(msg.content)
            if text:
                parts.append({"text": text})
            for tc in msg.tool_calls:
                call_names[tc.id] = tc.name
                parts.append(encode_tool_call(tc, profile))
            if parts:
                out.append({"role": "model", "parts": parts})

        elif msg.role == MessageRole.TOOL.value:
            if not msg.tool_call_id:
                logger.debug("Dropping tool result without tool_call_id")
                return
            name = msg.name or call_names.get(msg.tool_call_id) or msg.tool_call_id
            part = {
                "functionResponse": {
                    "name": name,
                    "response": {"content": _tool_result_text(msg.content)},
                }
            }
            if out and _is_block_run(out[-1], "parts", lambda p: "functionResponse" in p):
                out[-1]["parts"].append(part)
            else:
                out.append({"role": "user", "parts": [part]})

    messages = _walk(turns, system_text, profile, convert)
    system = None
    if system_text and profile.system_mode == SystemMessageMode.PARAMETER:
        system = {"parts": [{"text": system_text}]}
    return NormalizedRequest(messages=messages, system=system)


def _is_block_run(native: dict[str, Any], key: str, predicate: Callable[[dict], bool]) -> bool:
    blocks = native.get(key)
    return (
        native.get("role") == "user"
        and isinstance(blocks, list)
        and bool(blocks)
        and all(isinstance(b, dict) and predicate(b) for b in blocks)
    )


_CONVERTERS: dict[ProtocolFamily, Callable[..., NormalizedRequest]] = {
    ProtocolFamily.OPENAI: _to_chat,
    ProtocolFamily.CUSTOM: _to_chat,
    ProtocolFamily.ANTHROPIC: _to_anthropic,
    ProtocolFamily.GEMINI: _to_gemini,
}
