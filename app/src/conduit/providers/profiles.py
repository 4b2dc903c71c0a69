"""
Provider profiles: everything needed to talk to one provider, as data.

Three protocol families have native code paths (OpenAI-like, Anthropic-like,
Gemini-like). The fourth, CUSTOM, is described entirely by the profile:
endpoint, auth scheme, request body template and response field paths.

A profile is built per call (build_profile) and never mutated afterwards.
Switching provider mid-conversation means normalizing the whole history
again against the new profile.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from conduit.llm.sse import SSEConfig

if TYPE_CHECKING:
    from conduit.core.config import LLMConfig

logger = logging.getLogger(__name__)


class ProtocolFamily(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    CUSTOM = "custom"


class SystemMessageMode(str, Enum):
    MESSAGE = "message"  # leading system-role entry
    FIRST_USER = "first-user"  # prefixed onto the first user turn
    PARAMETER = "parameter"  # returned out-of-band for a dedicated field


class AuthType(str, Enum):
    BEARER = "bearer"
    API_KEY = "api-key"
    HEADER = "header"
    QUERY = "query"
    NONE = "none"


OPENAI_IMAGE_TEMPLATE: dict[str, Any] = {
    "type": "image_url",
    "image_url": {"url": "{{url}}"},
}
ANTHROPIC_IMAGE_TEMPLATE: dict[str, Any] = {
    "type": "image",
    "source": {"type": "base64", "media_type": "{{mediaType}}", "data": "{{base64}}"},
}
GEMINI_IMAGE_TEMPLATE: dict[str, Any] = {
    "inlineData": {"mimeType": "{{mediaType}}", "data": "{{base64}}"},
}


@dataclass(frozen=True)
class AuthConfig:
    type: AuthType = AuthType.BEARER
    header_name: str = ""
    header_template: str = "{{apiKey}}"
    query_param: str = "key"


@dataclass(frozen=True)
class MessageFormat:
    system_message_mode: SystemMessageMode = SystemMessageMode.MESSAGE
    tool_result_role: str = "tool"
    tool_result_id_field: str = "tool_call_id"
    tool_result_wrapper: str | None = None
    assistant_tool_call_field: str = "tool_calls"
    tool_call_wrapper: str = "function"


@dataclass(frozen=True)
class VisionConfig:
    enabled: bool = True
    image_template: dict[str, Any] = field(
        default_factory=lambda: copy.deepcopy(OPENAI_IMAGE_TEMPLATE)
    )


@dataclass(frozen=True)
class CustomRequestConfig:
    endpoint: str = "/chat/completions"
    method: str = "POST"
    headers: dict[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )
    body_template: dict[str, Any] = field(
        default_factory=lambda: {
            "model": "{{model}}",
            "messages": "{{messages}}",
            "tools": "{{tools}}",
            "stream": True,
            "stream_options": {"include_usage": True},
            "max_tokens": "{{max_tokens}}",
        }
    )
    # Merged into the body when enable_thinking is set
    thinking_params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CustomResponseConfig:
    sse: SSEConfig = field(default_factory=SSEConfig)
    choice_path: str = "choices[0]"
    delta_path: str = "delta"
    content_field: str = "content"
    reasoning_field: str | None = None
    tool_calls_field: str = "tool_calls"
    tool_id_field: str = "id"
    tool_name_field: str = "function.name"
    tool_args_field: str = "function.arguments"
    tool_index_field: str = "index"
    finish_reason_field: str = "finish_reason"
    args_is_object: bool = False
    auto_generate_id: bool = False
    usage_path: str = "usage"
    prompt_tokens_field: str = "prompt_tokens"
    completion_tokens_field: str = "completion_tokens"
    total_tokens_field: str = "total_tokens"
    id_field: str = "id"
    model_field: str = "model"


@dataclass(frozen=True)
class ProviderProfile:
    id: str
    family: ProtocolFamily
    base_url: str
    endpoint: str = ""
    auth: AuthConfig = field(default_factory=AuthConfig)
    message_format: MessageFormat = field(default_factory=MessageFormat)
    vision: VisionConfig = field(default_factory=VisionConfig)
    headers: dict[str, str] = field(default_factory=dict)
    supports_reasoning: bool = False
    default_model: str = ""
    custom_request: CustomRequestConfig | None = None
    custom_response: CustomResponseConfig | None = None

    @property
    def system_mode(self) -> SystemMessageMode:
        """Effective placement. B and C have no system role in the message array."""
        mode = self.message_format.system_message_mode
        if mode == SystemMessageMode.MESSAGE and self.family in (
            ProtocolFamily.ANTHROPIC,
            ProtocolFamily.GEMINI,
        ):
            return SystemMessageMode.PARAMETER
        return mode

    def url(self, model: str = "") -> str:
        endpoint = self.endpoint.replace("{model}", model)
        return self.base_url.rstrip("/") + endpoint

    def auth_params(self, api_key: str) -> tuple[dict[str, str], dict[str, str]]:
        """(headers, query params) carrying the credential."""
        auth = self.auth
        if not api_key or auth.type == AuthType.NONE:
            return {}, {}
        if auth.type == AuthType.BEARER:
            return {"Authorization": f"Bearer {api_key}"}, {}
        if auth.type == AuthType.API_KEY:
            return {auth.header_name or "x-api-key": api_key}, {}
        if auth.type == AuthType.HEADER:
            value = auth.header_template.replace("{{apiKey}}", api_key)
            return {auth.header_name or "Authorization": value}, {}
        return {}, {auth.query_param or "key": api_key}

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_id: str = "custom") -> ProviderProfile:
        """Build a profile from user configuration.

        `mode` picks the family. A native mode reuses that family's
        built-in profile with the configured URL/auth; `custom` (the
        default) reads request/response descriptions as well.
        """
        family = ProtocolFamily(_pick(data, "mode", "family", default="custom"))
        profile_id = _pick(data, "id", "name", default=default_id)

        auth_data = _pick(data, "auth", default={}) or {}
        auth = AuthConfig(
            type=AuthType(_pick(auth_data, "type", default="bearer")),
            header_name=_pick(auth_data, "header_name", "headerName", default=""),
            header_template=_pick(
                auth_data, "header_template", "headerTemplate", default="{{apiKey}}"
            ),
            query_param=_pick(auth_data, "query_param", "queryParam", default="key"),
        )

        if family != ProtocolFamily.CUSTOM:
            base = BUILTIN_PROFILES[family.value]
            return replace(
                base,
                id=profile_id,
                base_url=_pick(data, "base_url", "baseUrl", default=base.base_url),
                auth=auth if "auth" in data else base.auth,
                message_format=_message_format(
                    _pick(data, "message_format", "messageFormat", default={}) or {},
                    base.message_format,
                ),
                vision=_vision(_pick(data, "vision", default={}) or {}, base.vision),
            )

        message_format = _message_format(
            _pick(data, "message_format", "messageFormat", default={}) or {}, MessageFormat()
        )
        vision = _vision(_pick(data, "vision", default={}) or {}, VisionConfig(enabled=False))

        req = _pick(data, "request", default={}) or {}
        request_defaults = CustomRequestConfig()
        custom_request = CustomRequestConfig(
            endpoint=_pick(req, "endpoint", default=request_defaults.endpoint),
            method=_pick(req, "method", default="POST").upper(),
            headers=_pick(req, "headers", default=None) or request_defaults.headers,
            body_template=_pick(req, "body_template", "bodyTemplate", default=None)
            or request_defaults.body_template,
            thinking_params=_pick(req, "thinking_params", "thinkingParams", default={}) or {},
        )

        resp = _pick(data, "response", default={}) or {}
        sse_data = _pick(resp, "sse", "sseConfig", default={}) or {}
        streaming = _pick(resp, "streaming", default={}) or {}
        tool_call = _pick(resp, "tool_call", "toolCall", default={}) or {}
        usage = _pick(resp, "usage", default={}) or {}
        response_defaults = CustomResponseConfig()
        custom_response = CustomResponseConfig(
            sse=SSEConfig(
                data_prefix=_pick(sse_data, "data_prefix", "dataPrefix", default="data: "),
                done_marker=_pick(sse_data, "done_marker", "doneMarker", default="[DONE]"),
            ),
            choice_path=_pick(streaming, "choice_path", "choicePath", default=response_defaults.choice_path),
            delta_path=_pick(streaming, "delta_path", "deltaPath", default=response_defaults.delta_path),
            content_field=_pick(streaming, "content_field", "contentField", default="content"),
            reasoning_field=_pick(streaming, "reasoning_field", "reasoningField"),
            tool_calls_field=_pick(streaming, "tool_calls_field", "toolCallsField", default="tool_calls"),
            tool_id_field=_pick(streaming, "tool_id_field", "toolIdField", default="id"),
            tool_name_field=_pick(streaming, "tool_name_field", "toolNameField", default="function.name"),
            tool_args_field=_pick(streaming, "tool_args_field", "toolArgsField", default="function.arguments"),
            tool_index_field=_pick(streaming, "tool_index_field", "toolIndexField", default="index"),
            finish_reason_field=_pick(
                streaming, "finish_reason_field", "finishReasonField", default="finish_reason"
            ),
            args_is_object=bool(_pick(tool_call, "args_is_object", "argsIsObject", default=False)),
            auto_generate_id=bool(
                _pick(tool_call, "auto_generate_id", "autoGenerateId", default=False)
            ),
            usage_path=_pick(usage, "path", default="usage"),
            prompt_tokens_field=_pick(
                usage, "prompt_tokens_field", "promptTokensField", default="prompt_tokens"
            ),
            completion_tokens_field=_pick(
                usage, "completion_tokens_field", "completionTokensField", default="completion_tokens"
            ),
            total_tokens_field=_pick(
                usage, "total_tokens_field", "totalTokensField", default="total_tokens"
            ),
        )

        return cls(
            id=profile_id,
            family=ProtocolFamily.CUSTOM,
            base_url=_pick(data, "base_url", "baseUrl", default=""),
            endpoint=custom_request.endpoint,
            auth=auth,
            message_format=message_format,
            vision=vision,
            headers=dict(custom_request.headers),
            supports_reasoning=custom_response.reasoning_field is not None,
            default_model=_pick(data, "default_model", "defaultModel", default=""),
            custom_request=custom_request,
            custom_response=custom_response,
        )


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _message_format(fmt: dict[str, Any], base: MessageFormat) -> MessageFormat:
    """Configured message format keys over base."""
    return MessageFormat(
        system_message_mode=SystemMessageMode(
            _pick(fmt, "system_message_mode", "systemMessageMode", default=base.system_message_mode)
        ),
        tool_result_role=_pick(
            fmt, "tool_result_role", "toolResultRole", default=base.tool_result_role
        ),
        tool_result_id_field=_pick(
            fmt, "tool_result_id_field", "toolResultIdField", default=base.tool_result_id_field
        ),
        tool_result_wrapper=_pick(
            fmt, "tool_result_wrapper", "toolResultWrapper", default=base.tool_result_wrapper
        ),
        assistant_tool_call_field=_pick(
            fmt,
            "assistant_tool_call_field",
            "assistantToolCallField",
            default=base.assistant_tool_call_field,
        ),
        tool_call_wrapper=_pick(
            fmt, "tool_call_wrapper", "toolCallWrapper", default=base.tool_call_wrapper
        ),
    )


def _vision(vision_data: dict[str, Any], base: VisionConfig) -> VisionConfig:
    image_format = _pick(vision_data, "image_format", "imageFormat", default={}) or {}
    return VisionConfig(
        enabled=bool(_pick(vision_data, "enabled", default=base.enabled)),
        image_template=copy.deepcopy(
            _pick(image_format, "template", default=None) or base.image_template
        ),
    )


BUILTIN_PROFILES: dict[str, ProviderProfile] = {
    "openai": ProviderProfile(
        id="openai",
        family=ProtocolFamily.OPENAI,
        base_url="https://api.openai.com/v1",
        endpoint="/chat/completions",
        auth=AuthConfig(type=AuthType.BEARER),
        supports_reasoning=True,
        default_model="gpt-4o",
    ),
    "anthropic": ProviderProfile(
        id="anthropic",
        family=ProtocolFamily.ANTHROPIC,
        base_url="https://api.anthropic.com/v1",
        endpoint="/messages",
        auth=AuthConfig(type=AuthType.API_KEY, header_name="x-api-key"),
        message_format=MessageFormat(system_message_mode=SystemMessageMode.PARAMETER),
        vision=VisionConfig(
            enabled=True, image_template=copy.deepcopy(ANTHROPIC_IMAGE_TEMPLATE)
        ),
        headers={"anthropic-version": "2023-06-01"},
        supports_reasoning=True,
        default_model="claude-sonnet-4-20250514",
    ),
    "gemini": ProviderProfile(
        id="gemini",
        family=ProtocolFamily.GEMINI,
        base_url="https://generativelanguage.googleapis.com/v1beta",
        endpoint="/models/{model}:streamGenerateContent",
        auth=AuthConfig(type=AuthType.HEADER, header_name="x-goog-api-key"),
        message_format=MessageFormat(system_message_mode=SystemMessageMode.PARAMETER),
        vision=VisionConfig(enabled=True, image_template=copy.deepcopy(GEMINI_IMAGE_TEMPLATE)),
        supports_reasoning=True,
        default_model="gemini-2.0-flash",
    ),
}


def build_profile(llm_config: LLMConfig) -> ProviderProfile:
    """Resolve the profile for one call. Unknown providers raise ValueError."""
    if llm_config.custom:
        profile = ProviderProfile.from_dict(llm_config.custom, default_id=llm_config.provider)
    elif llm_config.provider.lower() in BUILTIN_PROFILES:
        profile = BUILTIN_PROFILES[llm_config.provider.lower()]
    else:
        raise ValueError(f"Unknown LLM provider: {llm_config.provider}")

    if llm_config.base_url:
        profile = replace(profile, base_url=llm_config.base_url)
    return profile
