"""
Thinking strategies: split inline reasoning out of the text channel.

Most providers deliver reasoning on a native channel and need nothing
here (DefaultThinkingStrategy). Some models inline it in the text as
<think>...</think>; TagThinkingStrategy separates it chunk by chunk,
holding back a partially received marker until the next chunk decides it.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ParsedText:
    thinking: str = ""
    content: str = ""


class ThinkingStrategy(ABC):
    has_custom_parser = False

    @abstractmethod
    def parse_stream_text(self, chunk: str) -> ParsedText:
        ...

    def extract_thinking(self, full_text: str) -> ParsedText:
        return ParsedText(content=full_text)

    def flush(self) -> ParsedText:
        """Text held back at end of stream."""
        return ParsedText()

    def reset(self) -> None:
        pass


class DefaultThinkingStrategy(ThinkingStrategy):
    def parse_stream_text(self, chunk: str) -> ParsedText:
        return ParsedText(content=chunk)


class TagThinkingStrategy(ThinkingStrategy):
    has_custom_parser = True

    def __init__(self, open_tag: str = "<think>", close_tag: str = "</think>"):
        self.open_tag = open_tag
        self.close_tag = close_tag
        self._block = re.compile(
            re.escape(open_tag) + r"(.*?)(?:" + re.escape(close_tag) + r"|$)",
            re.DOTALL,
        )
        self.reset()

    def reset(self) -> None:
        self._in_thinking = False
        self._pending = ""

    def parse_stream_text(self, chunk: str) -> ParsedText:
        text = self._pending + chunk
        self._pending = ""
        thinking: list[str] = []
        content: list[str] = []

        while text:
            marker = self.close_tag if self._in_thinking else self.open_tag
            target = thinking if self._in_thinking else content
            idx = text.find(marker)
            if idx >= 0:
                target.append(text[:idx])
                text = text[idx + len(marker):]
                self._in_thinking = not self._in_thinking
                continue

            hold = _partial_marker_len(text, marker)
            target.append(text[: len(text) - hold])
            self._pending = text[len(text) - hold:]
            break

        return ParsedText(thinking="".join(thinking), content="".join(content))

    def flush(self) -> ParsedText:
        pending, self._pending = self._pending, ""
        if self._in_thinking:
            return ParsedText(thinking=pending)
        return ParsedText(content=pending)

    def extract_thinking(self, full_text: str) -> ParsedText:
        blocks = [m.group(1).strip() for m in self._block.finditer(full_text)]
        content = self._block.sub("", full_text).strip()
        return ParsedText(thinking="\n\n".join(b for b in blocks if b), content=content)


def _partial_marker_len(text: str, marker: str) -> int:
    """Length of the longest suffix of text that is a proper prefix of marker."""
    for size in range(min(len(text), len(marker) - 1), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0


# Model id fragments known to inline reasoning as <think> tags
_TAG_MODELS = (
    "minimax",
    "deepseek-r1",
    "deepseek-reasoner",
    "qwq",
    "r1-distill",
)


class ThinkingStrategyFactory:
    @staticmethod
    def create(model_id: str | None) -> ThinkingStrategy:
        model = (model_id or "").lower()
        if any(fragment in model for fragment in _TAG_MODELS) or (
            "qwen3" in model and "thinking" in model
        ):
            logger.debug(f"Tag thinking strategy for model={model_id}")
            return TagThinkingStrategy()
        return DefaultThinkingStrategy()
